"""
LLM integration layer.

Responsibilities:
- Manage Groq API configuration and credentials.
- Build prompts from the request context and the ranked menu items.
- Ask the LLM for a short, friendly reason per recommended item.
- Fall back silently to template explanations when the LLM is unavailable.
"""
