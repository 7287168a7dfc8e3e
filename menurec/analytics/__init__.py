"""
Service analytics.

Responsibilities:
- Keep an in-memory log of recommendation requests and interactions.
- Aggregate it into per-algorithm performance figures on demand.
"""
