from __future__ import annotations

import json
import logging
from typing import Any

from groq import Groq

from .config import DEFAULT_LLM_CONFIG, LLMConfig

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are the voice of a food-ordering app's recommendation engine. "
    "Given what we know about the diner's situation and a ranked list of "
    "menu items already chosen for them, write a short, friendly "
    "one-sentence reason for each item. Do not reorder or drop items.\n\n"
    "Return ONLY valid JSON in this exact format:\n"
    '{"explanations": [{"id": "<item_id>", "reason": "<one sentence>"}]}\n'
    "Include only items from the provided list."
)


def _build_user_message(
    context_summary: dict[str, Any],
    candidates: list[dict[str, Any]],
) -> str:
    lines = ["## Diner Context"]
    if context_summary.get("meal_period"):
        lines.append(f"- Meal: {context_summary['meal_period']}")
    if context_summary.get("season"):
        lines.append(f"- Season: {context_summary['season']}")
    if context_summary.get("weather"):
        lines.append(f"- Weather: {context_summary['weather']}")
    if context_summary.get("budget"):
        lines.append(f"- Budget: {context_summary['budget']}")
    if context_summary.get("is_first_visit"):
        lines.append("- First visit to the app")

    lines.append("\n## Recommended Items")
    lines.append("| ID | Name | Category | Price | Rating | Why we picked it |")
    lines.append("|---|---|---|---|---|---|")
    for c in candidates:
        lines.append(
            f"| {c['id']} | {c.get('name', '?')} | {c.get('category', '?')} "
            f"| {c.get('price', '?')} | {c.get('rating', 'N/A')} | {c.get('reason', '')} |"
        )

    return "\n".join(lines)


def explain_recommendations(
    context_summary: dict[str, Any],
    candidates: list[dict[str, Any]],
    config: LLMConfig = DEFAULT_LLM_CONFIG,
) -> dict[str, str]:
    """
    Call Groq LLM to phrase an explanation for each recommended item.

    Returns a dict mapping item id -> reason string.
    Returns empty dict on any failure (timeout, bad JSON, API error).
    """
    if not config.enabled or not config.api_key:
        return {}

    if not candidates:
        return {}

    try:
        client = Groq(api_key=config.api_key, timeout=config.timeout)
        response = client.chat.completions.create(
            model=config.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": _build_user_message(
                        context_summary, candidates[: config.max_candidates],
                    ),
                },
            ],
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            response_format={"type": "json_object"},
        )

        content = response.choices[0].message.content or ""
        parsed = json.loads(content)

        wanted = {str(c["id"]) for c in candidates}
        results: dict[str, str] = {}
        for item in parsed.get("explanations", []):
            item_id = str(item.get("id", ""))
            reason = item.get("reason", "")
            if item_id in wanted and reason:
                results[item_id] = reason

        return results

    except Exception:
        logger.warning("Groq LLM call failed, keeping template explanations", exc_info=True)
        return {}
