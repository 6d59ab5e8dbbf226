"""OpenAI call that turns a caregiver's rough memo into a note for guardians."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, List, Optional, Sequence

from openai import APIError, AsyncOpenAI

from .config import AppConfig, get_config
from .errors import ComposeError, InputError

logger = logging.getLogger(__name__)

TEMPERATURE = 0.6

SYSTEM_PROMPT = (
    "You are an assistant that rewrites the activity notes a caregiver sends to a "
    "guardian into natural, warm prose."
)

NOTE_PROMPT_TEMPLATE = """
Below is a short activity memo written by a caregiver. Rewrite it so it can be shared with the guardian,
whether the setting is a disability welfare center, a nursing home or a daycare. Keep the tone kind and
warm without becoming overly formal.

Guidelines:
- Do not change the facts; state the key points clearly.
- Avoid long-winded phrasing and exaggerated exclamations; let genuine care come through.
- Aim for 2-3 short paragraphs: what happened, what the caregiver observed or felt, then a request or a word of encouragement for the guardian.
- Keep sentences easy to read.

Original activity memo:
{content}
""".strip()


@lru_cache
def _openai_client(api_key: str) -> AsyncOpenAI:
    # One request per tap; no SDK retries.
    return AsyncOpenAI(api_key=api_key, max_retries=0)


def build_messages(
    content: str,
    *,
    meal: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
) -> List[dict]:
    prompt = NOTE_PROMPT_TEMPLATE.format(content=content.strip())
    context_lines = []
    if meal and meal.strip():
        context_lines.append(f"Meal: {meal.strip()}")
    if tags:
        context_lines.append(f"Tags: {', '.join(tags)}")
    if context_lines:
        prompt = prompt + "\n\nContext:\n" + "\n".join(context_lines)
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


async def compose_note(
    content: str,
    *,
    meal: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
    config: Optional[AppConfig] = None,
    client: Optional[Any] = None,
) -> str:
    """Return the polished note text for ``content``."""
    config = config or get_config()
    api_key = config.require_openai_key()
    if not content or not content.strip():
        raise InputError("The activity note to polish is empty.")

    client = client or _openai_client(api_key)
    try:
        response = await client.chat.completions.create(
            model=config.openai_model,
            messages=build_messages(content, meal=meal, tags=tags),
            temperature=TEMPERATURE,
        )
    except APIError as exc:
        logger.exception("OpenAI chat API failed", exc_info=exc)
        detail = getattr(exc, "message", None) or str(exc)
        raise ComposeError(f"The OpenAI API call failed: {detail}") from exc

    try:
        raw_content = response.choices[0].message.content or ""
    except (AttributeError, IndexError, KeyError) as exc:
        logger.exception("Unexpected OpenAI response format", exc_info=exc)
        raise ComposeError("The AI response was empty.") from exc

    text = raw_content.strip() if isinstance(raw_content, str) else ""
    if not text:
        raise ComposeError("The AI response was empty.")
    return text
