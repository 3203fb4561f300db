from __future__ import annotations
import logging
from typing import Optional

from lume.config import get_settings
from lume.providers.base import ModelMessage, ProviderRequest, TextBlock, complete
from lume.providers.router import router

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 80

TITLE_PROMPT = (
    "Generate a short title (at most 6 words) for a conversation that starts with the user message below. "
    "Reply with the title only: no quotes, no trailing punctuation."
)


def clean_title(raw: str) -> str:
    title = raw.strip().splitlines()[0] if raw.strip() else ""
    title = title.strip().strip("\"'`").strip()
    if title.lower().startswith("title:"):
        title = title[len("title:"):].strip()
    return title[:MAX_TITLE_LENGTH].rstrip()


async def generate_title(user_text: str) -> Optional[str]:
    """Best effort: returns None instead of raising."""
    settings = get_settings()
    if not user_text.strip():
        return None
    try:
        provider = router.get_provider(settings.title_model_id)
        request = ProviderRequest(
            model=settings.title_model_id,
            messages=[ModelMessage("user", [TextBlock(user_text[:2000])])],
            system=TITLE_PROMPT,
            temperature=0.3,
            max_output_tokens=30,
        )
        result = await complete(provider, request)
    except Exception:
        logger.exception("title generation failed")
        return None
    if result.error:
        logger.warning("title generation failed: %s", result.error)
        return None
    return clean_title(result.text) or None
