from fastapi import APIRouter, HTTPException, Request
import logging
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from lume.schemas.chat import ChatRequest
from lume.core.ratelimit import enforce_rate_limit
from lume.core.auth import get_effective_owner
from lume.errors import LumeError
from lume.services.orchestrator import orchestrator
from lume.services.ui_stream import STREAM_HEADERS

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/chat")
async def chat(request: ChatRequest, http_request: Request):
    """Run one chat turn and stream it as a UI message stream."""
    enforce_rate_limit(http_request)
    owner = get_effective_owner(http_request)
    try:
        turn = await orchestrator.prepare(request, owner)
    except LumeError:
        raise
    except Exception as e:
        logger.exception("/chat setup failed conversation=%s: %s", request.conversationId, e)
        raise HTTPException(status_code=500, detail=str(e) or "Internal server error")

    logger.info("/chat start conversation=%s model=%s", turn.conversation_id, turn.model.id)
    return StreamingResponse(
        turn.stream(),
        media_type="text/event-stream",
        headers={**STREAM_HEADERS, "X-Conversation-Id": turn.conversation_id},
        # Only matters when the body was never iterated; a started stream releases after persisting
        background=BackgroundTask(turn.release_if_unstarted),
    )
