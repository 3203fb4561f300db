from fastapi import APIRouter, Request, Response
import logging
from typing import List, Optional

from lume.core.auth import ensure_owner, get_effective_owner
from lume.db import repository
from lume.db.models import Artifact
from lume.errors import NotFound
from lume.schemas.artifacts import ArtifactOut, ArtifactPatch, validate_artifact_content

router = APIRouter()
logger = logging.getLogger(__name__)


def _out(artifact: Artifact) -> ArtifactOut:
    return ArtifactOut(
        id=artifact.id,
        conversationId=artifact.conversation_id,
        messageId=artifact.message_id,
        userId=artifact.user_id,
        type=artifact.type,
        content=artifact.content,
        version=artifact.version,
        createdAt=artifact.created_at,
        updatedAt=artifact.updated_at,
    )


async def _load_owned(artifact_id: str, owner: Optional[str]) -> Artifact:
    artifact = await repository.get_artifact(artifact_id)
    if artifact is None:
        raise NotFound("Artifact not found")
    ensure_owner(artifact.user_id, owner)
    return artifact


@router.get("/artifacts/conversation/{conversation_id}", response_model=List[ArtifactOut])
async def list_conversation_artifacts(conversation_id: str, http_request: Request) -> List[ArtifactOut]:
    """Artifacts of a conversation, newest first."""
    owner = get_effective_owner(http_request)
    conv = await repository.get_conversation(conversation_id)
    if conv is None:
        raise NotFound("Conversation not found")
    ensure_owner(conv.user_id, owner)
    return [_out(a) for a in await repository.list_artifacts(conversation_id, conv.user_id)]


@router.get("/artifacts/{artifact_id}", response_model=ArtifactOut)
async def get_artifact(artifact_id: str, http_request: Request) -> ArtifactOut:
    return _out(await _load_owned(artifact_id, get_effective_owner(http_request)))


@router.patch("/artifacts/{artifact_id}", response_model=ArtifactOut)
async def save_artifact(artifact_id: str, body: ArtifactPatch, http_request: Request) -> ArtifactOut:
    """Replace the content and bump the version.

    ``expectedVersion`` makes the save conditional: 409 when someone else saved
    in between. Without it the last save wins.
    """
    artifact = await _load_owned(artifact_id, get_effective_owner(http_request))
    content = validate_artifact_content(artifact.type, body.content)
    saved = await repository.save_artifact_content(artifact_id, content, body.expectedVersion)
    logger.info("artifact %s saved as version %s", artifact_id, saved.version)
    return _out(saved)


@router.delete("/artifacts/{artifact_id}", status_code=204)
async def delete_artifact(artifact_id: str, http_request: Request) -> Response:
    await _load_owned(artifact_id, get_effective_owner(http_request))
    await repository.delete_artifact(artifact_id)
    return Response(status_code=204)
