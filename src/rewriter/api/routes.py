"""
FastAPI API routes — conversation management for the rewriter dashboard.
Every route is scoped to the authenticated caller.
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from rewriter.middleware.auth_middleware import get_current_identity, get_store
from rewriter.models.records import Identity
from rewriter.services.conversation_store import ConversationStore
from rewriter.services.model_catalog import list_models


router = APIRouter(prefix="/api", tags=["api"])


class CreateConversationRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=500)


class AttachDocumentRequest(BaseModel):
    document_name: str = Field(..., min_length=1, max_length=500)
    document_content: str


def default_title() -> str:
    return f"New Conversation - {datetime.now(timezone.utc).date().isoformat()}"


@router.get("/health")
async def health_check(request: Request):
    cfg = request.app.state.config
    return {
        "status": "healthy",
        "version": cfg.app.version,
        "service": "ai-rewriter",
    }


@router.get("/models")
async def get_models(request: Request):
    return list_models(request.app.state.config.openai.default_model)


# ---- Conversation Endpoints ----

@router.get("/conversations")
async def list_conversations(
    caller: Identity = Depends(get_current_identity),
    store: ConversationStore = Depends(get_store),
):
    convos = await store.list_conversations(caller.user_id)
    return [c.to_dict() for c in convos]


@router.post("/conversations", status_code=201)
async def create_conversation(
    req: Optional[CreateConversationRequest] = None,
    caller: Identity = Depends(get_current_identity),
    store: ConversationStore = Depends(get_store),
):
    title = req.title if req is not None else None
    conv = await store.create_conversation(caller.user_id, title or default_title())
    return conv.to_dict()


@router.get("/conversations/{conversation_id}/messages")
async def get_messages(
    conversation_id: str,
    caller: Identity = Depends(get_current_identity),
    store: ConversationStore = Depends(get_store),
):
    conv = await store.get_conversation(conversation_id, caller.user_id)
    messages = await store.list_messages(conv.id)
    return [m.to_dict() for m in messages]


@router.put("/conversations/{conversation_id}/document")
async def attach_document(
    conversation_id: str,
    req: AttachDocumentRequest,
    caller: Identity = Depends(get_current_identity),
    store: ConversationStore = Depends(get_store),
):
    conv = await store.attach_document(
        conversation_id, caller.user_id, req.document_name, req.document_content,
    )
    return conv.to_dict()


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    caller: Identity = Depends(get_current_identity),
    store: ConversationStore = Depends(get_store),
):
    await store.delete_conversation(conversation_id, caller.user_id)
    return {"status": "deleted"}
