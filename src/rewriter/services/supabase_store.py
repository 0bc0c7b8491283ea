"""Conversation store over the hosted Supabase (PostgREST) tables."""
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import structlog
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from rewriter.config import SupabaseConfig
from rewriter.errors import InternalError, NotFound
from rewriter.models.records import ConversationRecord, MessageRecord
from rewriter.services.conversation_store import ConversationStore

log = structlog.get_logger()

CONVERSATIONS_TABLE = "ai_conversations"
MESSAGES_TABLE = "ai_messages"

STORE_FAILURES = (APIError, httpx.HTTPError)


async def create_supabase_client(cfg: SupabaseConfig) -> AsyncClient:
    """Service-role client shared by the store and the identity verifier."""
    if not cfg.url or not cfg.service_role_key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
    return await acreate_client(cfg.url, cfg.service_role_key)


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _conversation_record(row: Dict[str, Any]) -> ConversationRecord:
    return ConversationRecord(
        id=row["id"],
        user_id=row["user_id"],
        title=row.get("title") or "",
        document_name=row.get("document_name"),
        document_content=row.get("document_content"),
        created_at=_parse_ts(row.get("created_at")),
        updated_at=_parse_ts(row.get("updated_at")),
    )


def _message_record(row: Dict[str, Any]) -> MessageRecord:
    return MessageRecord(
        id=row["id"],
        conversation_id=row["conversation_id"],
        role=row["role"],
        content=row["content"],
        created_at=_parse_ts(row.get("created_at")),
    )


class SupabaseConversationStore(ConversationStore):
    """Store that talks to the ``ai_conversations`` / ``ai_messages`` tables."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def _owned_row(self, conversation_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        result = await (
            self.client.table(CONVERSATIONS_TABLE)
            .select("*")
            .eq("id", conversation_id)
            .eq("user_id", owner_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_conversation(self, conversation_id: str, owner_id: str) -> ConversationRecord:
        try:
            row = await self._owned_row(conversation_id, owner_id)
        except STORE_FAILURES as e:
            # malformed ids (non-uuid) land here too; treat as not found
            log.error("conversation_fetch_failed", conversation_id=conversation_id, error=str(e))
            raise NotFound() from e
        if row is None:
            raise NotFound()
        return _conversation_record(row)

    async def list_messages(self, conversation_id: str) -> List[MessageRecord]:
        try:
            result = await (
                self.client.table(MESSAGES_TABLE)
                .select("*")
                .eq("conversation_id", conversation_id)
                .order("created_at", desc=False)
                .execute()
            )
        except STORE_FAILURES as e:
            log.error("messages_fetch_failed", conversation_id=conversation_id, error=str(e))
            raise InternalError("Failed to fetch messages") from e
        return [_message_record(row) for row in result.data or []]

    async def append_message(self, conversation_id: str, role: str, content: str) -> MessageRecord:
        try:
            result = await (
                self.client.table(MESSAGES_TABLE)
                .insert({"conversation_id": conversation_id, "role": role, "content": content})
                .execute()
            )
        except STORE_FAILURES as e:
            log.error("message_insert_failed", conversation_id=conversation_id, role=role, error=str(e))
            raise InternalError("Failed to save message") from e
        if not result.data:
            raise InternalError("Failed to save message")
        return _message_record(result.data[0])

    async def create_conversation(self, owner_id: str, title: str) -> ConversationRecord:
        try:
            result = await (
                self.client.table(CONVERSATIONS_TABLE)
                .insert({"user_id": owner_id, "title": title})
                .execute()
            )
        except STORE_FAILURES as e:
            log.error("conversation_create_failed", error=str(e))
            raise InternalError("Failed to create conversation") from e
        if not result.data:
            raise InternalError("Failed to create conversation")
        return _conversation_record(result.data[0])

    async def list_conversations(self, owner_id: str) -> List[ConversationRecord]:
        try:
            result = await (
                self.client.table(CONVERSATIONS_TABLE)
                .select("*")
                .eq("user_id", owner_id)
                .order("updated_at", desc=True)
                .execute()
            )
        except STORE_FAILURES as e:
            log.error("conversations_fetch_failed", error=str(e))
            raise InternalError("Failed to load conversations") from e
        return [_conversation_record(row) for row in result.data or []]

    async def attach_document(
        self, conversation_id: str, owner_id: str, document_name: str, document_content: str,
    ) -> ConversationRecord:
        try:
            result = await (
                self.client.table(CONVERSATIONS_TABLE)
                .update({"document_name": document_name, "document_content": document_content})
                .eq("id", conversation_id)
                .eq("user_id", owner_id)
                .execute()
            )
        except STORE_FAILURES as e:
            log.error("document_attach_failed", conversation_id=conversation_id, error=str(e))
            raise InternalError("Failed to attach document") from e
        if not result.data:
            raise NotFound()
        return _conversation_record(result.data[0])

    async def delete_conversation(self, conversation_id: str, owner_id: str) -> None:
        try:
            result = await (
                self.client.table(CONVERSATIONS_TABLE)
                .delete()
                .eq("id", conversation_id)
                .eq("user_id", owner_id)
                .execute()
            )
        except STORE_FAILURES as e:
            log.error("conversation_delete_failed", conversation_id=conversation_id, error=str(e))
            raise InternalError("Failed to delete conversation") from e
        if not result.data:
            raise NotFound()
