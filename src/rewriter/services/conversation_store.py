"""
Conversation Store — conversation records and ordered message history.

The relay only needs ``get_conversation``, ``list_messages`` and
``append_message``. The dashboard endpoints use the rest.
Implementations report missing or foreign rows as ``NotFound`` and every
backend failure as ``InternalError``.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from rewriter.errors import InternalError, NotFound
from rewriter.models.conversation import Conversation, Message
from rewriter.models.records import ConversationRecord, MessageRecord
from rewriter.services.database import Database

log = structlog.get_logger()


class ConversationStore(ABC):
    """Interface every conversation backend implements."""

    @abstractmethod
    async def get_conversation(self, conversation_id: str, owner_id: str) -> ConversationRecord:
        """Return the conversation if ``owner_id`` owns it, else raise NotFound."""
        ...

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> List[MessageRecord]:
        """All messages of a conversation, oldest first."""
        ...

    @abstractmethod
    async def append_message(self, conversation_id: str, role: str, content: str) -> MessageRecord:
        ...

    @abstractmethod
    async def create_conversation(self, owner_id: str, title: str) -> ConversationRecord:
        ...

    @abstractmethod
    async def list_conversations(self, owner_id: str) -> List[ConversationRecord]:
        """Conversations owned by ``owner_id``, most recently updated first."""
        ...

    @abstractmethod
    async def attach_document(
        self, conversation_id: str, owner_id: str, document_name: str, document_content: str,
    ) -> ConversationRecord:
        ...

    @abstractmethod
    async def delete_conversation(self, conversation_id: str, owner_id: str) -> None:
        ...

    async def close(self):
        """Release backend resources."""
        return None


def _conversation_record(conv: Conversation) -> ConversationRecord:
    return ConversationRecord(
        id=conv.id,
        user_id=conv.user_id,
        title=conv.title,
        document_name=conv.document_name,
        document_content=conv.document_content,
        created_at=conv.created_at,
        updated_at=conv.updated_at,
    )


def _message_record(msg: Message) -> MessageRecord:
    return MessageRecord(
        id=msg.id,
        conversation_id=msg.conversation_id,
        role=msg.role,
        content=msg.content,
        created_at=msg.created_at,
    )


class SQLConversationStore(ConversationStore):
    """Store backed by the SQLAlchemy async ORM."""

    def __init__(self, database: Database):
        self.db = database

    async def _owned(self, session, conversation_id: str, owner_id: str) -> Optional[Conversation]:
        result = await session.execute(
            select(Conversation).where(
                Conversation.id == conversation_id,
                Conversation.user_id == owner_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_conversation(self, conversation_id: str, owner_id: str) -> ConversationRecord:
        try:
            async with self.db.session() as session:
                conv = await self._owned(session, conversation_id, owner_id)
        except SQLAlchemyError as e:
            log.error("conversation_fetch_failed", conversation_id=conversation_id, error=str(e))
            raise NotFound() from e
        if conv is None:
            raise NotFound()
        return _conversation_record(conv)

    async def list_messages(self, conversation_id: str) -> List[MessageRecord]:
        try:
            async with self.db.session() as session:
                result = await session.execute(
                    select(Message)
                    .where(Message.conversation_id == conversation_id)
                    .order_by(Message.created_at.asc())
                )
                return [_message_record(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            log.error("messages_fetch_failed", conversation_id=conversation_id, error=str(e))
            raise InternalError("Failed to fetch messages") from e

    async def append_message(self, conversation_id: str, role: str, content: str) -> MessageRecord:
        try:
            async with self.db.session() as session:
                msg = Message(conversation_id=conversation_id, role=role, content=content)
                session.add(msg)
                await session.flush()
                return _message_record(msg)
        except SQLAlchemyError as e:
            log.error("message_insert_failed", conversation_id=conversation_id, role=role, error=str(e))
            raise InternalError("Failed to save message") from e

    async def create_conversation(self, owner_id: str, title: str) -> ConversationRecord:
        try:
            async with self.db.session() as session:
                conv = Conversation(user_id=owner_id, title=title)
                session.add(conv)
                await session.flush()
                return _conversation_record(conv)
        except SQLAlchemyError as e:
            log.error("conversation_create_failed", error=str(e))
            raise InternalError("Failed to create conversation") from e

    async def list_conversations(self, owner_id: str) -> List[ConversationRecord]:
        try:
            async with self.db.session() as session:
                result = await session.execute(
                    select(Conversation)
                    .where(Conversation.user_id == owner_id)
                    .order_by(Conversation.updated_at.desc())
                )
                return [_conversation_record(c) for c in result.scalars().all()]
        except SQLAlchemyError as e:
            log.error("conversations_fetch_failed", error=str(e))
            raise InternalError("Failed to load conversations") from e

    async def attach_document(
        self, conversation_id: str, owner_id: str, document_name: str, document_content: str,
    ) -> ConversationRecord:
        try:
            async with self.db.session() as session:
                conv = await self._owned(session, conversation_id, owner_id)
                if conv is None:
                    raise NotFound()
                conv.document_name = document_name
                conv.document_content = document_content
                await session.flush()
                return _conversation_record(conv)
        except SQLAlchemyError as e:
            log.error("document_attach_failed", conversation_id=conversation_id, error=str(e))
            raise InternalError("Failed to attach document") from e

    async def delete_conversation(self, conversation_id: str, owner_id: str) -> None:
        try:
            async with self.db.session() as session:
                conv = await self._owned(session, conversation_id, owner_id)
                if conv is None:
                    raise NotFound()
                await session.delete(conv)
        except SQLAlchemyError as e:
            log.error("conversation_delete_failed", conversation_id=conversation_id, error=str(e))
            raise InternalError("Failed to delete conversation") from e

    async def close(self):
        await self.db.close()
