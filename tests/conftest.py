import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import httpx
import pytest

from rewriter.config import Config
from rewriter.errors import InternalError, NotFound, Unauthorized
from rewriter.models.records import ConversationRecord, Identity, MessageRecord
from rewriter.services.chat_relay import ChatRelay
from rewriter.services.conversation_store import ConversationStore
from rewriter.services.identity import IdentityVerifier
from rewriter.services.openai_client import OpenAIClient


def delta_frame(text: str) -> str:
    chunk = {"id": "chatcmpl-1", "object": "chat.completion.chunk",
             "choices": [{"index": 0, "delta": {"content": text}}]}
    return f"data: {json.dumps(chunk)}\n\n"


DONE = "data: [DONE]\n\n"


class FakeIdentity(IdentityVerifier):
    """Accepts tokens of the form ``token-<user_id>``."""

    async def verify(self, token: Optional[str]) -> Identity:
        if not token or not token.startswith("token-"):
            raise Unauthorized()
        return Identity(user_id=token[len("token-"):])


class InMemoryStore(ConversationStore):
    def __init__(self):
        self.conversations: Dict[str, ConversationRecord] = {}
        self.messages: List[MessageRecord] = []
        self.fail_roles: set = set()
        self.fail_history = False
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def add_conversation(self, conversation_id: str, user_id: str, title: str = "Draft",
                         document_name: Optional[str] = None,
                         document_content: Optional[str] = None) -> ConversationRecord:
        now = self._tick()
        conv = ConversationRecord(conversation_id, user_id, title, document_name,
                                  document_content, now, now)
        self.conversations[conversation_id] = conv
        return conv

    def add_message(self, conversation_id: str, role: str, content: str) -> MessageRecord:
        msg = MessageRecord(str(uuid.uuid4()), conversation_id, role, content, self._tick())
        self.messages.append(msg)
        return msg

    def messages_for(self, conversation_id: str, role: Optional[str] = None) -> List[MessageRecord]:
        return [m for m in self.messages
                if m.conversation_id == conversation_id and (role is None or m.role == role)]

    async def get_conversation(self, conversation_id, owner_id):
        conv = self.conversations.get(conversation_id)
        if conv is None or conv.user_id != owner_id:
            raise NotFound()
        return conv

    async def list_messages(self, conversation_id):
        if self.fail_history:
            raise InternalError("Failed to fetch messages")
        return sorted(self.messages_for(conversation_id), key=lambda m: m.created_at)

    async def append_message(self, conversation_id, role, content):
        if role in self.fail_roles:
            raise InternalError("Failed to save message")
        return self.add_message(conversation_id, role, content)

    async def create_conversation(self, owner_id, title):
        return self.add_conversation(str(uuid.uuid4()), owner_id, title)

    async def list_conversations(self, owner_id):
        owned = [c for c in self.conversations.values() if c.user_id == owner_id]
        return sorted(owned, key=lambda c: c.updated_at, reverse=True)

    async def attach_document(self, conversation_id, owner_id, document_name, document_content):
        conv = await self.get_conversation(conversation_id, owner_id)
        conv.document_name = document_name
        conv.document_content = document_content
        conv.updated_at = self._tick()
        return conv

    async def delete_conversation(self, conversation_id, owner_id):
        await self.get_conversation(conversation_id, owner_id)
        del self.conversations[conversation_id]
        self.messages = [m for m in self.messages if m.conversation_id != conversation_id]


class ScriptedProvider:
    """httpx.MockTransport handler that plays back a chat completion stream."""

    def __init__(self):
        self.status = 200
        self.error_body = ""
        self.frames: List[str] = [delta_frame("Hello"), delta_frame(" world"), DONE]
        self.fail_after: Optional[int] = None
        self.frame_delay = 0.0
        self.stall_after: Optional[int] = None
        self.connect_error = False
        self.requests: List[dict] = []
        self.auth_headers: List[str] = []
        self.frames_sent = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        self.auth_headers.append(request.headers.get("authorization", ""))
        if self.connect_error:
            raise httpx.ConnectError("connection refused", request=request)
        if self.status != 200:
            return httpx.Response(self.status, text=self.error_body)
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=self._stream(),
        )

    async def _stream(self):
        for i, frame in enumerate(self.frames):
            if self.fail_after is not None and i >= self.fail_after:
                raise httpx.ReadError("connection reset by peer")
            if self.stall_after is not None and i >= self.stall_after:
                await asyncio.sleep(3600)
            if self.frame_delay:
                await asyncio.sleep(self.frame_delay)
            self.frames_sent += 1
            yield frame.encode("utf-8")


@pytest.fixture
def config() -> Config:
    cfg = Config()
    cfg.openai.api_key = "sk-test"
    cfg.openai.base_url = "https://upstream.test/v1"
    return cfg


@pytest.fixture
def store() -> InMemoryStore:
    s = InMemoryStore()
    s.add_conversation("c1", "U", title="Brief rewrite",
                       document_name="brief.txt", document_content="Do X")
    s.add_conversation("c2", "U", title="Plain")
    s.add_conversation("c-other", "V", title="Someone else's")
    return s


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def relay(config, store, provider) -> ChatRelay:
    upstream = OpenAIClient(config.openai, transport=httpx.MockTransport(provider.handler))
    return ChatRelay(config, FakeIdentity(), store, upstream)
