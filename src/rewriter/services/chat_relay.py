"""
Chat Relay — authenticates, loads context, streams the completion and persists it.

One ``ChatRelay.open()`` call handles one caller message:

1. validate the payload, authenticate, check conversation ownership
2. load history and build the provider-bound message list
3. store the user message (best-effort)
4. open the upstream stream; a non-success status becomes a RelayError
   before any byte reaches the caller

The returned ``RelayStream`` then forwards every text-carrying frame as it
arrives and keeps a local copy of the text. The assistant message is stored
only after the upstream stream has been read to its end; an aborted,
failed or cancelled stream stores nothing.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import structlog

from rewriter.config import Config
from rewriter.errors import (
    BadRequest, InternalError, RelayError, UpstreamError, error_for_upstream_status,
)
from rewriter.models.records import ConversationRecord, MessageRecord, Role
from rewriter.services.conversation_store import ConversationStore
from rewriter.services.identity import IdentityVerifier
from rewriter.services.openai_client import OpenAIClient, UpstreamResponse
from rewriter.services.sse import (
    DONE_FRAME, DeltaFrame, format_data, format_error_event, iter_delta_frames,
)

log = structlog.get_logger()


GENERIC_SYSTEM_PROMPT = (
    "You are a helpful AI writing assistant. Help users rewrite and improve their content."
)

DOCUMENT_SYSTEM_PROMPT = (
    'You are a helpful AI writing assistant. The user has uploaded a document titled "{name}". '
    "Here is the document content:\n\n{content}\n\n"
    "Help the user rewrite, improve, or work with this content based on their requests."
)


class RelayTimeout(Exception):
    """The per-invocation wall-clock budget ran out mid-stream."""


MID_STREAM_FAILURES = (httpx.HTTPError, UnicodeDecodeError, RelayTimeout)

STREAM_FAILED_MESSAGE = "Upstream stream failed"
TIMED_OUT_MESSAGE = "Response took too long and was stopped"


@dataclass
class RelayRequest:
    conversation_id: str
    message: str
    model: str

    @classmethod
    def from_payload(cls, body: Any, default_model: str) -> "RelayRequest":
        """Validate an inbound JSON body. Raises BadRequest."""
        if not isinstance(body, dict):
            raise BadRequest("Request body must be a JSON object")
        conversation_id = body.get("conversationId")
        message = body.get("message")
        if not conversation_id or not message:
            raise BadRequest("Missing conversationId or message")
        if not isinstance(conversation_id, str) or not isinstance(message, str):
            raise BadRequest("conversationId and message must be strings")
        if not message.strip():
            raise BadRequest("Missing conversationId or message")
        model = body.get("model") or default_model
        if not isinstance(model, str):
            raise BadRequest("model must be a string")
        return cls(conversation_id=conversation_id, message=message, model=model)


def build_system_prompt(conversation: ConversationRecord) -> str:
    if conversation.document_content:
        return DOCUMENT_SYSTEM_PROMPT.format(
            name=conversation.document_name or "Untitled document",
            content=conversation.document_content,
        )
    return GENERIC_SYSTEM_PROMPT


def build_upstream_messages(
    conversation: ConversationRecord,
    history: List[MessageRecord],
    message: str,
) -> List[Dict[str, str]]:
    """System prompt, then stored non-system history in order, then the new message."""
    messages = [{"role": Role.SYSTEM.value, "content": build_system_prompt(conversation)}]
    for msg in history:
        if msg.role == Role.SYSTEM.value:
            continue
        messages.append({"role": msg.role, "content": msg.content})
    messages.append({"role": Role.USER.value, "content": message})
    return messages


class RelayStream:
    """Server-sent events for one relay invocation. Single pass, not restartable."""

    def __init__(
        self,
        request: RelayRequest,
        response: UpstreamResponse,
        store: ConversationStore,
        deadline: Optional[float] = None,
    ):
        self.request = request
        self.completed = False
        self.persisted: Optional[MessageRecord] = None
        self._response = response
        self._store = store
        self._deadline = deadline
        self._chunks: List[str] = []
        self._started = False

    @property
    def text(self) -> str:
        """Everything forwarded so far."""
        return "".join(self._chunks)

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("RelayStream can only be iterated once")
        self._started = True
        return self._events()

    async def aclose(self):
        """Drop the upstream connection without reading it."""
        if not self._started:
            self._started = True
            await self._response.aclose()

    async def _next_frame(self, frames: AsyncIterator[DeltaFrame]) -> Optional[DeltaFrame]:
        """Next text-carrying frame, or None at end of stream.

        With a deadline set, the wait itself is bounded, so stalls and
        runs of empty frames both hit the budget.
        """
        if self._deadline is None:
            return await anext(frames, None)
        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise RelayTimeout("Relay time budget exceeded")
        try:
            return await asyncio.wait_for(anext(frames, None), remaining)
        except asyncio.TimeoutError as e:
            raise RelayTimeout("Relay time budget exceeded") from e

    async def _events(self) -> AsyncIterator[str]:
        rlog = log.bind(conversation_id=self.request.conversation_id, model=self.request.model)
        count = 0
        failure: Optional[BaseException] = None
        frames = iter_delta_frames(self._response.aiter_lines())

        try:
            while True:
                frame = await self._next_frame(frames)
                if frame is None:
                    break
                self._chunks.append(frame.text)
                count += 1
                yield format_data(frame.payload)
        except MID_STREAM_FAILURES as e:
            failure = e
        finally:
            # also reached on caller disconnect (GeneratorExit / CancelledError)
            await frames.aclose()
            await self._response.aclose()

        if failure is not None:
            rlog.error("relay_stream_failed", frames=count, error=str(failure),
                       error_type=type(failure).__name__)
            message = TIMED_OUT_MESSAGE if isinstance(failure, RelayTimeout) else STREAM_FAILED_MESSAGE
            yield format_error_event(message)
            return

        full_text = self.text
        if full_text:
            try:
                self.persisted = await self._store.append_message(
                    self.request.conversation_id, Role.ASSISTANT.value, full_text,
                )
            except RelayError as e:
                rlog.error("assistant_message_persist_failed", error=e.message, chars=len(full_text))
                yield format_error_event("Failed to save assistant response")
                return

        self.completed = True
        rlog.info("relay_stream_completed", frames=count, chars=len(full_text))
        yield DONE_FRAME


class ChatRelay:
    """Composes identity, store and upstream client into the relay operation."""

    def __init__(
        self,
        config: Config,
        identity: IdentityVerifier,
        store: ConversationStore,
        upstream: OpenAIClient,
    ):
        self.config = config
        self.identity = identity
        self.store = store
        self.upstream = upstream

    async def open(self, token: Optional[str], body: Any) -> RelayStream:
        """Run every step up to the first upstream byte.

        Raises a RelayError for anything that fails before streaming starts.
        """
        started = time.monotonic()
        request = RelayRequest.from_payload(body, self.config.openai.default_model)

        if not self.upstream.configured:
            log.error("openai_key_missing")
            raise InternalError("OpenAI API key not configured")

        caller = await self.identity.verify(token)
        rlog = log.bind(conversation_id=request.conversation_id, user_id=caller.user_id)

        conversation = await self.store.get_conversation(request.conversation_id, caller.user_id)
        history = await self.store.list_messages(conversation.id)
        messages = build_upstream_messages(conversation, history, request.message)

        try:
            await self.store.append_message(conversation.id, Role.USER.value, request.message)
        except RelayError as e:
            rlog.error("user_message_persist_failed", error=e.message)

        try:
            response = await self.upstream.stream_completion(
                model=request.model,
                messages=messages,
                max_output_tokens=self.config.openai.max_completion_tokens,
            )
        except httpx.HTTPError as e:
            rlog.error("openai_connect_failed", error=str(e))
            raise UpstreamError(details=str(e)) from e

        if not response.ok:
            try:
                error_text = await response.read_text()
            except httpx.HTTPError as e:
                error_text = str(e)
            finally:
                await response.aclose()
            rlog.error("openai_api_error", status=response.status_code, body=error_text[:500])
            raise error_for_upstream_status(response.status_code, error_text)

        rlog.info("relay_stream_opened", model=request.model, history=len(history))
        budget = self.config.relay.relay_timeout_seconds
        return RelayStream(
            request=request,
            response=response,
            store=self.store,
            deadline=started + budget if budget else None,
        )
