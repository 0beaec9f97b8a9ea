"""Conversation state for a chat against ``/api/chat``.

The state is an immutable value moved forward by :func:`reduce`; the
:class:`ChatSession` client owns one and feeds it the events produced by
each request, mirroring what the browser page does.
"""
import uuid
import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple, Union

import httpx

logger = logging.getLogger("transcript_assistant.conversation")

SENDER_USER = "user"
SENDER_AI = "ai"

IDLE = "idle"
SENDING = "sending"
ERRORED = "errored"

REQUEST_TIMEOUT_SECONDS = 30.0

WELCOME_MESSAGE = (
    "Hello! I'm your personal AI assistant. I can help with your podcast interviews, "
    "business meetings, client details and anything else in your uploaded transcripts. "
    "What would you like to know?"
)
EMPTY_REPLY_MESSAGE = "I'm sorry, I couldn't generate a response. Please try again."
NETWORK_ERROR_MESSAGE = (
    "Unable to connect to AI service. Please check your internet connection and try again."
)
GENERIC_ERROR_MESSAGE = "Failed to get response from AI. Please try again."
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChatTurn:
    content: str
    sender: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=_now)
    response_id: Optional[str] = None


@dataclass(frozen=True)
class ConversationState:
    session_id: str
    turns: Tuple[ChatTurn, ...] = ()
    last_response_id: Optional[str] = None
    status: str = IDLE
    error: Optional[str] = None

    @property
    def is_loading(self) -> bool:
        return self.status == SENDING


@dataclass(frozen=True)
class Submitted:
    content: str


@dataclass(frozen=True)
class Succeeded:
    output: str
    response_id: Optional[str] = None
    session_id: Optional[str] = None


@dataclass(frozen=True)
class Failed:
    message: str


Event = Union[Submitted, Succeeded, Failed]


def new_conversation(welcome: Optional[str] = WELCOME_MESSAGE) -> ConversationState:
    turns: Tuple[ChatTurn, ...] = ()
    if welcome:
        turns = (ChatTurn(content=welcome, sender=SENDER_AI),)
    return ConversationState(session_id=str(uuid.uuid4()), turns=turns)


def reduce(state: ConversationState, event: Event) -> ConversationState:
    """Apply one event and return the next state.

    A submission while a send is in flight, or a blank submission, leaves the
    state untouched, as do results that arrive when nothing is in flight.
    """
    if isinstance(event, Submitted):
        if state.is_loading or not event.content.strip():
            return state
        turn = ChatTurn(content=event.content, sender=SENDER_USER)
        return replace(state, turns=state.turns + (turn,), status=SENDING, error=None)

    if isinstance(event, Succeeded):
        if not state.is_loading:
            return state
        turn = ChatTurn(content=event.output, sender=SENDER_AI, response_id=event.response_id)
        return replace(
            state,
            turns=state.turns + (turn,),
            status=IDLE,
            last_response_id=event.response_id,
            session_id=event.session_id or state.session_id,
        )

    if isinstance(event, Failed):
        if not state.is_loading:
            return state
        turn = ChatTurn(content=event.message, sender=SENDER_AI)
        return replace(state, turns=state.turns + (turn,), status=ERRORED, error=event.message)

    raise TypeError(f"Unknown conversation event: {event!r}")


def describe_failure(status_code: Optional[int]) -> str:
    if status_code is None:
        return NETWORK_ERROR_MESSAGE
    if status_code == 401:
        return "Authentication failed. Please check your access credentials."
    if status_code == 403:
        return "Access forbidden. You don't have permission to use this service."
    if status_code == 404:
        return "AI service is temporarily unavailable. Please try again later."
    if status_code >= 500:
        return "AI service is experiencing issues. Please try again in a few moments."
    return GENERIC_ERROR_MESSAGE


class ChatServiceError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChatSession:
    """Async client holding one conversation with the assistant API."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        session_token: Optional[str] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        welcome: Optional[str] = WELCOME_MESSAGE,
    ) -> None:
        headers = {"X-Session-Token": session_token} if session_token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, headers=headers, transport=transport
        )
        self.state = new_conversation(welcome)

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send(self, message: str) -> Optional[ChatTurn]:
        """Send ``message`` and return the resulting AI turn.

        Returns ``None`` without contacting the server when the message is
        blank or another send is still in flight. Failures become an AI turn
        carrying the error text. A cancelled send is recorded as failed before
        the cancellation propagates, so the next send goes through.
        """
        text = (message or "").strip()
        if not text or self.state.is_loading:
            return None

        previous_response_id = self.state.last_response_id
        self.state = reduce(self.state, Submitted(text))
        try:
            data = await self._request(text, previous_response_id)
        except ChatServiceError as exc:
            logger.warning("Chat request failed (%s): %s", exc.status_code, exc)
            self.state = reduce(self.state, Failed(str(exc)))
        except asyncio.CancelledError:
            self.state = reduce(self.state, Failed(UNEXPECTED_ERROR_MESSAGE))
            raise
        except Exception:
            logger.exception("Unexpected chat failure")
            self.state = reduce(self.state, Failed(UNEXPECTED_ERROR_MESSAGE))
        else:
            self.state = reduce(
                self.state,
                Succeeded(
                    output=data.get("output") or EMPTY_REPLY_MESSAGE,
                    response_id=data.get("responseId"),
                    session_id=data.get("sessionId"),
                ),
            )
        return self.state.turns[-1]

    async def _request(self, text: str, previous_response_id: Optional[str]) -> Dict[str, Any]:
        params = {"message": text, "sessionId": self.state.session_id}
        if previous_response_id:
            params["previousResponseId"] = previous_response_id

        try:
            resp = await self._client.get("/api/chat", params=params)
        except httpx.TransportError as exc:
            raise ChatServiceError(describe_failure(None)) from exc
        except httpx.HTTPError as exc:
            raise ChatServiceError(UNEXPECTED_ERROR_MESSAGE) from exc

        if resp.status_code >= 400:
            raise ChatServiceError(describe_failure(resp.status_code), resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            raise ChatServiceError(GENERIC_ERROR_MESSAGE, resp.status_code) from exc
        if not isinstance(data, dict):
            raise ChatServiceError(GENERIC_ERROR_MESSAGE, resp.status_code)
        return data
