"""In-process conversation store behind the runner's conversation API.

A conversation is created on first request and keeps an append-only event
log for the lifetime of the process. The agent itself is reached through
the ``AgentRuntime`` capability; ``GreetingAgentRuntime`` is the built-in
adapter and answers every message with the warm-up greeting.

Events are listed with offset pagination: ``page_id`` is the integer offset
of the first event, ``limit`` is capped at 100, and ``next_page_id`` is
present only while more events remain.
"""

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from src.smolpaws.runner.replies import build_greeting

logger = logging.getLogger(__name__)

MAX_PAGE_LIMIT = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    FINISHED = "finished"
    ERROR = "error"


class ConversationEvent(BaseModel):
    """One entry in a conversation's event log.

    Attributes:
        kind: Event type, e.g. ``MessageEvent`` or ``PauseEvent``.
        source: Who produced it: ``user``, ``agent`` or ``environment``.
        text: Message text, for message events.
        data: Extra event fields.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = Field(default_factory=_utcnow)
    kind: str
    source: str
    text: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def message(cls, source: str, text: str) -> "ConversationEvent":
        return cls(kind="MessageEvent", source=source, text=text)


class Conversation(BaseModel):
    """Conversation record.

    Secret values are held only so the runtime can use them; the API
    exposes their names.
    """

    id: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    execution_status: ExecutionStatus = ExecutionStatus.IDLE
    llm: Dict[str, Any] = Field(default_factory=dict, repr=False)
    secrets: Dict[str, str] = Field(default_factory=dict, repr=False)
    confirmation_policy: Dict[str, Any] = Field(default_factory=dict)
    security_analyzer: Optional[Dict[str, Any]] = None
    events: List[ConversationEvent] = Field(default_factory=list, repr=False)

    def append(self, event: ConversationEvent) -> None:
        self.events.append(event)
        self.updated_at = event.timestamp

    def info(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "execution_status": self.execution_status.value,
            "event_count": len(self.events),
            "secret_names": sorted(self.secrets),
            "confirmation_policy": self.confirmation_policy,
            "security_analyzer": self.security_analyzer,
        }


class EventPage(BaseModel):
    items: List[ConversationEvent]
    next_page_id: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class AgentRuntime(Protocol):
    """Capability the conversation API drives."""

    def send_message(
        self, conversation: Conversation, text: str
    ) -> AsyncIterator[ConversationEvent]:
        """Deliver a user message and stream the agent's events."""
        ...

    async def pause(self, conversation: Conversation) -> None:
        ...

    async def resume(self, conversation: Conversation) -> None:
        ...

    async def set_policy(self, conversation: Conversation, name: str, value: Any) -> None:
        ...


class GreetingAgentRuntime:
    """Runtime adapter that answers every message with the warm-up greeting."""

    async def send_message(
        self, conversation: Conversation, text: str
    ) -> AsyncIterator[ConversationEvent]:
        yield ConversationEvent.message("agent", build_greeting(None, None, text.strip()))

    async def pause(self, conversation: Conversation) -> None:
        return None

    async def resume(self, conversation: Conversation) -> None:
        return None

    async def set_policy(self, conversation: Conversation, name: str, value: Any) -> None:
        return None


class ConversationNotFoundError(KeyError):
    """Raised when a conversation id is unknown."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(conversation_id)


def parse_page_id(page_id: Optional[str]) -> int:
    """Parse an offset page id; None means the first page.

    Raises:
        ValueError: If the page id is not a non-negative integer.
    """
    if page_id is None or page_id == "":
        return 0
    offset = int(page_id)
    if offset < 0:
        raise ValueError(f"Invalid page_id: {page_id}")
    return offset


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None or limit <= 0:
        return MAX_PAGE_LIMIT
    return min(limit, MAX_PAGE_LIMIT)


class ConversationStore:
    """Process-lifetime map of conversations driven by an AgentRuntime.

    Attributes:
        runtime: Agent capability that produces events.
    """

    def __init__(self, runtime: Optional[AgentRuntime] = None):
        self.runtime: AgentRuntime = runtime or GreetingAgentRuntime()
        self._conversations: Dict[str, Conversation] = {}

    def __len__(self) -> int:
        return len(self._conversations)

    def get(self, conversation_id: str) -> Conversation:
        try:
            return self._conversations[conversation_id]
        except KeyError:
            raise ConversationNotFoundError(conversation_id) from None

    def get_or_create(
        self,
        conversation_id: Optional[str] = None,
        llm: Optional[Dict[str, Any]] = None,
    ) -> Conversation:
        """Return the conversation for an id, creating it on first request."""
        conversation_id = conversation_id or uuid.uuid4().hex
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            conversation = Conversation(id=conversation_id, llm=llm or {})
            self._conversations[conversation_id] = conversation
            logger.info(
                "Conversation created",
                extra={"conversation_id": conversation_id},
            )
        return conversation

    async def send_message(
        self,
        conversation: Conversation,
        text: str,
        run: bool = True,
    ) -> List[ConversationEvent]:
        """Append a user message and, unless paused or told not to, run the agent.

        Returns:
            Events appended by this call, user message first.
        """
        user_event = ConversationEvent.message("user", text)
        conversation.append(user_event)
        appended = [user_event]

        if not run or conversation.execution_status == ExecutionStatus.PAUSED:
            return appended

        conversation.execution_status = ExecutionStatus.RUNNING
        try:
            async for event in self.runtime.send_message(conversation, text):
                conversation.append(event)
                appended.append(event)
        except Exception:
            conversation.execution_status = ExecutionStatus.ERROR
            raise
        conversation.execution_status = ExecutionStatus.FINISHED
        return appended

    async def pause(self, conversation: Conversation) -> None:
        await self.runtime.pause(conversation)
        conversation.execution_status = ExecutionStatus.PAUSED
        conversation.append(ConversationEvent(kind="PauseEvent", source="user"))

    async def resume(self, conversation: Conversation) -> None:
        await self.runtime.resume(conversation)
        conversation.execution_status = ExecutionStatus.IDLE
        conversation.append(ConversationEvent(kind="ResumeEvent", source="user"))

    async def set_policy(self, conversation: Conversation, name: str, value: Any) -> None:
        """Record a policy setting and forward it to the runtime.

        ``name`` is one of ``secrets``, ``confirmation_policy`` or
        ``security_analyzer``.
        """
        if name == "secrets":
            conversation.secrets.update(value)
        elif name == "confirmation_policy":
            conversation.confirmation_policy = dict(value)
        elif name == "security_analyzer":
            conversation.security_analyzer = value
        else:
            raise ValueError(f"Unknown policy: {name}")
        await self.runtime.set_policy(conversation, name, value)
        conversation.updated_at = _utcnow()

    def search_events(
        self,
        conversation: Conversation,
        page_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> EventPage:
        """Return one page of a conversation's events.

        Raises:
            ValueError: If ``page_id`` is not a non-negative integer.
        """
        offset = parse_page_id(page_id)
        page_size = clamp_limit(limit)
        end = offset + page_size
        items = conversation.events[offset:end]
        next_page_id = str(end) if end < len(conversation.events) else None
        return EventPage(items=items, next_page_id=next_page_id)
