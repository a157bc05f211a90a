import asyncio
import enum
import logging
from dataclasses import dataclass

from agent_events import (
    AgentStartedSpeaking,
    Audio,
    Close,
    ConversationText,
    Error,
    FunctionCallRequest,
    Open,
    SettingsApplied,
    ToolCallRequest,
    Unhandled,
    UserStartedSpeaking,
)
from agent_transport import AgentConnectionError
from config import AGENT_GOODBYE_SECONDS

log = logging.getLogger("gennie.session")


class SessionConnectionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONFIGURING = "configuring"
    LISTENING = "listening"
    AGENT_SPEAKING = "agent_speaking"
    CLOSED = "closed"
    ERRORED = "errored"


TERMINAL_STATES = {SessionConnectionState.CLOSED, SessionConnectionState.ERRORED}
CONVERSATION_STATES = {SessionConnectionState.LISTENING, SessionConnectionState.AGENT_SPEAKING}


@dataclass(frozen=True)
class TranscriptEntry:
    role: str
    content: str
    order: int


class TranscriptLog:
    """Append-only, ordered conversation record."""

    def __init__(self, on_append=None):
        self._entries: list[TranscriptEntry] = []
        self._on_append = on_append

    def append(self, role: str, content: str) -> TranscriptEntry:
        entry = TranscriptEntry(role=role, content=content, order=len(self._entries))
        self._entries.append(entry)
        if self._on_append is not None:
            self._on_append(entry)
        return entry

    @property
    def entries(self) -> tuple[TranscriptEntry, ...]:
        return tuple(self._entries)

    def __len__(self):
        return len(self._entries)


class InterviewVoiceSession:
    """Drives one live conversation with the voice agent.

    Owns the transport, microphone capture, playback scheduler and tool
    dispatcher for a single session. Inbound events are handled strictly in
    arrival order; tool lookups run as tasks so audio keeps flowing while the
    backend answers. When the agent calls ``end_interview`` the connection is
    closed ``goodbye_delay`` seconds later so the goodbye can finish playing.
    """

    def __init__(
        self,
        transport,
        capture,
        scheduler,
        dispatcher,
        transcript: TranscriptLog | None = None,
        goodbye_delay: float = AGENT_GOODBYE_SECONDS,
        sleep=asyncio.sleep,
    ):
        self.transport = transport
        self.capture = capture
        self.scheduler = scheduler
        self.dispatcher = dispatcher
        self.transcript = transcript if transcript is not None else TranscriptLog()
        self.state = SessionConnectionState.IDLE
        self.error: str | None = None
        self.connected = False
        self.goodbye_delay = goodbye_delay
        self._sleep = sleep
        self._tool_tasks: set[asyncio.Task] = set()
        self._goodbye_task: asyncio.Task | None = None
        self._ending = False

    async def run(self):
        if self.state != SessionConnectionState.IDLE:
            raise RuntimeError(f"Session already started (state={self.state.value})")
        self.state = SessionConnectionState.CONNECTING
        try:
            try:
                await self.transport.open()
            except AgentConnectionError as e:
                self.state = SessionConnectionState.ERRORED
                self.error = str(e)
                self.transcript.append("system", f"Failed to connect: {e}")
                raise
            self.connected = True
            async for event in self.transport.events():
                await self.handle_event(event)
        finally:
            await self._shutdown()

    async def stop(self, reason: str = "Interview stopped by user"):
        """Caller-initiated end of the conversation."""
        if self.state in TERMINAL_STATES:
            return
        self.transcript.append("system", reason)
        await self.transport.close()

    async def handle_event(self, event):
        if isinstance(event, Open):
            self._transition(SessionConnectionState.CONFIGURING)
        elif isinstance(event, SettingsApplied):
            if self.state == SessionConnectionState.CONFIGURING:
                self._transition(SessionConnectionState.LISTENING)
                self.capture.start()
        elif isinstance(event, UserStartedSpeaking):
            self._take_turn(SessionConnectionState.LISTENING)
        elif isinstance(event, AgentStartedSpeaking):
            self._take_turn(SessionConnectionState.AGENT_SPEAKING)
        elif isinstance(event, ConversationText):
            self.transcript.append(event.role, event.content)
        elif isinstance(event, FunctionCallRequest):
            for call in event.calls:
                task = asyncio.create_task(self._answer_tool_call(call))
                self._tool_tasks.add(task)
                task.add_done_callback(self._tool_tasks.discard)
        elif isinstance(event, Audio):
            if self.state not in TERMINAL_STATES:
                self.scheduler.schedule(event.frame)
        elif isinstance(event, Error):
            log.error("event=agent_error code=%s message=%s", event.code, event.message)
            self.state = SessionConnectionState.ERRORED
            self.error = event.message
            self.capture.stop()
            self.transcript.append("system", f"Error: {event.message}")
        elif isinstance(event, Close):
            log.info("event=agent_closed code=%s reason=%s", event.code, event.reason)
            if self.state != SessionConnectionState.ERRORED:
                self.state = SessionConnectionState.CLOSED
            self.capture.stop()
            self.scheduler.reset()
        elif isinstance(event, Unhandled):
            payload = event.payload
            if payload.get("type") == "History" and payload.get("role") and payload.get("content"):
                self.transcript.append(str(payload["role"]), str(payload["content"]))
            else:
                log.debug("event=agent_unhandled type=%s", payload.get("type"))

    async def wait_for_tool_calls(self):
        if self._tool_tasks:
            await asyncio.gather(*list(self._tool_tasks), return_exceptions=True)

    def _transition(self, new_state: SessionConnectionState):
        if self.state in TERMINAL_STATES:
            return
        if self.state != new_state:
            log.debug("event=state_change from=%s to=%s", self.state.value, new_state.value)
        self.state = new_state

    def _take_turn(self, new_state: SessionConnectionState):
        # Speaking events before SettingsApplied must not skip capture start.
        if self.state not in CONVERSATION_STATES:
            log.debug("event=turn_ignored state=%s to=%s", self.state.value, new_state.value)
            return
        self._transition(new_state)

    async def _answer_tool_call(self, call: ToolCallRequest):
        response = await self.dispatcher.dispatch(call)
        self.transport.send_json(response.to_message())
        if response.ends_session and self._goodbye_task is None:
            self._goodbye_task = asyncio.create_task(self._close_after_goodbye())

    async def _close_after_goodbye(self):
        await self._sleep(self.goodbye_delay)
        self._ending = True
        await self.stop("Interview ended by agent")

    async def _shutdown(self):
        self.capture.stop()
        if self.state not in TERMINAL_STATES:
            self.state = SessionConnectionState.CLOSED
        self.scheduler.reset()
        for task in list(self._tool_tasks):
            task.cancel()
        await self.wait_for_tool_calls()
        if self._goodbye_task is not None:
            if not self._ending:
                self._goodbye_task.cancel()
            await asyncio.gather(self._goodbye_task, return_exceptions=True)
