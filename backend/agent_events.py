"""Typed events read off the voice agent connection.

Every inbound message becomes exactly one of the dataclasses below; the
session state machine dispatches on their type.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Union

from audio_frames import AudioFrame


@dataclass(frozen=True)
class ToolCallRequest:
    id: str
    name: str
    arguments: Any = None

    def parsed_arguments(self) -> dict:
        args = self.arguments
        if isinstance(args, str):
            try:
                args = json.loads(args) if args.strip() else {}
            except json.JSONDecodeError:
                args = {}
        if not isinstance(args, dict):
            args = {}
        return args


@dataclass(frozen=True)
class Open:
    pass


@dataclass(frozen=True)
class Close:
    code: int | None = None
    reason: str = ""


@dataclass(frozen=True)
class Error:
    message: str
    code: str | None = None


@dataclass(frozen=True)
class SettingsApplied:
    pass


@dataclass(frozen=True)
class UserStartedSpeaking:
    pass


@dataclass(frozen=True)
class AgentStartedSpeaking:
    pass


@dataclass(frozen=True)
class ConversationText:
    role: str
    content: str


@dataclass(frozen=True)
class FunctionCallRequest:
    calls: tuple[ToolCallRequest, ...]


@dataclass(frozen=True)
class Audio:
    frame: AudioFrame


@dataclass(frozen=True)
class Unhandled:
    payload: dict = field(default_factory=dict)


AgentEvent = Union[
    Open,
    Close,
    Error,
    SettingsApplied,
    UserStartedSpeaking,
    AgentStartedSpeaking,
    ConversationText,
    FunctionCallRequest,
    Audio,
    Unhandled,
]


def _parse_function_calls(msg: dict) -> tuple[ToolCallRequest, ...]:
    calls = []
    functions = msg.get("functions")
    if isinstance(functions, list):
        for item in functions:
            if not isinstance(item, dict):
                continue
            calls.append(ToolCallRequest(
                id=str(item.get("id", "")),
                name=str(item.get("name", "")),
                arguments=item.get("arguments", item.get("input")),
            ))
    elif msg.get("function_name"):
        # Older single-call shape
        calls.append(ToolCallRequest(
            id=str(msg.get("function_call_id", "")),
            name=str(msg["function_name"]),
            arguments=msg.get("input"),
        ))
    return tuple(calls)


def parse_message(raw, sample_rate: int, index: int = 0) -> AgentEvent:
    """Turn one websocket message into a typed event. Binary payloads are agent audio."""
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return Audio(AudioFrame(pcm=bytes(raw), sample_rate=sample_rate, index=index))

    try:
        msg = json.loads(raw)
    except (TypeError, ValueError):
        return Unhandled({"type": "Unparseable", "raw": str(raw)[:500]})
    if not isinstance(msg, dict):
        return Unhandled({"type": "Unparseable", "raw": str(raw)[:500]})

    evt = msg.get("type", "")
    if evt == "SettingsApplied":
        return SettingsApplied()
    elif evt == "UserStartedSpeaking":
        return UserStartedSpeaking()
    elif evt == "AgentStartedSpeaking":
        return AgentStartedSpeaking()
    elif evt == "ConversationText":
        return ConversationText(role=str(msg.get("role", "")), content=str(msg.get("content", "")))
    elif evt == "FunctionCallRequest":
        return FunctionCallRequest(calls=_parse_function_calls(msg))
    elif evt == "Error":
        message = msg.get("description") or msg.get("message") or "Unknown agent error"
        code = msg.get("code")
        return Error(message=str(message), code=str(code) if code is not None else None)
    return Unhandled(msg)
