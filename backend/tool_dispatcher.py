import json
import logging
from dataclasses import dataclass

from agent_events import ToolCallRequest

log = logging.getLogger("gennie.tools")

NO_CONTEXT_FOUND = "No context found."
CONTEXT_ERROR = "Error retrieving context."
INTERVIEW_ENDED = "Interview ended successfully. Goodbye!"


def not_implemented(name: str) -> str:
    return f"Function '{name}' is not implemented."


def empty_memory(instruction: str) -> str:
    return json.dumps({"covered_topics": [], "facts": {}, "instruction": instruction})


@dataclass(frozen=True)
class ToolCallResponse:
    id: str
    name: str
    content: str
    ends_session: bool = False

    def to_message(self) -> dict:
        return {
            "type": "FunctionCallResponse",
            "id": self.id,
            "name": self.name,
            "content": self.content,
        }


class ToolDispatcher:
    """Answers agent tool calls; every request yields exactly one response.

    ``lookup`` is an async callable ``(query, session_id) -> str``, normally
    ``BackendClient.fetch_context``. ``recall`` (``(session_id, query) -> dict``)
    and ``end_session`` (``(session_id) -> dict``) back the memory and
    end-of-interview tools; without them those tools answer with fallbacks.
    """

    def __init__(self, lookup, session_id: str | None = None, recall=None, end_session=None):
        self._lookup = lookup
        self._recall = recall
        self._end_session = end_session
        self.session_id = session_id
        self._handlers = {
            "get_context": self._get_context,
            "recall_interview_memory": self._recall_memory,
            "end_interview": self._end_interview,
        }

    async def dispatch(self, request: ToolCallRequest) -> ToolCallResponse:
        handler = self._handlers.get(request.name)
        if handler is None:
            log.warning("event=tool_unknown name=%s id=%s", request.name, request.id)
            return ToolCallResponse(request.id, request.name, not_implemented(request.name))
        content = await handler(request.parsed_arguments())
        ends_session = request.name == "end_interview"
        return ToolCallResponse(request.id, request.name, content, ends_session=ends_session)

    async def _get_context(self, args: dict) -> str:
        query = str(args.get("query", "")).strip()
        log.info("event=tool_get_context query=%r", query[:120])
        try:
            context = await self._lookup(query, self.session_id)
        except Exception as e:
            log.error("event=tool_get_context_failed error=%s", e)
            return CONTEXT_ERROR
        return context or NO_CONTEXT_FOUND

    async def _recall_memory(self, args: dict) -> str:
        if not self.session_id:
            return empty_memory("No session")
        if self._recall is None:
            return empty_memory("Memory unavailable")
        query = str(args.get("query") or "").strip() or None
        log.info("event=tool_recall_memory session_id=%s query=%r", self.session_id, query)
        try:
            memory = await self._recall(self.session_id, query)
        except Exception as e:
            log.error("event=tool_recall_memory_failed error=%s", e)
            return empty_memory("Memory unavailable")
        return json.dumps(memory)

    async def _end_interview(self, args: dict) -> str:
        log.info(
            "event=tool_end_interview session_id=%s reason=%s summary=%r",
            self.session_id, args.get("reason"), str(args.get("summary") or "")[:200],
        )
        if self.session_id and self._end_session is not None:
            try:
                await self._end_session(self.session_id)
            except Exception as e:
                log.error("event=tool_end_interview_failed session_id=%s error=%s", self.session_id, e)
        return INTERVIEW_ENDED
