import json

import httpx
import pytest

from agent_events import ToolCallRequest
from backend_client import BackendClient
from tool_dispatcher import CONTEXT_ERROR, INTERVIEW_ENDED, NO_CONTEXT_FOUND, ToolDispatcher


async def _unused_lookup(query, session_id):
    raise AssertionError("should not be called")


async def test_get_context_passes_query_and_session():
    seen = []

    async def lookup(query, session_id):
        seen.append((query, session_id))
        return "Remote work is allowed two days a week."

    dispatcher = ToolDispatcher(lookup, session_id="s-9")
    response = await dispatcher.dispatch(ToolCallRequest("c1", "get_context", '{"query": " remote work "}'))

    assert seen == [("remote work", "s-9")]
    assert response.to_message() == {
        "type": "FunctionCallResponse",
        "id": "c1",
        "name": "get_context",
        "content": "Remote work is allowed two days a week.",
    }


async def test_empty_context_and_lookup_failure():
    async def empty(query, session_id):
        return ""

    async def broken(query, session_id):
        raise httpx.ConnectError("backend down")

    request = ToolCallRequest("c1", "get_context", {"query": "x"})
    assert (await ToolDispatcher(empty).dispatch(request)).content == NO_CONTEXT_FOUND
    assert (await ToolDispatcher(broken).dispatch(request)).content == CONTEXT_ERROR


async def test_unknown_tool_is_answered():
    async def lookup(query, session_id):
        raise AssertionError("should not be called")

    response = await ToolDispatcher(lookup).dispatch(ToolCallRequest("c7", "send_offer", "{}"))
    assert response.id == "c7"
    assert response.content == "Function 'send_offer' is not implemented."


async def test_recall_memory_returns_backend_json():
    seen = []

    async def recall(session_id, query):
        seen.append((session_id, query))
        return {"covered_topics": ["salary"], "facts": {"salary": "120k"}, "instruction": "Do NOT ask about: salary."}

    dispatcher = ToolDispatcher(_unused_lookup, session_id="s-3", recall=recall)
    broad = await dispatcher.dispatch(ToolCallRequest("m1", "recall_interview_memory", "{}"))
    narrow = await dispatcher.dispatch(ToolCallRequest("m2", "recall_interview_memory", {"query": " salary "}))

    assert seen == [("s-3", None), ("s-3", "salary")]
    assert json.loads(broad.content)["facts"] == {"salary": "120k"}
    assert narrow.ends_session is False


async def test_recall_memory_fallbacks():
    async def broken(session_id, query):
        raise httpx.ConnectError("backend down")

    request = ToolCallRequest("m1", "recall_interview_memory", "{}")
    no_session = await ToolDispatcher(_unused_lookup, recall=broken).dispatch(request)
    failed = await ToolDispatcher(_unused_lookup, session_id="s-3", recall=broken).dispatch(request)

    assert json.loads(no_session.content) == {"covered_topics": [], "facts": {}, "instruction": "No session"}
    assert json.loads(failed.content)["instruction"] == "Memory unavailable"


async def test_end_interview_ends_backend_session():
    ended = []

    async def end_session(session_id):
        ended.append(session_id)
        return {"success": True}

    dispatcher = ToolDispatcher(_unused_lookup, session_id="s-4", end_session=end_session)
    args = '{"reason": "candidate_request", "summary": "Candidate had to leave."}'
    response = await dispatcher.dispatch(ToolCallRequest("e1", "end_interview", args))

    assert ended == ["s-4"]
    assert response.content == INTERVIEW_ENDED
    assert response.ends_session is True
    assert "ends_session" not in response.to_message()


async def test_end_interview_says_goodbye_even_if_backend_fails():
    async def end_session(session_id):
        raise httpx.ConnectError("backend down")

    dispatcher = ToolDispatcher(_unused_lookup, session_id="s-4", end_session=end_session)
    response = await dispatcher.dispatch(ToolCallRequest("e1", "end_interview", "{}"))
    assert response.content == INTERVIEW_ENDED
    assert response.ends_session is True


async def test_backend_client_requests():
    requests = []

    def handler(request: httpx.Request):
        requests.append(request)
        if request.url.path == "/api/agent/context":
            return httpx.Response(200, json={"context": "Benefits include dental."})
        if request.url.path == "/api/agent/recall":
            return httpx.Response(200, json={"covered_topics": ["salary"], "facts": {}, "instruction": "x"})
        if request.url.path.endswith("/agent-config"):
            return httpx.Response(200, json={"type": "Settings"})
        if request.url.path.endswith("/logs"):
            return httpx.Response(200, json={"id": 1})
        if request.url.path.endswith("/end"):
            return httpx.Response(200, json={"status": "completed"})
        return httpx.Response(404)

    client = BackendClient("http://backend.test", transport=httpx.MockTransport(handler))
    try:
        assert await client.fetch_context("benefits", "s-1") == "Benefits include dental."
        assert await client.fetch_agent_settings("s-1") == {"type": "Settings"}
        await client.log_interaction("s-1", "candidate", "Hello", {"order": 0})
        assert (await client.end_session("s-1"))["status"] == "completed"
        assert (await client.recall_memory("s-1", "salary"))["covered_topics"] == ["salary"]
    finally:
        await client.aclose()

    assert json.loads(requests[0].content) == {"query": "benefits", "session_id": "s-1"}
    assert json.loads(requests[2].content) == {"speaker": "candidate", "message": "Hello", "metadata": {"order": 0}}
    assert json.loads(requests[4].content) == {"session_id": "s-1", "query": "salary"}


async def test_backend_client_raises_on_error_status():
    client = BackendClient("http://backend.test", transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    try:
        with pytest.raises(httpx.HTTPStatusError):
            await client.fetch_context("anything")
    finally:
        await client.aclose()
