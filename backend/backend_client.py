import logging

import httpx

from config import BACKEND_TIMEOUT, BACKEND_URL

log = logging.getLogger("gennie.backend_client")


class BackendClient:
    """HTTP calls the voice client makes to the interview backend."""

    def __init__(self, base_url: str = BACKEND_URL, timeout: float = BACKEND_TIMEOUT, transport=None):
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def aclose(self):
        await self._client.aclose()

    async def fetch_context(self, query: str, session_id: str | None = None) -> str:
        payload = {"query": query}
        if session_id:
            payload["session_id"] = session_id
        resp = await self._client.post("/api/agent/context", json=payload)
        resp.raise_for_status()
        return str(resp.json().get("context") or "")

    async def fetch_agent_settings(self, session_id: str) -> dict:
        resp = await self._client.get(f"/api/sessions/{session_id}/agent-config")
        resp.raise_for_status()
        return resp.json()

    async def log_interaction(self, session_id: str, speaker: str, message: str, metadata: dict | None = None):
        resp = await self._client.post(
            f"/api/sessions/{session_id}/logs",
            json={"speaker": speaker, "message": message, "metadata": metadata},
        )
        resp.raise_for_status()

    async def end_session(self, session_id: str) -> dict:
        resp = await self._client.post(f"/api/sessions/{session_id}/end")
        resp.raise_for_status()
        return resp.json()

    async def recall_memory(self, session_id: str, query: str | None = None) -> dict:
        payload = {"session_id": session_id}
        if query:
            payload["query"] = query
        resp = await self._client.post("/api/agent/recall", json=payload)
        resp.raise_for_status()
        return resp.json()
