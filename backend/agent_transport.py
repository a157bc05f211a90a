import asyncio
import json
import logging

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from agent_events import Close, Open, parse_message
from audio_frames import AudioFrame
from config import AGENT_KEEPALIVE_SECONDS, AGENT_URL, DEEPGRAM_API_KEY, SAMPLE_RATE

log = logging.getLogger("gennie.transport")


class AgentConnectionError(Exception):
    pass


class AgentTransport:
    """Bidirectional websocket to the voice agent.

    The settings message is sent as the very first frame after the socket
    opens; ``is_open`` only turns true afterwards, so no audio can precede it.
    Everything sent later goes through one queue drained by a single writer
    task, which keeps outbound order intact.
    """

    def __init__(
        self,
        settings: dict,
        url: str = AGENT_URL,
        api_key: str = DEEPGRAM_API_KEY,
        sample_rate: int = SAMPLE_RATE,
        keepalive_seconds: float = AGENT_KEEPALIVE_SECONDS,
        connect=websockets.connect,
    ):
        self.settings = settings
        self.url = url
        self.sample_rate = sample_rate
        self._api_key = api_key
        self._keepalive_seconds = keepalive_seconds
        self._connect = connect
        self._ws = None
        self._open = False
        self._outbox: asyncio.Queue | None = None
        self._tasks: list[asyncio.Task] = []

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self):
        if self._ws is not None:
            raise AgentConnectionError("Transport already opened")
        try:
            self._ws = await self._connect(
                self.url,
                additional_headers={"Authorization": f"Token {self._api_key}"},
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            log.error("event=agent_connect_failed url=%s error=%s", self.url, e)
            raise AgentConnectionError(f"Could not connect to voice agent: {e}") from e

        try:
            await self._ws.send(json.dumps(self.settings))
        except ConnectionClosed as e:
            raise AgentConnectionError(f"Connection closed before settings were sent: {e}") from e
        log.info("event=agent_connected url=%s", self.url)

        self._outbox = asyncio.Queue()
        self._open = True
        self._tasks.append(asyncio.create_task(self._writer()))
        if self._keepalive_seconds and self._keepalive_seconds > 0:
            self._tasks.append(asyncio.create_task(self._keepalive()))

    def send_audio(self, frame: AudioFrame) -> bool:
        if not self._open:
            return False
        self._outbox.put_nowait(frame.pcm)
        return True

    def send_json(self, message: dict) -> bool:
        if not self._open:
            log.warning("event=send_dropped type=%s reason=closed", message.get("type"))
            return False
        self._outbox.put_nowait(json.dumps(message))
        return True

    async def events(self):
        """Yield Open, then every inbound message as a typed event, then one Close."""
        if self._ws is None:
            raise AgentConnectionError("Transport is not open")
        yield Open()
        index = 0
        try:
            async for raw in self._ws:
                yield parse_message(raw, self.sample_rate, index)
                index += 1
        except ConnectionClosed as e:
            log.warning("event=agent_connection_lost error=%s", e)
        self._open = False
        await self._stop_tasks()
        yield Close(code=getattr(self._ws, "close_code", None), reason=getattr(self._ws, "close_reason", None) or "")

    async def close(self):
        self._open = False
        await self._stop_tasks()
        if self._ws is not None:
            await self._ws.close()
            log.info("event=agent_closed")

    async def _writer(self):
        while True:
            item = await self._outbox.get()
            try:
                await self._ws.send(item)
            except ConnectionClosed:
                log.debug("event=writer_stopped reason=closed")
                return

    async def _keepalive(self):
        while self._open:
            await asyncio.sleep(self._keepalive_seconds)
            if self._open:
                self._outbox.put_nowait(json.dumps({"type": "KeepAlive"}))

    async def _stop_tasks(self):
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
