"""Run a live interview session from the terminal.

    python backend/voice_client.py --session-id <uuid>

Fetches the agent settings for the session from the backend, talks to the
voice agent through the local microphone and speaker, uploads every transcript
line, and ends the session (which queues its analysis) on exit or Ctrl-C.
"""

import argparse
import asyncio
import logging
import signal
import sys

import httpx

from agent_session import InterviewVoiceSession, TranscriptEntry, TranscriptLog
from agent_transport import AgentConnectionError, AgentTransport
from audio_capture import MicrophoneCapture
from backend_client import BackendClient
from config import AGENT_URL, BACKEND_URL, DEEPGRAM_API_KEY, setup_logging
from playback import PlaybackScheduler, SoundDeviceOutput
from tool_dispatcher import ToolDispatcher

log = logging.getLogger("gennie.voice_client")

ROLE_TO_SPEAKER = {
    "user": "candidate",
    "human": "candidate",
    "candidate": "candidate",
    "assistant": "agent",
    "agent": "agent",
}


def speaker_for_role(role: str) -> str:
    return ROLE_TO_SPEAKER.get((role or "").lower(), "system")


class TranscriptUploader:
    """Posts transcript entries to the backend one at a time, in order."""

    def __init__(self, backend: BackendClient, session_id: str):
        self._backend = backend
        self.session_id = session_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def submit(self, entry: TranscriptEntry):
        self._queue.put_nowait(entry)

    async def close(self):
        if self._task is None:
            return
        await self._queue.join()
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def _run(self):
        while True:
            entry = await self._queue.get()
            try:
                await self._backend.log_interaction(
                    self.session_id,
                    speaker_for_role(entry.role),
                    entry.content,
                    {"order": entry.order, "role": entry.role},
                )
            except Exception as e:
                log.warning("event=log_upload_failed order=%d error=%s", entry.order, e)
            finally:
                self._queue.task_done()


def _print_entry(entry: TranscriptEntry):
    print(f"{speaker_for_role(entry.role):>9}: {entry.content}", flush=True)


async def run_voice_session(session_id: str, backend_url: str, agent_url: str, api_key: str) -> int:
    backend = BackendClient(backend_url)
    output = SoundDeviceOutput()
    try:
        settings = await backend.fetch_agent_settings(session_id)
        uploader = TranscriptUploader(backend, session_id)

        def on_append(entry: TranscriptEntry):
            _print_entry(entry)
            uploader.submit(entry)

        transport = AgentTransport(settings, url=agent_url, api_key=api_key)
        session = InterviewVoiceSession(
            transport=transport,
            capture=MicrophoneCapture(transport),
            scheduler=PlaybackScheduler(output),
            dispatcher=ToolDispatcher(
                backend.fetch_context,
                session_id=session_id,
                recall=backend.recall_memory,
                end_session=backend.end_session,
            ),
            transcript=TranscriptLog(on_append=on_append),
        )

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, lambda: asyncio.ensure_future(session.stop()))
        except NotImplementedError:
            pass

        uploader.start()
        try:
            await session.run()
        except AgentConnectionError as e:
            print(f"Could not connect to the voice agent: {e}", file=sys.stderr)
            return 1
        finally:
            await uploader.close()
            if session.connected:
                try:
                    await backend.end_session(session_id)
                    print("Session ended, analysis queued.")
                except httpx.HTTPError as e:
                    log.error("event=end_session_failed session_id=%s error=%s", session_id, e)

        if session.error:
            print(f"Session ended with an error: {session.error}", file=sys.stderr)
            return 1
        return 0
    finally:
        output.close()
        await backend.aclose()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Live voice interview client")
    parser.add_argument("--session-id", required=True, help="Interview session id")
    parser.add_argument("--backend-url", default=BACKEND_URL, help=f"Backend base URL (default: {BACKEND_URL})")
    parser.add_argument("--agent-url", default=AGENT_URL, help="Voice agent websocket URL")
    parser.add_argument("--api-key", default=DEEPGRAM_API_KEY, help="Voice agent API key (default: $DEEPGRAM_API_KEY)")
    args = parser.parse_args(argv)

    setup_logging()
    if not args.api_key:
        print("DEEPGRAM_API_KEY not configured", file=sys.stderr)
        return 2
    return asyncio.run(run_voice_session(args.session_id, args.backend_url, args.agent_url, args.api_key))


if __name__ == "__main__":
    raise SystemExit(main())
