"""AssemblyAI transcription client with word-level timestamps.

Submits an audio URL, then polls until the transcript completes, errors or
the configured wait is exhausted.
"""

import asyncio
import logging
import time
from typing import Optional

import httpx
from pydantic import BaseModel

from shortpipe.errors import StageExecutionError, TranscriptionFailedError
from shortpipe.services.transient import vendor_retry

logger = logging.getLogger(__name__)


class TranscriptWord(BaseModel):
    """A recognised word; start and end are milliseconds."""

    text: str
    start: int
    end: int


class Transcript(BaseModel):
    id: str
    status: str
    error: Optional[str] = None
    words: Optional[list[TranscriptWord]] = None


class AssemblyAIClient:
    """Async client for the AssemblyAI v2 transcript API."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.assemblyai.com",
        *,
        timeout: float = 60.0,
        poll_interval: float = 3.0,
        max_wait: float = 600.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"authorization": self.api_key or ""},
                timeout=httpx.Timeout(self.timeout, connect=15.0),
                transport=self._transport,
            )
        return self._client

    @vendor_retry()
    async def submit(self, audio_url: str) -> str:
        response = await self.client.post("/v2/transcript", json={"audio_url": audio_url})
        response.raise_for_status()
        transcript_id = response.json()["id"]
        logger.info(f"Submitted transcript {transcript_id}")
        return transcript_id

    @vendor_retry()
    async def fetch(self, transcript_id: str) -> Transcript:
        response = await self.client.get(f"/v2/transcript/{transcript_id}")
        response.raise_for_status()
        return Transcript.model_validate(response.json())

    async def transcribe(self, audio_url: str) -> list[TranscriptWord]:
        """Transcribe ``audio_url`` and return its words.

        Raises:
            TranscriptionFailedError: The service reported an error status.
            StageExecutionError: The transcript did not finish in time.
        """
        transcript_id = await self.submit(audio_url)
        deadline = time.monotonic() + self.max_wait

        while True:
            transcript = await self.fetch(transcript_id)
            if transcript.status == "completed":
                words = transcript.words or []
                logger.info(f"Transcript {transcript_id} completed with {len(words)} words")
                return words
            if transcript.status == "error":
                raise TranscriptionFailedError(
                    f"Transcription failed: {transcript.error or 'unknown error'}"
                )
            if time.monotonic() >= deadline:
                raise StageExecutionError(
                    f"Transcription {transcript_id} timed out after {self.max_wait:.0f} seconds"
                )
            logger.debug(f"Transcript {transcript_id} status={transcript.status}")
            await asyncio.sleep(self.poll_interval)

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
