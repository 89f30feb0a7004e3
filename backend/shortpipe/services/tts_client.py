"""ElevenLabs text-to-speech client.

Usage:
    tts = ElevenLabsClient(api_key)
    mp3 = await tts.synthesize("Hello there", voice_id="JBFqnCBsd6RMkjVDRZzb")
"""

import logging
from typing import Optional

import httpx

from shortpipe.services.transient import vendor_retry

logger = logging.getLogger(__name__)


class ElevenLabsClient:
    """Async client for the ElevenLabs text-to-speech endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.elevenlabs.io",
        *,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"xi-api-key": self.api_key or ""},
                timeout=httpx.Timeout(self.timeout, connect=15.0),
                transport=self._transport,
            )
        return self._client

    @vendor_retry()
    async def synthesize(
        self,
        text: str,
        *,
        voice_id: str,
        model_id: str = "eleven_multilingual_v2",
        output_format: str = "mp3_44100_128",
    ) -> bytes:
        """Convert ``text`` to speech and return the encoded audio bytes."""
        logger.info(f"POST /v1/text-to-speech/{voice_id} ({len(text)} chars, {model_id})")
        response = await self.client.post(
            f"/v1/text-to-speech/{voice_id}",
            params={"output_format": output_format},
            json={"text": text, "model_id": model_id},
        )
        response.raise_for_status()
        logger.info(f"  received {len(response.content)} bytes of audio")
        return response.content

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
