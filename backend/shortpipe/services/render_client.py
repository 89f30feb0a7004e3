"""Cloud render service client.

The render service accepts a composition id plus input props and renders the
video in parallel chunks of ``frames_per_lambda`` frames. Progress is polled
by render id.

Usage:
    render = RenderClient("http://localhost:8700")
    handle = await render.submit(composition="MyVideo", codec="h264", input_props={...})
    progress = await render.get_progress(handle.render_id)
"""

import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shortpipe.services.transient import vendor_retry

logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RenderHandle(_CamelModel):
    render_id: str
    bucket_name: Optional[str] = None


class RenderProgress(_CamelModel):
    done: bool = False
    overall_progress: float = 0.0
    frames_rendered: int = 0
    output_file: Optional[str] = None
    fatal_error_encountered: bool = False
    errors: list[Any] = Field(default_factory=list)


class RenderClient:
    """Async client for the render service HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
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
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.timeout, connect=15.0),
                transport=self._transport,
            )
        return self._client

    @vendor_retry()
    async def submit(
        self,
        *,
        composition: str,
        codec: str,
        input_props: dict,
        frames_per_lambda: int = 400,
    ) -> RenderHandle:
        logger.info(
            f"POST /renders composition={composition} codec={codec} "
            f"durationInFrames={input_props.get('durationInFrames')}"
        )
        response = await self.client.post(
            "/renders",
            json={
                "composition": composition,
                "codec": codec,
                "inputProps": input_props,
                "framesPerLambda": frames_per_lambda,
            },
        )
        response.raise_for_status()
        handle = RenderHandle.model_validate(response.json())
        logger.info(f"  render_id: {handle.render_id}")
        return handle

    @vendor_retry()
    async def get_progress(self, render_id: str) -> RenderProgress:
        response = await self.client.get(f"/renders/{render_id}")
        response.raise_for_status()
        return RenderProgress.model_validate(response.json())

    def default_output_url(self, handle: RenderHandle) -> str:
        """Where the service writes output when progress omits ``outputFile``."""
        return f"{self.base_url}/renders/{handle.render_id}/out.mp4"

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
