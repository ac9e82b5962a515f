"""Downloads generated audio from provider CDNs."""

import logging
from dataclasses import dataclass

import httpx

from trackforge.domain.exceptions import DownloadFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DownloadedMedia:
    """Bytes plus what the server said about them."""

    data: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


class MediaDownloader:
    """Fetch result media with a hard timeout.

    Any non-2xx answer or network problem becomes ``DownloadFailed``. The caller
    decides whether to retry; the job itself is never marked failed here.
    """

    def __init__(
        self,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def download(self, url: str) -> DownloadedMedia:
        client = await self._get_client()
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DownloadFailed(url, f"HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise DownloadFailed(url, "timed out") from e
        except httpx.RequestError as e:
            raise DownloadFailed(url, str(e) or e.__class__.__name__) from e

        if not response.content:
            raise DownloadFailed(url, "empty body")

        content_type = response.headers.get("content-type", "audio/mpeg").split(";")[0]
        logger.debug("Downloaded %d bytes from %s", len(response.content), url)
        return DownloadedMedia(data=response.content, content_type=content_type)
