"""
HTTP archive transport.

Streams a bundle archive to the download directory with httpx, reporting
progress as (bytes_received, bytes_total) decimal strings. The total is "-1"
when the server sends no Content-Length.
"""

from __future__ import annotations

import time
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

import httpx

from ota_hotupdate.errors import TransportError
from ota_hotupdate.logging import get_logger
from ota_hotupdate.transports.base import ArchiveTransport

if TYPE_CHECKING:
    from ota_hotupdate.config import ArchiveTransportConfig
    from ota_hotupdate.models import ProgressCallback

logger = get_logger(__name__)

DEFAULT_SUFFIX = ".zip"


class HttpArchiveTransport(ArchiveTransport):
    """
    ArchiveTransport downloading over HTTP(S).

    Attributes:
        download_dir: Directory receiving downloaded archives.
        timeout: Network timeout in seconds.
        chunk_size: Streaming chunk size in bytes.
        default_headers: Headers sent with every request.

    Example:
        >>> transport = HttpArchiveTransport("/tmp/downloads")
        >>> path = await transport.fetch("https://example.com/bundle.zip")
    """

    def __init__(
        self,
        download_dir: Path | str,
        *,
        timeout: float = 60.0,
        chunk_size: int = 64 * 1024,
        default_headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the HttpArchiveTransport.

        Args:
            download_dir: Directory receiving downloaded archives.
            timeout: Network timeout in seconds.
            chunk_size: Streaming chunk size in bytes.
            default_headers: Headers sent with every request.
            transport: Optional httpx transport (e.g. httpx.MockTransport).
        """
        self.download_dir = Path(download_dir)
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.default_headers = dict(default_headers or {})
        self._transport = transport

    @classmethod
    def from_config(cls, config: ArchiveTransportConfig) -> HttpArchiveTransport:
        """Create an HttpArchiveTransport from configuration."""
        return cls(
            config.download_dir,
            timeout=config.timeout_seconds,
            chunk_size=config.chunk_size,
            default_headers=config.default_headers,
        )

    def _target_path(self, uri: str) -> Path:
        suffix = PurePosixPath(httpx.URL(uri).path).suffix or DEFAULT_SUFFIX
        return self.download_dir / f"{int(time.time() * 1000)}_hotupdate{suffix}"

    async def fetch(
        self,
        uri: str,
        headers: dict[str, str] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        request_headers = {**self.default_headers, **(headers or {})}

        try:
            target = self._target_path(uri)
        except httpx.InvalidURL as e:
            raise TransportError(f"Invalid URL: {e}", details={"uri": uri}) from e

        self.download_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading bundle", extra={"uri": uri, "path": str(target)})

        received = 0
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", uri, headers=request_headers) as response:
                    response.raise_for_status()
                    total = response.headers.get("Content-Length", "-1")

                    with open(target, "wb") as f:
                        async for chunk in response.aiter_bytes(self.chunk_size):
                            f.write(chunk)
                            received += len(chunk)
                            if on_progress is not None:
                                on_progress(str(received), total)
        except httpx.HTTPStatusError as e:
            target.unlink(missing_ok=True)
            raise TransportError(
                f"Download failed with HTTP {e.response.status_code}",
                details={"uri": uri, "status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            target.unlink(missing_ok=True)
            raise TransportError(
                f"Download failed: {e}",
                details={"uri": uri},
            ) from e
        except OSError as e:
            target.unlink(missing_ok=True)
            raise TransportError(
                f"Failed to write downloaded bundle: {e}",
                details={"uri": uri, "path": str(target)},
            ) from e
        except BaseException:
            # Progress callback errors and cancellation
            target.unlink(missing_ok=True)
            raise

        logger.info(
            "Bundle downloaded",
            extra={"uri": uri, "path": str(target), "bytes": received},
        )
        return str(target)
