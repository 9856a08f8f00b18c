"""HTTP client for fetching release artifacts."""

import hashlib
import os
from pathlib import Path

import aiohttp
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from provisioner.core.logging import get_logger

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024


class Fetcher:
    """Downloads artifacts over HTTP(S) and reports their sha256 digest.

    Content is streamed to a temporary file next to the destination and
    renamed into place only once complete, so an interrupted download never
    leaves a truncated artifact behind.
    """

    def __init__(self, connect_timeout: float = 30.0) -> None:
        """Initialize the fetcher.

        Args:
            connect_timeout: Seconds to wait for the connection to be established
        """
        self._timeout = aiohttp.ClientTimeout(total=None, sock_connect=connect_timeout)

    async def fetch(self, url: str, dest: Path, retries: int = 0) -> str:
        """Download a URL to a local path.

        Args:
            url: Source URL
            dest: Destination path
            retries: Extra attempts on transient network errors

        Returns:
            Hex sha256 digest of the content

        Raises:
            aiohttp.ClientError: If the download fails after all attempts
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=wait_exponential(multiplier=1, min=1, max=30),
            retry=retry_if_exception_type(aiohttp.ClientError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "Retrying download",
                        url=url,
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await self._fetch_once(url, dest)

        # AsyncRetrying with reraise=True either returns or raises
        raise RuntimeError("Unexpected retry state")

    async def _fetch_once(self, url: str, dest: Path) -> str:
        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(f".{dest.name}.partial")
        digest = hashlib.sha256()

        logger.debug("Starting download", url=url, dest=str(dest))

        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.get(url, raise_for_status=True) as response:
                    with partial.open("wb") as f:
                        async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                            digest.update(chunk)
                            f.write(chunk)
                        f.flush()
                        os.fsync(f.fileno())
            os.replace(partial, dest)
        finally:
            partial.unlink(missing_ok=True)

        logger.debug("Finished download", url=url, sha256=digest.hexdigest())
        return digest.hexdigest()


def sha256_file(path: Path) -> str:
    """Compute the hex sha256 digest of a local file."""
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()
