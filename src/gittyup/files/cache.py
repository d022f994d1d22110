"""File content cache with request coalescing.

Contents are addressed by ``(repository_id, commit_id, path)``. Since a
commit never changes, a resolved entry is valid for as long as the cache
lives; nothing is evicted until ``reset()``.

Concurrent requests for the same key share a single HTTP request. The
in-flight marker is dropped when that request finishes, successfully or
not, so a failed path can be retried.

``reset()`` forgets everything, including in-flight requests, but does not
cancel them. Each request remembers the generation it started in and only
writes back if the cache has not been reset since.
"""

from __future__ import annotations

import asyncio
from urllib.parse import quote

import httpx

from gittyup.logging import get_logger

log = get_logger("files")

CacheKey = tuple[str, str, str]


class FileFetchError(Exception):
    """A file's content could not be retrieved.

    Attributes:
        path: Repository-relative path that failed.
        status_code: HTTP status, or None for transport-level failures.
    """

    def __init__(self, path: str, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.status_code = status_code


class FileContentCache:
    """Memoizes file contents served by the room server's file endpoint.

    Example:
        cache = FileContentCache("http://localhost:8080")
        text = await cache.fetch("abc123", "deadbeef", "src/main.js")
        cache.reset()
        await cache.aclose()
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Create an empty cache.

        Args:
            base_url: Server root, e.g. ``http://localhost:8080``.
            client: Optional shared client. If omitted the cache creates and
                owns one, closed by ``aclose()``.
            timeout: Request timeout for an owned client, in seconds.
        """
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

        self._contents: dict[CacheKey, str] = {}
        self._pending: dict[CacheKey, asyncio.Future[str]] = {}
        self._generation = 0

        # Number of HTTP requests issued, for operator visibility
        self.request_count = 0

    def __len__(self) -> int:
        return len(self._contents)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def url_for(self, repository_id: str, commit_id: str, path: str) -> str:
        return (
            f"{self._base_url}/v1/file/"
            f"{quote(repository_id, safe='')}/{quote(commit_id, safe='')}/{quote(path)}"
        )

    def get_cached(self, repository_id: str, commit_id: str, path: str) -> str | None:
        """Return resolved content without fetching, or None."""
        return self._contents.get((repository_id, commit_id, path))

    async def fetch(self, repository_id: str, commit_id: str, path: str) -> str:
        """Return the content of ``path`` at ``commit_id``.

        Raises:
            FileFetchError: If the server reports an error or is unreachable.
        """
        key = (repository_id, commit_id, path)

        cached = self._contents.get(key)
        if cached is not None:
            return cached

        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._load(key, self._generation))
            pending.add_done_callback(_observe_failure)
            self._pending[key] = pending

        # One caller giving up must not cancel the request the others share
        return await asyncio.shield(pending)

    async def _load(self, key: CacheKey, generation: int) -> str:
        try:
            content = await self._request(*key)
        finally:
            if generation == self._generation:
                self._pending.pop(key, None)

        if generation == self._generation:
            self._contents[key] = content
        else:
            log.debug("Dropping stale fetch result for %s", key[2])
        return content

    async def _request(self, repository_id: str, commit_id: str, path: str) -> str:
        url = self.url_for(repository_id, commit_id, path)
        self.request_count += 1
        log.debug("GET %s", url)

        try:
            response = await self._get_client().get(url)
        except httpx.HTTPError as e:
            raise FileFetchError(path, f"Request failed: {e}") from e

        if not response.is_success:
            raise FileFetchError(
                path,
                f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
            )
        return response.text

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    def reset(self) -> None:
        """Forget all cached and in-flight entries.

        In-flight requests keep running; their results are discarded.
        """
        self._generation += 1
        self._contents.clear()
        self._pending.clear()

    async def aclose(self) -> None:
        """Close the HTTP client if this cache created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def _observe_failure(task: asyncio.Future[str]) -> None:
    # Every caller may have been cancelled before the shared load finished
    if not task.cancelled() and task.exception() is not None:
        log.debug("Shared fetch failed: %s", task.exception())
