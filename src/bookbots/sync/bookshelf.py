"""REST client for the Bookshelf (Readarr-compatible) acquisition service."""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from bookbots.errors import RemoteAPIError
from bookbots.sync.schemas import BookCreateRequest

logger = logging.getLogger(__name__)


class BookshelfClient:
    """Thin wrapper over the four endpoints the sync uses.

    Every call authenticates with the ``X-Api-Key`` header and raises
    :class:`RemoteAPIError` on transport errors, unexpected statuses and
    undecodable bodies.
    """

    def __init__(self, session: aiohttp.ClientSession, base_url: str, api_key: str) -> None:
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    @property
    def _headers(self) -> dict[str, str]:
        return {"X-Api-Key": self.api_key}

    async def _get_list(self, path: str, params: dict[str, str] | None = None) -> list[dict[str, Any]]:
        url = f"{self.base_url}{path}"
        try:
            async with self.session.get(url, params=params, headers=self._headers) as response:
                status = response.status
                if status != 200:
                    body = await response.text()
                    raise RemoteAPIError(
                        f"GET {path} returned status {status}: {body}", status=status, body=body
                    )
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise RemoteAPIError(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise RemoteAPIError(f"failed to decode {path} response: {e}", status=status) from e

        if not isinstance(data, list):
            raise RemoteAPIError(f"unexpected {path} response: expected a list", status=status)
        return [item for item in data if isinstance(item, dict)]

    async def list_library(self) -> list[dict[str, Any]]:
        """All books already in the library."""
        return await self._get_list("/api/v1/book")

    async def lookup_books(self, term: str) -> list[dict[str, Any]]:
        return await self._get_list("/api/v1/book/lookup", {"term": term})

    async def lookup_authors(self, term: str) -> list[dict[str, Any]]:
        return await self._get_list("/api/v1/author/lookup", {"term": term})

    async def add_book(self, request: BookCreateRequest) -> None:
        """Submit a create request; 200 and 201 both count as success."""
        try:
            async with self.session.post(
                f"{self.base_url}/api/v1/book", json=request.to_payload(), headers=self._headers
            ) as response:
                status = response.status
                body = await response.text()
        except (aiohttp.ClientError, TimeoutError) as e:
            raise RemoteAPIError(f"failed to add book: {e}") from e

        if status not in (200, 201):
            raise RemoteAPIError(
                f"bookshelf API returned status {status}: {body}", status=status, body=body
            )
