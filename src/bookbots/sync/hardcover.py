"""Hardcover GraphQL client: the user's want-to-read list."""

from __future__ import annotations

import logging

import aiohttp
from pydantic import ValidationError

from bookbots.constants import HARDCOVER_GRAPHQL_URL
from bookbots.errors import RemoteAPIError
from bookbots.sync.schemas import WANT_TO_READ_QUERY, HardcoverBook, WantToReadResponse

logger = logging.getLogger(__name__)


def bearer(api_key: str) -> str:
    """Authorization header value; a key already prefixed ``Bearer `` is kept."""
    if len(api_key) > 7 and api_key.startswith("Bearer "):
        return api_key
    return f"Bearer {api_key}"


class HardcoverClient:
    """Usage::

    async with aiohttp.ClientSession(timeout=timeout) as session:
        books = await HardcoverClient(session, api_key).fetch_want_to_read()
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_key: str,
        url: str = HARDCOVER_GRAPHQL_URL,
    ) -> None:
        self.session = session
        self.api_key = api_key
        self.url = url

    async def fetch_want_to_read(self) -> list[HardcoverBook]:
        """Run the want-to-read query and flatten the result.

        Raises:
            RemoteAPIError: Transport failure, non-200 status, undecodable
                body, a GraphQL ``errors`` entry, or no ``me`` data.
        """
        headers = {"Authorization": bearer(self.api_key)}
        try:
            async with self.session.post(
                self.url, json={"query": WANT_TO_READ_QUERY}, headers=headers
            ) as response:
                status = response.status
                body = await response.text()
        except (aiohttp.ClientError, TimeoutError) as e:
            raise RemoteAPIError(f"failed to fetch want-to-read list: {e}") from e

        if status != 200:
            raise RemoteAPIError(
                f"hardcover API returned status {status}: {body}", status=status, body=body
            )

        try:
            result = WantToReadResponse.model_validate_json(body)
        except ValidationError as e:
            raise RemoteAPIError(f"failed to decode response: {e}", status=status, body=body) from e

        if result.errors:
            raise RemoteAPIError(f"hardcover API error: {result.errors[0].message}", status=status)
        if result.data is None or not result.data.me:
            raise RemoteAPIError("no user data returned from Hardcover API", status=status)

        return [HardcoverBook.from_work(ub.book) for ub in result.data.me[0].user_books]
