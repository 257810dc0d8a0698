"""Pydantic models for the Hardcover and Bookshelf wire formats.

Two groups live here:

* Response models for the Hardcover want-to-read GraphQL query, flattened
  into :class:`HardcoverBook` for the rest of the sync code.
* :class:`BookCreateRequest`, the typed builder for ``POST /api/v1/book``.
  The first lookup result is carried through as-is and the fields the sync
  sets itself (profiles, editions, author, add options) are named fields
  that override it.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

WANT_TO_READ_QUERY = (
    "query GetWantToRead { me { user_books(where: {status_id: {_eq: 1}}) { book { id title "
    "contributions { author { id name } } "
    "editions(limit: 1, order_by: {users_count: desc_nulls_last}) { isbn_13 isbn_10 } } } } }"
)


# ---------------------------------------------------------------------------
# Hardcover GraphQL response
# ---------------------------------------------------------------------------


class ContributionAuthor(BaseModel):
    id: int = 0
    name: str = ""

    model_config = ConfigDict(extra="ignore")


class Contribution(BaseModel):
    author: ContributionAuthor | None = None

    model_config = ConfigDict(extra="ignore")


class Edition(BaseModel):
    isbn_13: str | None = None
    isbn_10: str | None = None

    model_config = ConfigDict(extra="ignore")


class HardcoverWork(BaseModel):
    id: int
    title: str = ""
    contributions: list[Contribution] = Field(default_factory=list)
    editions: list[Edition] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class UserBook(BaseModel):
    book: HardcoverWork

    model_config = ConfigDict(extra="ignore")


class Me(BaseModel):
    user_books: list[UserBook] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class WantToReadData(BaseModel):
    me: list[Me] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class GraphQLError(BaseModel):
    message: str = ""

    model_config = ConfigDict(extra="ignore")


class WantToReadResponse(BaseModel):
    """Top-level GraphQL envelope: ``data`` and/or ``errors``."""

    data: WantToReadData | None = None
    errors: list[GraphQLError] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class HardcoverBook(BaseModel):
    """One want-to-read entry, flattened for the sync flow."""

    id: int
    title: str
    author: str = ""
    author_id: int = 0
    isbn: str = ""

    @classmethod
    def from_work(cls, work: HardcoverWork) -> HardcoverBook:
        """Take the first contribution's author and prefer ISBN-13 over ISBN-10."""
        author, author_id = "", 0
        if work.contributions and work.contributions[0].author is not None:
            author = work.contributions[0].author.name
            author_id = work.contributions[0].author.id

        isbn = ""
        if work.editions:
            edition = work.editions[0]
            isbn = edition.isbn_13 or edition.isbn_10 or ""

        return cls(id=work.id, title=work.title, author=author, author_id=author_id, isbn=isbn)

    @property
    def title_author_term(self) -> str:
        if self.author:
            return f"{self.title} {self.author}"
        return self.title


# ---------------------------------------------------------------------------
# Bookshelf create request
# ---------------------------------------------------------------------------


class EditionRef(BaseModel):
    """An edition synthesized for a lookup result that carries none."""

    foreign_edition_id: str | None = Field(default=None, alias="foreignEditionId")
    title: str | None = None
    monitored: bool = True

    model_config = ConfigDict(populate_by_name=True)


class AuthorPayload(BaseModel):
    """Author sub-object of a create request.

    Built either from an existing Bookshelf author record (which keeps all
    of its keys) or from the work data returned by the metadata provider.
    """

    id: int | None = None
    foreign_author_id: str | None = Field(default=None, alias="foreignAuthorId")
    author_name: str | None = Field(default=None, alias="authorName")
    overview: str | None = None
    quality_profile_id: int = Field(alias="qualityProfileId")
    metadata_profile_id: int = Field(alias="metadataProfileId")
    monitored: bool = False
    monitor_new_items: str = Field(default="none", alias="monitorNewItems")
    root_folder_path: str = Field(alias="rootFolderPath")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @classmethod
    def from_record(
        cls,
        record: dict[str, Any],
        quality_profile_id: int,
        metadata_profile_id: int,
        root_folder_path: str,
    ) -> AuthorPayload:
        data = dict(record)
        data.update(
            qualityProfileId=quality_profile_id,
            metadataProfileId=metadata_profile_id,
            monitored=False,
            monitorNewItems="none",
            rootFolderPath=root_folder_path,
        )
        return cls.model_validate(data)

    @classmethod
    def from_work_data(
        cls,
        work: dict[str, Any] | None,
        quality_profile_id: int,
        metadata_profile_id: int,
        root_folder_path: str,
    ) -> AuthorPayload | None:
        """Build from ``Authors[0]`` of a metadata work document, if present."""
        if not work:
            return None
        authors = work.get("Authors")
        if not isinstance(authors, list) or not authors or not isinstance(authors[0], dict):
            return None
        author = authors[0]
        foreign_id = author.get("ForeignId")
        return cls(
            foreign_author_id=None if foreign_id is None else str(foreign_id),
            author_name=author.get("Name"),
            overview=author.get("Description"),
            quality_profile_id=quality_profile_id,
            metadata_profile_id=metadata_profile_id,
            root_folder_path=root_folder_path,
        )


class AddOptions(BaseModel):
    search_for_new_book: bool = Field(default=True, alias="searchForNewBook")

    model_config = ConfigDict(populate_by_name=True)


class BookCreateRequest(BaseModel):
    """Typed body of ``POST /api/v1/book``.

    Usage::

        request = BookCreateRequest.build(results[0], 1, 1, author=author)
        await bookshelf.add_book(request)
    """

    lookup: dict[str, Any] = Field(default_factory=dict, exclude=True)
    monitored: bool = True
    quality_profile_id: int = Field(alias="qualityProfileId")
    metadata_profile_id: int = Field(alias="metadataProfileId")
    editions: list[dict[str, Any]] = Field(default_factory=list)
    author: AuthorPayload | None = None
    add_options: AddOptions = Field(default_factory=AddOptions, alias="addOptions")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def build(
        cls,
        lookup: dict[str, Any],
        quality_profile_id: int,
        metadata_profile_id: int,
        author: AuthorPayload | None = None,
    ) -> BookCreateRequest:
        """Start from a lookup result; synthesize editions when it has none.

        Editions the lookup already carries are passed through untouched.
        """
        raw_editions = lookup.get("editions")
        if isinstance(raw_editions, list):
            editions = [e for e in raw_editions if isinstance(e, dict)]
        else:
            foreign_edition_id = lookup.get("foreignEditionId")
            edition = EditionRef(
                foreign_edition_id=foreign_edition_id if isinstance(foreign_edition_id, str) else "",
                title=lookup.get("title"),
            )
            editions = [edition.model_dump(by_alias=True)]
        return cls(
            lookup=lookup,
            quality_profile_id=quality_profile_id,
            metadata_profile_id=metadata_profile_id,
            editions=editions,
            author=author,
        )

    def to_payload(self) -> dict[str, Any]:
        """JSON body: lookup keys overlaid with the named fields.

        A request without an author carries no ``author`` key at all; null
        keys are dropped from the author object only.
        """
        payload = dict(self.lookup)
        payload.pop("author", None)
        payload.update(self.model_dump(by_alias=True, exclude={"author"}))
        if self.author is not None:
            payload["author"] = self.author.model_dump(by_alias=True, exclude_none=True)
        return payload
