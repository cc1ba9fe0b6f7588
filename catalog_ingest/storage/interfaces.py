# catalog_ingest/storage/interfaces.py

"""Collaborator interfaces the pipeline depends on.

The pipeline never touches a schema directly; any object satisfying these
protocols can back it.  SQLite, JSON-file and local-disk implementations
live alongside in this package.
"""

from typing import Protocol

from catalog_ingest.models.category import CategoryLeaf, CategoryNode
from catalog_ingest.models.job import JobProgress, WorkItem
from catalog_ingest.models.listing import SavedListingRecord


class ListingStore(Protocol):
    """Durable listing catalog keyed by ``(platform, canonical_url)``."""

    def upsert_listings(self, records: list[SavedListingRecord]) -> int:
        """Insert or merge records; return how many were written."""
        ...

    def count_listings(self, platform: str, category: str) -> int:
        """Count listings of ``platform`` tagged with ``category``."""
        ...

    def listings_missing_detail(
        self,
        platform: str | None = None,
        limit: int | None = None,
    ) -> list[WorkItem]:
        """Listings without scraped detail, newest first."""
        ...


class TaxonomyProvider(Protocol):
    """Read-only category tree."""

    def categories(self) -> list[CategoryNode]:
        ...

    def leaves(self) -> list[CategoryLeaf]:
        ...


class ImageCache(Protocol):
    """Best-effort local copy of a remote image."""

    def cache_external_image(self, url: str) -> str | None:
        """Return a local path for ``url``, or ``None`` on any failure."""
        ...


class ProgressStore(Protocol):
    """Persistence of a batch runner's :class:`JobProgress`."""

    def load(self) -> JobProgress | None:
        ...

    def save(self, progress: JobProgress) -> None:
        ...

    def delete(self) -> None:
        ...
