import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class SourcePage:
    """One page of results plus the cursor for the next page (None on the last page)."""
    items: List[Any] = field(default_factory=list)
    next_cursor: Optional[str] = None


class PriceSource(ABC):
    """Abstract base class for paginated external data sources."""

    @abstractmethod
    async def fetch_page(self, cursor: Optional[str] = None) -> SourcePage:
        """
        Fetch one page. ``cursor`` is None for the first page, otherwise the
        ``next_cursor`` of the previous page.
        """
        pass

    async def fetch_all(self, max_pages: Optional[int] = None) -> List[Any]:
        """Follow cursors until the source reports no further page or repeats a cursor."""
        items: List[Any] = []
        seen: Set[str] = set()
        cursor: Optional[str] = None
        pages = 0
        while True:
            page = await self.fetch_page(cursor)
            items.extend(page.items)
            pages += 1
            cursor = page.next_cursor
            if not cursor or (max_pages is not None and pages >= max_pages):
                return items
            if cursor in seen:
                logger.warning(f"Stopping after {pages} pages: cursor repeated ({cursor})")
                return items
            seen.add(cursor)
