"""
Last-write-wins suggestion search.

A form re-runs the boleto search whenever the tax id or amount changes.
Searches may complete out of order; each one takes a generation token and
only the newest generation may publish its results. Stale results are
dropped, never merged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .engine import BoletoMatchingEngine, MatchCandidate

logger = logging.getLogger(__name__)

SearchFn = Callable[[str | None, Decimal | None], Awaitable[list["MatchCandidate"]]]


class SuggestionSearch:
    """Holds the current suggestion list for one form."""

    def __init__(self, search_fn: SearchFn):
        self._search_fn = search_fn
        self._generation = 0
        self.suggestions: list[MatchCandidate] = []

    @classmethod
    def for_engine(cls, engine: BoletoMatchingEngine) -> SuggestionSearch:
        """Search an engine in a worker thread (the store is blocking)."""

        async def _search(tax_id: str | None, amount: Decimal | None) -> list[MatchCandidate]:
            return await asyncio.to_thread(engine.find_candidates, tax_id, amount)

        return cls(_search)

    @property
    def generation(self) -> int:
        return self._generation

    def invalidate(self) -> None:
        """Discard whatever search is in flight."""
        self._generation += 1

    async def search(
        self, tax_id: str | None, amount: Decimal | None
    ) -> list[MatchCandidate] | None:
        """
        Run a search and publish its results if still current.

        Returns the results, or None when a newer search superseded this one.
        """
        self._generation += 1
        token = self._generation

        results = await self._search_fn(tax_id, amount)

        if token != self._generation:
            logger.debug(
                "Dropping stale suggestion results (generation %d < %d)", token, self._generation
            )
            return None
        self.suggestions = results
        return results
