"""Boleto to supplier invoice matching."""

from ledger_intake.matching.engine import BoletoMatchingEngine, MatchCandidate
from ledger_intake.matching.search import SuggestionSearch

__all__ = ["BoletoMatchingEngine", "MatchCandidate", "SuggestionSearch"]
