"""
Dedupe key normalization (CRITICAL).

This module defines THE normalization functions used to compare identifying
fields across documents and persisted records. This is the ONLY place where
tax ids, barcodes and names are normalized for duplicate detection.

Key invariant:
- An empty or absent key never matches anything. Normalizers return None
  for empty input and every lookup short-circuits on None, so two records
  with blank barcodes are never considered duplicates of each other.
"""

import re
import unicodedata
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

# ============================================================================
# SSOT Constants for duplicate detection
# ============================================================================

# Relative amount tolerance for the "similar record" heuristic
SIMILAR_AMOUNT_TOLERANCE = Decimal("0.01")

# Due dates within this many days are considered close
SIMILAR_DATE_WINDOW_DAYS = 5

# Minimum name similarity for the "similar record" heuristic
SIMILAR_NAME_THRESHOLD = 0.5


class DuplicateLevel(str, Enum):
    """
    Strength of a duplicate signal, strongest first.

    BLOCKED: identical barcode or digit line, never allowed
    HIGH: same tax id and document number
    MEDIUM: same tax id, amount and due date
    LOW: similar name with close amount and date
    NONE: no duplicate found
    """

    BLOCKED = "blocked"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"

    @property
    def allow_continue(self) -> bool:
        """Whether the user may proceed after seeing this warning."""
        return self != DuplicateLevel.BLOCKED


@dataclass
class DuplicateCheckResult:
    """Result of a comprehensive duplicate check."""

    level: DuplicateLevel = DuplicateLevel.NONE
    reason: str | None = None
    existing_id: int | None = None

    @property
    def is_duplicate(self) -> bool:
        """True when any duplicate signal fired."""
        return self.level != DuplicateLevel.NONE

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "level": self.level.value,
            "reason": self.reason,
            "existing_id": self.existing_id,
        }


def normalize_digits(value: str | None) -> str | None:
    """Keep only digits; None when nothing is left."""
    if not value:
        return None
    digits = re.sub(r"\D", "", value)
    return digits or None


def normalize_tax_id(tax_id: str | None) -> str | None:
    """
    Normalize a CNPJ/CPF for comparison.

    Examples:
        >>> normalize_tax_id("12.345.678/0001-90")
        '12345678000190'
        >>> normalize_tax_id("") is None
        True
    """
    return normalize_digits(tax_id)


def normalize_barcode(code: str | None) -> str | None:
    """Normalize a barcode or digit line (dots, spaces and dashes removed)."""
    return normalize_digits(code)


def normalize_key(value: str | None) -> str | None:
    """Strip surrounding whitespace; None for blank values."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def normalize_name(name: str | None) -> str:
    """
    Normalize a person/company name for fuzzy comparison.

    Lowercases, removes accents and punctuation.
    """
    if not name:
        return ""
    decomposed = unicodedata.normalize("NFD", name.lower())
    without_accents = "".join(c for c in decomposed if unicodedata.category(c) != "Mn")
    return re.sub(r"[^\w\s]", "", without_accents).strip()


def name_similarity(name1: str | None, name2: str | None) -> float:
    """
    Similarity between two names in [0, 1].

    1.0 for equal normalized names, 0.8 when one contains the other,
    otherwise the Dice coefficient over words longer than two characters.
    """
    if not name1 or not name2:
        return 0.0

    n1 = normalize_name(name1)
    n2 = normalize_name(name2)
    if not n1 or not n2:
        return 0.0
    if n1 == n2:
        return 1.0
    if n1 in n2 or n2 in n1:
        return 0.8

    words1 = [w for w in n1.split() if len(w) > 2]
    words2 = [w for w in n2.split() if len(w) > 2]
    if not words1 or not words2:
        return 0.0

    common = [w for w in words1 if w in words2]
    return (len(common) * 2) / (len(words1) + len(words2))


def amounts_near(
    amount1: Decimal | None,
    amount2: Decimal | None,
    tolerance: Decimal = SIMILAR_AMOUNT_TOLERANCE,
) -> bool:
    """Relative amount comparison against the larger of the two values."""
    if amount1 is None or amount2 is None:
        return False
    if amount1 == 0 and amount2 == 0:
        return True
    if amount1 == 0 or amount2 == 0:
        return False
    diff = abs(amount1 - amount2)
    return diff / max(abs(amount1), abs(amount2)) <= tolerance


def dates_near(
    date1: str | None,
    date2: str | None,
    max_days: int = SIMILAR_DATE_WINDOW_DAYS,
) -> bool:
    """Check whether two ISO dates are at most max_days apart."""
    if not date1 or not date2:
        return False
    try:
        d1 = date.fromisoformat(date1[:10])
        d2 = date.fromisoformat(date2[:10])
    except ValueError:
        return False
    return abs((d1 - d2).days) <= max_days


def normalize_amount(amount: Decimal | str | float) -> str:
    """
    Normalize amount to consistent 2-decimal text.

    Args:
        amount: Amount in various formats

    Returns:
        Normalized amount string with 2 decimal places
    """
    if isinstance(amount, str):
        amount = Decimal(amount.replace(",", "."))
    elif isinstance(amount, float):
        amount = Decimal(str(amount))
    elif not isinstance(amount, Decimal):
        raise ValueError(f"amount must be Decimal, str, or float, got: {type(amount)}")

    return f"{amount:.2f}"
