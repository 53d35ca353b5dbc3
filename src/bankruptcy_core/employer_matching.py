"""Payer identity matching.

Evidence for one income source arrives with the payer spelled differently on
every document ("ACME CORP." on a W-2, "Acme Corporation" on a pay stub,
"ACME CORP PAYROLL" on a bank statement). Records are grouped on a
normalized payer name plus income type and year, split further by EIN when
the records carry conflicting EINs.
"""

import re
from collections import defaultdict
from typing import NamedTuple, Optional, Sequence

from .models.extraction import DocumentType, IncomeType, NormalizedIncome


_PUNCTUATION = re.compile(r"""[.,/#!$%^&*;:{}=\-_`~()'"]""")
_BUSINESS_SUFFIXES = re.compile(
    r"\b(INC|LLC|CORP|CORPORATION|COMPANY|CO|LTD|LIMITED|LP|LLP|PC|PLLC|NA|FSB)\b"
)
_WHITESPACE = re.compile(r"\s+")
_NON_DIGITS = re.compile(r"\D")

# Display name preference: pay stubs print the full legal name, bank
# statements truncate it
NAME_PRIORITY: tuple[DocumentType, ...] = (
    DocumentType.PAYSTUB,
    DocumentType.W2,
    DocumentType.TAX_RETURN,
    DocumentType.FORM_1099,
    DocumentType.BANK_STATEMENT,
)


def normalize_employer_name(name: str) -> str:
    """Upper-case, strip punctuation and business suffixes, collapse spaces.

    Example:
        >>> normalize_employer_name("Acme Widgets, Inc.")
        'ACME WIDGETS'
    """
    normalized = _PUNCTUATION.sub("", name.upper())
    normalized = _BUSINESS_SUFFIXES.sub("", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


def normalize_ein(ein: Optional[str]) -> Optional[str]:
    """Digits-only EIN, or None when nothing usable remains."""
    if not ein:
        return None
    digits = _NON_DIGITS.sub("", ein)
    return digits or None


def _levenshtein(a: str, b: str) -> int:
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j], current[j - 1], previous[j - 1]))
        previous = current
    return previous[-1]


def employer_similarity(name1: str, name2: str) -> float:
    """Similarity of two payer names in [0, 1], 1 for an exact normalized match.

    Containment (bank statement truncation) scores at least 0.85. Otherwise
    word overlap and edit distance are blended.
    """
    norm1 = normalize_employer_name(name1)
    norm2 = normalize_employer_name(name2)

    if norm1 == norm2:
        return 1.0
    if not norm1 or not norm2:
        return 0.0

    if norm1 in norm2 or norm2 in norm1:
        shorter, longer = sorted((norm1, norm2), key=len)
        return max(0.85, len(shorter) / len(longer))

    max_len = max(len(norm1), len(norm2))
    edit_score = 1 - _levenshtein(norm1, norm2) / max_len

    words1 = {w for w in norm1.split(" ") if len(w) > 2}
    words2 = {w for w in norm2.split(" ") if len(w) > 2}
    if not words1 or not words2:
        return edit_score

    jaccard = len(words1 & words2) / len(words1 | words2)
    if len(words1) > 1 or len(words2) > 1:
        return max(jaccard * 0.8 + edit_score * 0.2, edit_score)
    return max(jaccard, edit_score)


class GroupKey(NamedTuple):
    """Identity of one income source within a case."""

    source_key: str
    ein: Optional[str]
    income_type: IncomeType
    income_year: int

    def as_string(self) -> str:
        ein = self.ein or "-"
        return f"{self.source_key}|{ein}|{self.income_type.value}|{self.income_year}"


def group_incomes(
    incomes: Sequence[NormalizedIncome],
) -> dict[GroupKey, list[NormalizedIncome]]:
    """Group normalized incomes by payer, income type and income year.

    Within a payer/type/year bucket, records with different EINs are kept
    apart. Records without an EIN join the EIN group when exactly one exists
    and otherwise form a name-only group.

    Groups are returned in sorted key order and each group's records in
    extraction id order, so output does not depend on input order.
    """
    buckets: dict[tuple[str, IncomeType, int], list[NormalizedIncome]] = defaultdict(list)
    for income in incomes:
        buckets[(income.source_key, income.income_type, income.income_year)].append(income)

    groups: dict[GroupKey, list[NormalizedIncome]] = {}
    for (source_key, income_type, income_year), members in buckets.items():
        by_ein: dict[str, list[NormalizedIncome]] = defaultdict(list)
        without_ein: list[NormalizedIncome] = []
        for income in members:
            if income.payer_ein:
                by_ein[income.payer_ein].append(income)
            else:
                without_ein.append(income)

        if len(by_ein) == 1:
            (only_ein,) = by_ein
            by_ein[only_ein].extend(without_ein)
            without_ein = []

        for ein, ein_members in by_ein.items():
            groups[GroupKey(source_key, ein, income_type, income_year)] = ein_members
        if without_ein:
            groups[GroupKey(source_key, None, income_type, income_year)] = without_ein

    return {
        key: sorted(groups[key], key=lambda i: i.extraction_id)
        for key in sorted(groups, key=lambda k: k.as_string())
    }


def best_employer_name(incomes: Sequence[NormalizedIncome]) -> str:
    """Pick the most complete spelling of the payer name in a group."""
    for doc_type in NAME_PRIORITY:
        for income in incomes:
            if income.document_type == doc_type:
                return income.payer_name
    return incomes[0].payer_name
