"""
pdm_qc/domain/majority.py

Strict-majority tallies shared by the report builder and the validator.

A value wins when its count is strictly greater than half of the
population. Ties and pluralities never win.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

NOT_SPECIFIED = "Not specified"


def casefold_key(value: str) -> str:
    return value.strip().lower()


def exact_key(value: str) -> str:
    return value


def split_families(family: str) -> list[str]:
    """
    Split a comma-joined family string into trimmed, de-duplicated parts.
    """

    parts: list[str] = []
    for part in family.split(","):
        trimmed = part.strip()
        if trimmed and trimmed not in parts:
            parts.append(trimmed)
    return parts


def strict_majorities(
    values: Iterable[str],
    *,
    population: int,
    key: Callable[[str], str] = exact_key,
) -> list[str]:
    """
    Return every value whose tally exceeds `population / 2`.

    Values sharing a key are tallied together and reported with the
    display form seen first. Output order follows first appearance.
    """

    counts: dict[str, int] = {}
    display: dict[str, str] = {}
    for value in values:
        tally_key = key(value)
        counts[tally_key] = counts.get(tally_key, 0) + 1
        display.setdefault(tally_key, value)

    return [display[tally_key] for tally_key, count in counts.items() if count * 2 > population]


def strict_majority(
    values: Iterable[str],
    *,
    population: int,
    key: Callable[[str], str] = exact_key,
) -> str | None:
    winners = strict_majorities(values, population=population, key=key)
    return winners[0] if winners else None


def majority_or_fallback(values: Iterable[str], *, population: int) -> str:
    """
    Case-insensitive majority over trimmed non-empty values, falling back to
    the first non-empty value and then to "Not specified".
    """

    trimmed = [value.strip() for value in values]
    non_empty = [value for value in trimmed if value]
    winner = strict_majority(non_empty, population=population, key=casefold_key)
    if winner is not None:
        return winner
    if non_empty:
        return non_empty[0]
    return NOT_SPECIFIED
