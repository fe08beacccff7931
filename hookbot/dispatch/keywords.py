"""Trigger keyword matching."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ..models import TriggerKeyword, TriggerMode


@dataclass(frozen=True)
class KeywordMatch:
    keyword: str
    mode: TriggerMode


def match_keyword(
    text: str, keywords: Iterable[TriggerKeyword]
) -> KeywordMatch | None:
    """Return the first keyword contained in ``text``, ignoring case.

    Keywords are tried in the order given, so callers decide precedence
    between overlapping keywords. Blank keywords never match.
    """

    lowered = (text or "").lower()
    for candidate in keywords:
        needle = candidate.keyword.lower()
        if needle and needle in lowered:
            return KeywordMatch(keyword=candidate.keyword, mode=TriggerMode(candidate.mode))
    return None
