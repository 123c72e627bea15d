"""Chain of Responsibility filtering for matched job postings."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Iterable, Protocol

from applydispatch.models import JobPosting

logger = logging.getLogger(__name__)


class KeywordMatcher(Protocol):
    """Strategy deciding whether *keyword* occurs in *text*."""

    def matches(self, text: str, keyword: str) -> bool:
        ...


class SubstringKeywordMatcher:
    """Case-insensitive substring match."""

    def matches(self, text: str, keyword: str) -> bool:
        return keyword.casefold() in text.casefold()


class WordKeywordMatcher:
    """Case-insensitive whole-word match, so ``java`` does not hit ``javascript``."""

    def matches(self, text: str, keyword: str) -> bool:
        pattern = r"(?<!\w)" + re.escape(keyword) + r"(?!\w)"
        return re.search(pattern, text, re.IGNORECASE) is not None


def _clean(terms: Iterable[str]) -> list[str]:
    return sorted({t.strip() for t in terms if t.strip()})


def _searchable(posting: JobPosting) -> str:
    return f"{posting.title}\n{posting.description}"


class PostingFilter(ABC):
    """Abstract base for a single filter in the chain."""

    def __init__(self) -> None:
        self._next: PostingFilter | None = None

    def set_next(self, handler: PostingFilter) -> PostingFilter:
        self._next = handler
        return handler

    def evaluate(self, posting: JobPosting) -> str | None:
        """Return a rejection reason string, or ``None`` to accept.

        If this filter accepts, delegates to the next filter in the chain.
        """
        reason = self._check(posting)
        if reason is not None:
            return reason
        if self._next:
            return self._next.evaluate(posting)
        return None

    @abstractmethod
    def _check(self, posting: JobPosting) -> str | None:
        ...


class CompanyExclusionFilter(PostingFilter):
    """Reject postings from excluded companies (case-insensitive exact name)."""

    def __init__(self, excluded: Iterable[str]) -> None:
        super().__init__()
        self._excluded = {c.casefold() for c in _clean(excluded)}

    def _check(self, posting: JobPosting) -> str | None:
        if posting.company.strip().casefold() in self._excluded:
            logger.info("Excluded company: %s.", posting.company)
            return f"excluded_company:{posting.company}"
        return None


class KeywordExclusionFilter(PostingFilter):
    """Reject postings whose title or description mentions an excluded keyword."""

    def __init__(self, keywords: Iterable[str], matcher: KeywordMatcher) -> None:
        super().__init__()
        self._keywords = _clean(keywords)
        self._matcher = matcher

    def _check(self, posting: JobPosting) -> str | None:
        text = _searchable(posting)
        for term in self._keywords:
            if self._matcher.matches(text, term):
                logger.info("Excluded keyword in %s: '%s'.", posting.title, term)
                return f"excluded_keyword:{term}"
        return None


class RequiredKeywordFilter(PostingFilter):
    """Reject postings that mention none of the required keywords."""

    def __init__(self, keywords: Iterable[str], matcher: KeywordMatcher) -> None:
        super().__init__()
        self._keywords = _clean(keywords)
        self._matcher = matcher

    def _check(self, posting: JobPosting) -> str | None:
        text = _searchable(posting)
        if any(self._matcher.matches(text, term) for term in self._keywords):
            return None
        return "missing_required_keyword"


class SalaryBandFilter(PostingFilter):
    """Reject postings whose salary band lies entirely outside the wanted band.

    Postings without a salary band always pass.
    """

    def __init__(self, min_salary: int | None, max_salary: int | None) -> None:
        super().__init__()
        self._min = min_salary
        self._max = max_salary

    def _check(self, posting: JobPosting) -> str | None:
        if posting.salary_min is None and posting.salary_max is None:
            return None
        top = posting.salary_max if posting.salary_max is not None else posting.salary_min
        bottom = posting.salary_min if posting.salary_min is not None else posting.salary_max
        if self._min is not None and top is not None and top < self._min:
            return "salary_below_minimum"
        if self._max is not None and bottom is not None and bottom > self._max:
            return "salary_above_maximum"
        return None


def build_filter_chain(
    excluded_companies: Iterable[str] = (),
    excluded_keywords: Iterable[str] = (),
    required_keywords: Iterable[str] = (),
    min_salary: int | None = None,
    max_salary: int | None = None,
    keyword_matcher: KeywordMatcher | None = None,
) -> PostingFilter | None:
    """Assemble and return the head of the filter chain (or ``None`` if empty)."""
    matcher = keyword_matcher or SubstringKeywordMatcher()
    filters: list[PostingFilter] = []
    if _clean(excluded_companies):
        filters.append(CompanyExclusionFilter(excluded_companies))
    if _clean(excluded_keywords):
        filters.append(KeywordExclusionFilter(excluded_keywords, matcher))
    if _clean(required_keywords):
        filters.append(RequiredKeywordFilter(required_keywords, matcher))
    if min_salary is not None or max_salary is not None:
        filters.append(SalaryBandFilter(min_salary, max_salary))

    if not filters:
        return None

    for i in range(len(filters) - 1):
        filters[i].set_next(filters[i + 1])

    return filters[0]
