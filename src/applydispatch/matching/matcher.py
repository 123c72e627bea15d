"""Select the jobs a user's standing preferences match."""

from __future__ import annotations

import dataclasses
import logging

from applydispatch.catalog import CatalogQuery, JobCatalog
from applydispatch.matching.filter_chain import KeywordMatcher, build_filter_chain
from applydispatch.models import JobPosting
from applydispatch.preferences import AutoApplicationSettings
from applydispatch.storage.tracker import ApplicationTracker

logger = logging.getLogger(__name__)


class JobMatcher:
    """Produces an ordered, deduplicated, quota-bounded list of candidate jobs.

    Location and job type restrictions are pushed down to the catalog;
    exclusions, required keywords and the salary band are applied to each
    fetched page, paging on until enough postings match or the catalog
    runs out. Ordering is whatever the catalog returns.
    """

    def __init__(
        self,
        catalog: JobCatalog,
        tracker: ApplicationTracker,
        page_size: int = 50,
        keyword_matcher: KeywordMatcher | None = None,
    ) -> None:
        self._catalog = catalog
        self._tracker = tracker
        self._page_size = page_size
        self._keyword_matcher = keyword_matcher

    def find_matching_jobs(
        self, user_id: str, settings: AutoApplicationSettings
    ) -> list[JobPosting]:
        if not settings.enabled:
            logger.info("Auto-application disabled for %s.", user_id)
            return []

        remaining = settings.max_applications_per_day - self._tracker.count_queued_today(user_id)
        if remaining <= 0:
            logger.info("Daily quota already used for %s.", user_id)
            return []

        query = CatalogQuery(
            active_only=True,
            exclude_ids=frozenset(self._tracker.applied_job_ids(user_id)),
            locations=frozenset(settings.preferred_locations),
            job_types=frozenset(t.value for t in settings.job_types),
            limit=self._page_size,
        )

        chain = build_filter_chain(
            excluded_companies=settings.excluded_companies,
            excluded_keywords=settings.excluded_keywords,
            required_keywords=settings.required_keywords,
            min_salary=settings.min_salary,
            max_salary=settings.max_salary,
            keyword_matcher=self._keyword_matcher,
        )
        wanted = min(remaining, self._page_size)
        matched: list[JobPosting] = []
        scanned = 0
        # rejected postings are never applied to, so keep paging past them
        while len(matched) < wanted:
            page = self._catalog.query(query)
            scanned += len(page)
            matched.extend(
                p
                for p in page
                if p.is_active and p.id not in query.exclude_ids
                and (chain is None or chain.evaluate(p) is None)
            )
            if len(page) < query.limit:
                break
            query = dataclasses.replace(query, offset=query.offset + query.limit)
        logger.info(
            "Matched %d of %d posting(s) for %s (quota left: %d).",
            len(matched),
            scanned,
            user_id,
            remaining,
        )
        return matched[:wanted]
