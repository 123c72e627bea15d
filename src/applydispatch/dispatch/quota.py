"""Per-user daily quota, re-checked at send time."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from applydispatch.exceptions import QuotaExceeded
from applydispatch.models import Application, ApplicationStatus, utc_now
from applydispatch.storage.tracker import ApplicationTracker

logger = logging.getLogger(__name__)


class DailyQuotaGuard:
    """Check-and-claim of one quota slot, serialised per user.

    Claiming a slot moves the application to ``pending`` and stamps
    ``queued_at``, which is what the daily count reads.
    """

    def __init__(self, tracker: ApplicationTracker) -> None:
        self._tracker = tracker
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock_for(self, user_id: str) -> asyncio.Lock:
        return self._locks[user_id]

    async def claim(self, app: Application, daily_limit: int) -> None:
        async with self.lock_for(app.user_id):
            used = self._tracker.count_queued_today(app.user_id)
            if used >= daily_limit:
                logger.info(
                    "Quota reached for %s (%d/%d); %s stays a draft.",
                    app.user_id,
                    used,
                    daily_limit,
                    app.id,
                )
                raise QuotaExceeded(f"Daily limit of {daily_limit} reached for {app.user_id}.")
            self._tracker.advance_application(
                app, ApplicationStatus.PENDING, queued_at=utc_now()
            )
