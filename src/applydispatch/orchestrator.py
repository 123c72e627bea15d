"""Batch coordinator: match, compose, dispatch, report."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field

from applydispatch.catalog import JobCatalog, ProfileStore, SQLiteJobCatalog, SQLiteProfileStore
from applydispatch.composition.composer import ApplicationComposer
from applydispatch.composition.contact import RegexContactExtractor
from applydispatch.composition.generator import ContentGenerator, OpenAIContentGenerator
from applydispatch.dispatch.dispatcher import Dispatcher
from applydispatch.dispatch.transport import MailTransport, SMTPMailTransport
from applydispatch.exceptions import (
    ConfigurationError,
    DispatchError,
    QuotaExceeded,
)
from applydispatch.matching.matcher import JobMatcher
from applydispatch.models import (
    Application,
    ApplicationDraft,
    ApplicationTemplate,
    BatchSummary,
    JobOutcome,
    JobPosting,
    RoutingStatus,
    UserEmailAlias,
    UserProfile,
)
from applydispatch.preferences import AutoApplicationSettings, PreferenceStore
from applydispatch.reporting.console import print_progress
from applydispatch.responses.classifier import ResponseClassifier
from applydispatch.responses.inbox import ResponseInbox
from applydispatch.settings import AppSettings
from applydispatch.storage.database import connect
from applydispatch.storage.tracker import ApplicationTracker

logger = logging.getLogger(__name__)


@dataclass
class _BatchContext:
    user_id: str
    settings: AutoApplicationSettings
    profile: UserProfile
    sender: str
    template: ApplicationTemplate | None
    summary: BatchSummary
    semaphore: asyncio.Semaphore
    quota_hit: asyncio.Event = field(default_factory=asyncio.Event)


class DispatchPipeline:
    """Wires together all pipeline stages and drives one user's batch.

    The pipeline owns the content generator: it is created (or handed in)
    here and closed by :meth:`close`.
    """

    def __init__(
        self,
        settings: AppSettings,
        *,
        tracker: ApplicationTracker,
        preferences: PreferenceStore,
        catalog: JobCatalog,
        profiles: ProfileStore,
        generator: ContentGenerator,
        transport: MailTransport,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        self._settings = settings
        self._tracker = tracker
        self._preferences = preferences
        self._profiles = profiles
        self._generator = generator
        self._conn = conn
        self._matcher = JobMatcher(catalog, tracker, page_size=settings.page_size)
        self._composer = ApplicationComposer(
            generator,
            contact_extractor=RegexContactExtractor(
                settings.contact_fallback_local_part, settings.contact_fallback_tld
            ),
            attachments=settings.default_attachments,
            max_retries=settings.generation_max_retries,
            retry_base_delay=settings.generation_retry_base_delay,
        )
        self._dispatcher = Dispatcher(
            tracker,
            transport,
            retry_delays=settings.send_retry_delays,
            approve_synthesized_contacts=settings.approve_synthesized_contacts,
        )
        self.inbox = ResponseInbox(tracker, ResponseClassifier(generator))

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "DispatchPipeline":
        conn = connect(settings.database_path)
        return cls(
            settings,
            tracker=ApplicationTracker(conn),
            preferences=PreferenceStore(conn),
            catalog=SQLiteJobCatalog(conn),
            profiles=SQLiteProfileStore(conn),
            generator=OpenAIContentGenerator.from_settings(settings),
            transport=SMTPMailTransport.from_settings(settings),
            conn=conn,
        )

    def provision_alias(self, user_id: str) -> UserEmailAlias:
        return self._preferences.create_email_alias(user_id, self._settings.alias_domain)

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    async def close(self) -> None:
        await self._generator.close()
        if self._conn is not None:
            self._conn.close()

    async def __aenter__(self) -> "DispatchPipeline":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ---- batch ----

    async def run_for_user(self, user_id: str) -> BatchSummary:
        """Run one batch for *user_id* and return its summary.

        Raises :class:`ConfigurationError` when auto-application is
        disabled, the profile or an active sender alias is missing, or new
        matches exist but no template does. Cancelling the calling task cancels the batch;
        messages already sent stay sent.
        """
        settings = self._preferences.get(user_id)
        if not settings.enabled:
            raise ConfigurationError(f"Auto-application is disabled for {user_id}.")
        profile = self._profiles.get_profile(user_id)
        if profile is None:
            raise ConfigurationError(f"No profile found for {user_id}.")
        alias = self._preferences.get_email_alias(user_id)
        if alias is None or alias.routing_status != RoutingStatus.ACTIVE:
            raise ConfigurationError(f"No active sender alias for {user_id}.")

        carryover = self._tracker.carryover_drafts(user_id)
        jobs = self._matcher.find_matching_jobs(user_id, settings)
        template = self._preferences.default_template(user_id) if jobs else None

        summary = BatchSummary(user_id=user_id, matched=len(jobs))
        ctx = _BatchContext(
            user_id=user_id,
            settings=settings,
            profile=profile,
            sender=alias.full_email,
            template=template,
            summary=summary,
            semaphore=asyncio.Semaphore(self._settings.parallelism),
        )
        self._tracker.start_run(summary)
        logger.info(
            "Batch %s for %s: %d new match(es), %d carried-over draft(s).",
            summary.run_id,
            user_id,
            len(jobs),
            len(carryover),
        )
        try:
            await asyncio.gather(
                *(self._resume_draft(app, ctx) for app in carryover),
                *(self._process_job(job, ctx) for job in jobs),
            )
        finally:
            summary.finalize()
            self._tracker.end_run(summary)
        return summary

    # ---- per-job stages ----

    async def _process_job(self, job: JobPosting, ctx: _BatchContext) -> None:
        async with ctx.semaphore:
            if not self._may_start(job.id, job.title, job.company, ctx):
                return
            assert ctx.template is not None
            try:
                draft = await self._composer.compose(job, ctx.profile, ctx.template)
            except DispatchError as exc:
                logger.warning("Composition failed for job %s: %s", job.id, exc)
                self._record(ctx, job.id, job.title, job.company, "failed", str(exc))
                return
            except Exception as exc:
                logger.exception("Unexpected error composing job %s.", job.id)
                self._record(ctx, job.id, job.title, job.company, "failed", str(exc))
                return

            app = Application(
                job_id=job.id,
                user_id=ctx.user_id,
                job_title=job.title,
                company=job.company,
                to_email=draft.to_email,
                subject=draft.subject,
                body=draft.body,
                attachment_refs=draft.attachment_refs,
                contact_synthesized=draft.contact_synthesized,
            )
            try:
                self._tracker.insert_application(app)
            except DispatchError as exc:
                self._record(ctx, job.id, job.title, job.company, "failed", str(exc))
                return
            ctx.summary.composed += 1
            await self._send(app, draft, ctx)

    async def _resume_draft(self, app: Application, ctx: _BatchContext) -> None:
        async with ctx.semaphore:
            if not self._may_start(app.job_id, app.job_title, app.company, ctx):
                return
            await self._send(app, app.draft(), ctx)

    async def _send(self, app: Application, draft: ApplicationDraft, ctx: _BatchContext) -> None:
        if ctx.quota_hit.is_set():
            self._record(ctx, app.job_id, app.job_title, app.company, "skipped_quota")
            return
        try:
            log = await self._dispatcher.dispatch(app, draft, ctx.settings, from_email=ctx.sender)
        except QuotaExceeded:
            ctx.quota_hit.set()
            self._record(ctx, app.job_id, app.job_title, app.company, "skipped_quota")
            return
        except DispatchError as exc:
            self._record(ctx, app.job_id, app.job_title, app.company, "failed", str(exc))
            return
        except Exception as exc:
            logger.exception("Unexpected error dispatching application %s.", app.id)
            self._record(ctx, app.job_id, app.job_title, app.company, "failed", str(exc))
            return

        if log is None:
            self._record(ctx, app.job_id, app.job_title, app.company, "awaiting_approval")
        else:
            self._record(ctx, app.job_id, app.job_title, app.company, "sent")

    # ---- helpers ----

    def _may_start(self, job_id: str, title: str, company: str, ctx: _BatchContext) -> bool:
        """Gate checked before any work on a job begins."""
        if ctx.quota_hit.is_set():
            self._record(ctx, job_id, title, company, "skipped_quota")
            return False
        if not self._preferences.get(ctx.user_id).enabled:
            self._record(ctx, job_id, title, company, "abandoned", "auto-application disabled")
            return False
        return True

    def _record(
        self,
        ctx: _BatchContext,
        job_id: str,
        title: str,
        company: str,
        outcome: str,
        reason: str = "",
    ) -> None:
        summary = ctx.summary
        if outcome == "sent":
            summary.sent += 1
        elif outcome == "failed":
            summary.failed += 1
        elif outcome == "skipped_quota":
            summary.skipped_by_quota += 1
        elif outcome == "awaiting_approval":
            summary.awaiting_approval += 1
        record = JobOutcome(job_id, title, company, outcome, reason)
        summary.outcomes.append(record)
        print_progress(record, len(summary.outcomes))
