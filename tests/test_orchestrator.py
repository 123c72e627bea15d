"""Integration tests for the batch orchestrator (fake generator and transport)."""

from __future__ import annotations

import asyncio

import pytest

from applydispatch.exceptions import ConfigurationError, NoTemplateError
from applydispatch.models import Application, ApplicationStatus, RoutingStatus
from applydispatch.orchestrator import DispatchPipeline

from fakes import FakeGenerator, FakeTransport

_AUTO = {"enabled": True, "auto_send": True, "require_approval": False, "job_types": []}


@pytest.fixture()
def build(app_settings, tracker, preferences, catalog, profiles):
    def _build(generator=None, transport=None, **settings_overrides):
        settings = app_settings.model_copy(update=settings_overrides)
        return DispatchPipeline(
            settings,
            tracker=tracker,
            preferences=preferences,
            catalog=catalog,
            profiles=profiles,
            generator=generator or FakeGenerator(),
            transport=transport or FakeTransport(),
        )

    return _build


@pytest.fixture()
def ready_user(preferences, catalog, make_job):
    preferences.patch("u1", _AUTO)
    preferences.create_email_alias("u1", "candidats.example.tn")
    preferences.add_template("u1", "main", is_default=True)

    def _add_jobs(count: int) -> None:
        for i in range(1, count + 1):
            catalog.add_job(make_job(f"j{i}"))

    return _add_jobs


def test_failed_composition_is_isolated(build, ready_user, tracker):
    ready_user(5)
    pipeline = build(generator=FakeGenerator(fail_when='"Developer j3"'))
    summary = asyncio.run(pipeline.run_for_user("u1"))

    assert summary.matched == 5
    assert summary.composed == 4
    assert summary.sent == 4
    assert summary.failed == 1
    failed = [o for o in summary.outcomes if o.outcome == "failed"]
    assert [o.job_id for o in failed] == ["j3"]
    assert tracker.applied_job_ids("u1") == {"j1", "j2", "j4", "j5"}


def test_failed_send_is_isolated(build, ready_user, conn):
    ready_user(3)
    transport = FakeTransport(fail_to={"jobs-j2@example.com"})
    summary = asyncio.run(build(transport=transport).run_for_user("u1"))

    assert (summary.sent, summary.failed) == (2, 1)
    rows = conn.execute("SELECT job_id, status FROM applications WHERE user_id=?", ("u1",))
    statuses = {r["job_id"]: r["status"] for r in rows.fetchall()}
    assert statuses["j2"] == ApplicationStatus.FAILED


def test_quota_stops_the_batch(build, ready_user, tracker, preferences):
    ready_user(3)
    preferences.patch("u1", {"max_applications_per_day": 3})
    for job_id in ("old1", "old2"):
        tracker.insert_application(
            Application(
                job_id=job_id,
                user_id="u1",
                to_email=f"{job_id}@example.com",
                subject="Candidature",
                body="Bonjour",
            )
        )
    summary = asyncio.run(build().run_for_user("u1"))

    assert summary.matched == 3
    assert summary.sent == 3
    assert summary.skipped_by_quota == 2
    assert tracker.count_queued_today("u1") == 3
    leftover = tracker.carryover_drafts("u1")
    assert 1 <= len(leftover) <= 2
    assert all(a.status == ApplicationStatus.DRAFT for a in leftover)


def test_quota_never_exceeded_across_runs(build, ready_user, tracker, preferences):
    ready_user(6)
    preferences.patch("u1", {"max_applications_per_day": 2})
    pipeline = build(parallelism=4)
    first = asyncio.run(pipeline.run_for_user("u1"))
    second = asyncio.run(pipeline.run_for_user("u1"))
    assert first.sent == 2
    assert second.matched == 0
    assert second.sent == 0
    assert tracker.count_queued_today("u1") == 2


def test_approval_flow(build, ready_user, tracker, preferences):
    ready_user(2)
    preferences.patch("u1", {"require_approval": True})
    transport = FakeTransport()
    pipeline = build(transport=transport)

    first = asyncio.run(pipeline.run_for_user("u1"))
    assert first.awaiting_approval == 2
    assert transport.calls == 0

    drafts = tracker.carryover_drafts("u1")
    tracker.approve(drafts[0].id)
    second = asyncio.run(pipeline.run_for_user("u1"))
    assert second.matched == 0
    assert second.sent == 1
    assert second.awaiting_approval == 1
    assert transport.sent[0].subject == drafts[0].subject


def test_disabled_user_is_a_configuration_error(build, preferences):
    preferences.patch("u1", {"enabled": False})
    with pytest.raises(ConfigurationError):
        asyncio.run(build().run_for_user("u1"))


def test_missing_template_is_reported(build, preferences, catalog, make_job):
    preferences.patch("u1", _AUTO)
    preferences.create_email_alias("u1", "candidats.example.tn")
    catalog.add_job(make_job("j1"))
    with pytest.raises(NoTemplateError):
        asyncio.run(build().run_for_user("u1"))


def test_disabling_mid_run_abandons_pending_jobs(build, ready_user, preferences):
    ready_user(3)

    class DisablingGenerator(FakeGenerator):
        async def generate(self, prompt):
            preferences.patch("u1", {"enabled": False})
            return await super().generate(prompt)

    summary = asyncio.run(build(generator=DisablingGenerator(), parallelism=1).run_for_user("u1"))
    assert summary.sent == 1
    assert [o.outcome for o in summary.outcomes].count("abandoned") == 2


def test_cancelling_the_batch(build, ready_user, tracker):
    ready_user(3)
    pipeline = build(generator=FakeGenerator(delay=10), parallelism=1)

    async def scenario():
        task = asyncio.create_task(pipeline.run_for_user("u1"))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert tracker.applied_job_ids("u1") == set()


def test_batch_run_is_recorded(build, ready_user, tracker):
    ready_user(2)
    summary = asyncio.run(build().run_for_user("u1"))
    row = tracker.get_run(summary.run_id)
    assert row["sent"] == 2
    assert row["ended_at"]


def test_close_releases_the_generator(build):
    generator = FakeGenerator()
    asyncio.run(build(generator=generator).close())
    assert generator.closed is True


def test_mail_goes_out_from_the_users_alias(build, ready_user, preferences):
    ready_user(1)
    transport = FakeTransport()
    asyncio.run(build(transport=transport).run_for_user("u1"))
    alias = preferences.get_email_alias("u1")
    assert alias.full_email.endswith("@candidats.example.tn")
    assert [e.from_email for e in transport.sent] == [alias.full_email]


def test_missing_alias_is_a_configuration_error(build, preferences, catalog, make_job):
    preferences.patch("u1", _AUTO)
    preferences.add_template("u1", "main", is_default=True)
    catalog.add_job(make_job("j1"))
    transport = FakeTransport()
    with pytest.raises(ConfigurationError, match="sender alias"):
        asyncio.run(build(transport=transport).run_for_user("u1"))
    assert transport.calls == 0


def test_suspended_alias_blocks_the_batch(build, ready_user, preferences, tracker):
    ready_user(2)
    preferences.set_alias_status("u1", RoutingStatus.SUSPENDED)
    with pytest.raises(ConfigurationError):
        asyncio.run(build().run_for_user("u1"))
    assert tracker.applied_job_ids("u1") == set()


def test_provision_alias_is_idempotent(build, preferences):
    pipeline = build()
    first = pipeline.provision_alias("u1")
    assert pipeline.provision_alias("u1") == first
    assert preferences.get_email_alias("u1") == first
