"""Tests for the SQLite application tracker."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from applydispatch.exceptions import DispatchError, InvalidTransition
from applydispatch.models import (
    Application,
    ApplicationStatus,
    ApprovalStatus,
    BatchSummary,
    EmailLog,
    SentStatus,
    utc_now,
)


def _log(application_id: str, mail_id: str = "mail_1") -> EmailLog:
    return EmailLog(
        application_id=application_id,
        mail_id=mail_id,
        to_email="hr@acme.tn",
        from_email="me@example.com",
        subject="s",
        body="b",
    )


def test_application_roundtrip(tracker):
    app = Application(
        job_id="j1",
        user_id="u1",
        subject="Candidature",
        attachment_refs=("cv.pdf", "letter.pdf"),
        contact_synthesized=True,
    )
    tracker.insert_application(app)
    loaded = tracker.get_application(app.id)
    assert loaded == app


def test_one_application_per_job_and_user(tracker):
    tracker.insert_application(Application(job_id="j1", user_id="u1"))
    with pytest.raises(DispatchError):
        tracker.insert_application(Application(job_id="j1", user_id="u1"))


def test_advance_refuses_regressions(tracker):
    app = tracker.insert_application(Application(job_id="j1", user_id="u1"))
    tracker.advance_application(app, ApplicationStatus.PENDING, queued_at=utc_now())
    with pytest.raises(InvalidTransition):
        tracker.advance_application(app, ApplicationStatus.DRAFT)
    assert tracker.get_application(app.id).status == ApplicationStatus.PENDING


def test_count_queued_uses_utc_day(tracker):
    yesterday = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    tracker.insert_application(Application(job_id="j1", user_id="u1", queued_at=yesterday))
    tracker.insert_application(Application(job_id="j2", user_id="u1", queued_at=utc_now()))
    tracker.insert_application(Application(job_id="j3", user_id="u1"))
    assert tracker.count_queued_today("u1") == 1


def test_carryover_drafts_skip_rejected(tracker):
    keep = tracker.insert_application(Application(job_id="j1", user_id="u1"))
    drop = tracker.insert_application(Application(job_id="j2", user_id="u1"))
    tracker.insert_application(
        Application(job_id="j3", user_id="u1", status=ApplicationStatus.SENT)
    )
    tracker.reject(drop.id)
    assert [a.id for a in tracker.carryover_drafts("u1")] == [keep.id]
    assert tracker.approve(keep.id).approval_status == ApprovalStatus.APPROVED


def test_email_log_upsert_by_mail_id(tracker):
    app = tracker.insert_application(Application(job_id="j1", user_id="u1"))
    first = tracker.record_email_log(_log(app.id))
    tracker.advance_email_log("mail_1", SentStatus.SENT)
    second = tracker.record_email_log(_log(app.id))
    assert second.id == first.id
    assert second.sent_status == SentStatus.SENT
    assert len(tracker.email_logs_for(app.id)) == 1


def test_email_log_status_is_monotonic(tracker):
    app = tracker.insert_application(Application(job_id="j1", user_id="u1"))
    tracker.record_email_log(_log(app.id))
    assert tracker.advance_email_log("mail_1", SentStatus.SENT)
    assert tracker.advance_email_log("mail_1", SentStatus.DELIVERED)
    assert not tracker.advance_email_log("mail_1", SentStatus.PENDING)
    assert not tracker.advance_email_log("mail_1", SentStatus.SENT)
    assert tracker.get_email_log("mail_1").sent_status == SentStatus.DELIVERED


def test_batch_run_recorded(tracker):
    summary = BatchSummary(user_id="u1")
    tracker.start_run(summary)
    summary.matched, summary.sent, summary.failed = 5, 4, 1
    summary.finalize()
    tracker.end_run(summary)
    row = tracker.get_run(summary.run_id)
    assert row["matched"] == 5
    assert row["sent"] == 4
    assert row["ended_at"] == summary.ended_at


def test_email_log_that_cannot_be_read_back_is_an_error(tracker):
    app = tracker.insert_application(Application(job_id="j1", user_id="u1"))
    with patch.object(tracker, "get_email_log", return_value=None):
        with pytest.raises(DispatchError):
            tracker.record_email_log(_log(app.id))
