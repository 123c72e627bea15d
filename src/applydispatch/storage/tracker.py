"""SQLite-backed application, email log, and response history."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone

from applydispatch.dispatch.lifecycle import can_advance, ensure_transition
from applydispatch.exceptions import DispatchError
from applydispatch.models import (
    Application,
    ApplicationStatus,
    ApprovalStatus,
    BatchSummary,
    EmailLog,
    Priority,
    RecruiterResponse,
    ResponseType,
    SentStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

_APPLICATION_COLUMNS = (
    "id, job_id, user_id, status, approval_status, mail_id, created_at, queued_at, "
    "sent_at, job_title, company, to_email, subject, body, attachment_refs, "
    "contact_synthesized, error_message"
)


def _day_bounds(day: datetime | None = None) -> tuple[str, str]:
    """Return ISO bounds of the UTC calendar day containing *day*."""
    day = (day or datetime.now(timezone.utc)).astimezone(timezone.utc)
    start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    return start.isoformat(), (start + timedelta(days=1)).isoformat()


class ApplicationTracker:
    """Persistent record of applications and everything that happens to them.

    All writes for a user go through a single tracker; the dispatcher
    serialises per-user writes on top of it.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # ---- applications ----

    def insert_application(self, app: Application) -> Application:
        """Insert a new application. Fails if the user already has one for the job."""
        try:
            self._conn.execute(
                f"INSERT INTO applications ({_APPLICATION_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    app.id,
                    app.job_id,
                    app.user_id,
                    app.status.value,
                    app.approval_status.value,
                    app.mail_id,
                    app.created_at,
                    app.queued_at,
                    app.sent_at,
                    app.job_title,
                    app.company,
                    app.to_email,
                    app.subject,
                    app.body,
                    json.dumps(list(app.attachment_refs)),
                    int(app.contact_synthesized),
                    app.error_message,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise DispatchError(
                f"User {app.user_id} already has an application for job {app.job_id}."
            ) from exc
        self._conn.commit()
        return app

    def get_application(self, application_id: str) -> Application | None:
        cur = self._conn.execute(
            f"SELECT {_APPLICATION_COLUMNS} FROM applications WHERE id=?", (application_id,)
        )
        row = cur.fetchone()
        return _application_from_row(row) if row else None

    def applied_job_ids(self, user_id: str) -> set[str]:
        """Every job the user has an application for, whatever its status."""
        cur = self._conn.execute("SELECT job_id FROM applications WHERE user_id=?", (user_id,))
        return {row["job_id"] for row in cur.fetchall()}

    def count_queued_today(self, user_id: str, day: datetime | None = None) -> int:
        """Count applications handed to the dispatcher during the UTC day."""
        start, end = _day_bounds(day)
        cur = self._conn.execute(
            "SELECT COUNT(*) AS n FROM applications "
            "WHERE user_id=? AND queued_at >= ? AND queued_at < ?",
            (user_id, start, end),
        )
        return cur.fetchone()["n"]

    def carryover_drafts(self, user_id: str) -> list[Application]:
        """Drafts from earlier runs that were not rejected by the user."""
        cur = self._conn.execute(
            f"SELECT {_APPLICATION_COLUMNS} FROM applications "
            "WHERE user_id=? AND status=? AND approval_status != ? ORDER BY created_at",
            (user_id, ApplicationStatus.DRAFT.value, ApprovalStatus.REJECTED.value),
        )
        return [_application_from_row(r) for r in cur.fetchall()]

    def advance_application(
        self,
        app: Application,
        status: ApplicationStatus,
        **fields: str | None,
    ) -> Application:
        """Move *app* to *status*, updating the extra timestamp/id *fields*.

        Raises :class:`InvalidTransition` if the move would go backwards.
        """
        ensure_transition(app.status, status)
        allowed = {"queued_at", "sent_at", "mail_id", "error_message"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update application fields: {sorted(unknown)}")
        assignments = ["status=?"] + [f"{name}=?" for name in fields]
        self._conn.execute(
            f"UPDATE applications SET {', '.join(assignments)} WHERE id=?",
            (status.value, *fields.values(), app.id),
        )
        self._conn.commit()
        app.status = status
        for name, value in fields.items():
            setattr(app, name, value)
        logger.debug("Application %s -> %s.", app.id, status.value)
        return app

    def set_approval(self, application_id: str, approval: ApprovalStatus) -> Application:
        app = self.get_application(application_id)
        if app is None:
            raise DispatchError(f"Unknown application {application_id}.")
        self._conn.execute(
            "UPDATE applications SET approval_status=? WHERE id=?",
            (approval.value, application_id),
        )
        self._conn.commit()
        app.approval_status = approval
        return app

    def approve(self, application_id: str) -> Application:
        return self.set_approval(application_id, ApprovalStatus.APPROVED)

    def reject(self, application_id: str) -> Application:
        return self.set_approval(application_id, ApprovalStatus.REJECTED)

    def requeue_failed(self, application_id: str) -> Application:
        """Put a failed application back to ``draft`` so the next run resends it."""
        app = self.get_application(application_id)
        if app is None:
            raise DispatchError(f"Unknown application {application_id}.")
        # queued_at is cleared so the retry is counted against the day it goes out
        return self.advance_application(app, ApplicationStatus.DRAFT, queued_at=None)

    # ---- email logs ----

    def record_email_log(self, log: EmailLog) -> EmailLog:
        """Insert *log* keyed by ``mail_id``; an existing row wins.

        Returns the stored row, so a duplicate insert hands back the original.
        """
        cur = self._conn.execute(
            "INSERT INTO email_logs (user_id, application_id, mail_id, to_email, from_email, "
            "subject, body, attachments, sent_status, sent_at, delivered_at, read_at, "
            "retries, error_message) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(mail_id) DO NOTHING",
            (
                log.user_id,
                log.application_id,
                log.mail_id,
                log.to_email,
                log.from_email,
                log.subject,
                log.body,
                json.dumps(list(log.attachments)),
                log.sent_status.value,
                log.sent_at,
                log.delivered_at,
                log.read_at,
                log.retries,
                log.error_message,
            ),
        )
        self._conn.commit()
        if cur.rowcount == 0:
            logger.debug("Email log %s already recorded.", log.mail_id)
        stored = self.get_email_log(log.mail_id)
        if stored is None:
            raise DispatchError(f"Email log {log.mail_id} was not stored.")
        return stored

    def get_email_log(self, mail_id: str) -> EmailLog | None:
        cur = self._conn.execute("SELECT * FROM email_logs WHERE mail_id=?", (mail_id,))
        row = cur.fetchone()
        return _email_log_from_row(row) if row else None

    def email_logs_for(self, application_id: str) -> list[EmailLog]:
        cur = self._conn.execute(
            "SELECT * FROM email_logs WHERE application_id=? ORDER BY id", (application_id,)
        )
        return [_email_log_from_row(r) for r in cur.fetchall()]

    def last_retry_count(self, application_id: str) -> int:
        """Highest ``retries`` value logged for the application, ``-1`` if none."""
        cur = self._conn.execute(
            "SELECT MAX(retries) AS m FROM email_logs WHERE application_id=?",
            (application_id,),
        )
        value = cur.fetchone()["m"]
        return -1 if value is None else value

    def advance_email_log(
        self,
        mail_id: str,
        status: SentStatus,
        timestamp: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Move the log row to *status* if that is a forward step.

        Returns ``False`` for duplicates, regressions, and unknown ids.
        """
        log = self.get_email_log(mail_id)
        if log is None:
            logger.warning("No email log for mail id %s.", mail_id)
            return False
        if log.sent_status == status:
            return False
        if not can_advance(log.sent_status, status):
            logger.info(
                "Ignoring %s -> %s for mail %s.", log.sent_status.value, status.value, mail_id
            )
            return False

        timestamp = timestamp or utc_now()
        column = {
            SentStatus.SENT: "sent_at",
            SentStatus.DELIVERED: "delivered_at",
            SentStatus.READ: "read_at",
        }.get(status)
        assignments = ["sent_status=?"]
        params: list[object] = [status.value]
        if column:
            assignments.append(f"{column}=?")
            params.append(timestamp)
        if error_message is not None:
            assignments.append("error_message=?")
            params.append(error_message)
        self._conn.execute(
            f"UPDATE email_logs SET {', '.join(assignments)} WHERE mail_id=?",
            (*params, mail_id),
        )
        self._conn.commit()
        return True

    # ---- recruiter responses ----

    def insert_response(self, response: RecruiterResponse) -> RecruiterResponse:
        cur = self._conn.execute(
            "INSERT INTO recruiter_responses (application_id, email_log_id, from_email, "
            "from_name, subject, body, received_at, parsed, response_type, sentiment, "
            "action_required, priority, processed) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                response.application_id,
                response.email_log_id,
                response.from_email,
                response.from_name,
                response.subject,
                response.body,
                response.received_at,
                int(response.parsed),
                response.response_type.value,
                response.sentiment,
                int(response.action_required),
                response.priority.value,
                int(response.processed),
            ),
        )
        self._conn.commit()
        response.id = cur.lastrowid
        return response

    def save_classification(self, response: RecruiterResponse) -> None:
        """Persist the classifier's fields. Content columns are never rewritten."""
        self._conn.execute(
            "UPDATE recruiter_responses SET parsed=?, response_type=?, sentiment=?, "
            "action_required=?, priority=? WHERE id=?",
            (
                int(response.parsed),
                response.response_type.value,
                response.sentiment,
                int(response.action_required),
                response.priority.value,
                response.id,
            ),
        )
        self._conn.commit()

    def mark_processed(self, response_id: int) -> bool:
        cur = self._conn.execute(
            "UPDATE recruiter_responses SET processed=1 WHERE id=? AND processed=0", (response_id,)
        )
        self._conn.commit()
        return cur.rowcount == 1

    def get_response(self, response_id: int) -> RecruiterResponse | None:
        cur = self._conn.execute("SELECT * FROM recruiter_responses WHERE id=?", (response_id,))
        row = cur.fetchone()
        return _response_from_row(row) if row else None

    def unparsed_responses(self) -> list[RecruiterResponse]:
        cur = self._conn.execute(
            "SELECT * FROM recruiter_responses WHERE parsed=0 ORDER BY received_at"
        )
        return [_response_from_row(r) for r in cur.fetchall()]

    def open_action_items(self, user_id: str) -> list[RecruiterResponse]:
        """Classified replies that ask for something and have not been handled yet."""
        cur = self._conn.execute(
            "SELECT r.* FROM recruiter_responses r JOIN applications a ON a.id = r.application_id "
            "WHERE a.user_id=? AND r.parsed=1 AND r.action_required=1 AND r.processed=0 "
            "ORDER BY r.received_at",
            (user_id,),
        )
        return [_response_from_row(r) for r in cur.fetchall()]

    # ---- batch runs ----

    def start_run(self, summary: BatchSummary) -> None:
        self._conn.execute(
            "INSERT INTO batch_runs (id, user_id, started_at) VALUES (?, ?, ?)",
            (summary.run_id, summary.user_id, summary.started_at),
        )
        self._conn.commit()

    def end_run(self, summary: BatchSummary) -> None:
        self._conn.execute(
            "UPDATE batch_runs SET ended_at=?, matched=?, composed=?, sent=?, failed=?, "
            "skipped_by_quota=?, awaiting_approval=? WHERE id=?",
            (
                summary.ended_at,
                summary.matched,
                summary.composed,
                summary.sent,
                summary.failed,
                summary.skipped_by_quota,
                summary.awaiting_approval,
                summary.run_id,
            ),
        )
        self._conn.commit()

    def get_run(self, run_id: str) -> dict | None:
        cur = self._conn.execute("SELECT * FROM batch_runs WHERE id=?", (run_id,))
        row = cur.fetchone()
        return dict(row) if row else None


def _application_from_row(row: sqlite3.Row) -> Application:
    return Application(
        id=row["id"],
        job_id=row["job_id"],
        user_id=row["user_id"],
        status=ApplicationStatus(row["status"]),
        approval_status=ApprovalStatus(row["approval_status"]),
        mail_id=row["mail_id"],
        created_at=row["created_at"],
        queued_at=row["queued_at"],
        sent_at=row["sent_at"],
        job_title=row["job_title"],
        company=row["company"],
        to_email=row["to_email"],
        subject=row["subject"],
        body=row["body"],
        attachment_refs=tuple(json.loads(row["attachment_refs"] or "[]")),
        contact_synthesized=bool(row["contact_synthesized"]),
        error_message=row["error_message"],
    )


def _email_log_from_row(row: sqlite3.Row) -> EmailLog:
    return EmailLog(
        id=row["id"],
        user_id=row["user_id"],
        application_id=row["application_id"],
        mail_id=row["mail_id"],
        to_email=row["to_email"],
        from_email=row["from_email"],
        subject=row["subject"],
        body=row["body"],
        attachments=tuple(json.loads(row["attachments"] or "[]")),
        sent_status=SentStatus(row["sent_status"]),
        sent_at=row["sent_at"],
        delivered_at=row["delivered_at"],
        read_at=row["read_at"],
        retries=row["retries"],
        error_message=row["error_message"],
    )


def _response_from_row(row: sqlite3.Row) -> RecruiterResponse:
    return RecruiterResponse(
        id=row["id"],
        application_id=row["application_id"],
        email_log_id=row["email_log_id"],
        from_email=row["from_email"],
        from_name=row["from_name"] or "",
        subject=row["subject"],
        body=row["body"],
        received_at=row["received_at"],
        parsed=bool(row["parsed"]),
        response_type=ResponseType(row["response_type"]),
        sentiment=row["sentiment"],
        action_required=bool(row["action_required"]),
        priority=Priority(row["priority"]),
        processed=bool(row["processed"]),
    )
