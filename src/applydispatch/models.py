"""Domain models for the application dispatch pipeline."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobType(str, Enum):
    CDI = "CDI"
    CDD = "CDD"
    STAGE = "Stage"
    FREELANCE = "Freelance"


class ExperienceLevel(str, Enum):
    JUNIOR = "junior"
    MID = "mid"
    SENIOR = "senior"
    ALL = "all"


class ApplicationStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"
    BOUNCED = "bounced"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SentStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"
    BOUNCED = "bounced"


class ResponseType(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    INTERVIEW_REQUEST = "interview_request"
    REJECTION = "rejection"
    UNKNOWN = "unknown"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class RoutingStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


@dataclass(frozen=True)
class JobPosting:
    """Immutable catalog entry. The pipeline never writes these."""

    id: str
    title: str
    company: str
    location: str = ""
    job_type: str = ""
    description: str = ""
    is_active: bool = True
    salary_min: int | None = None
    salary_max: int | None = None
    source: str = ""


@dataclass(frozen=True)
class UserProfile:
    """Resume data the composer needs to personalise a letter."""

    user_id: str
    first_name: str
    last_name: str
    email: str
    phone: str = ""
    title: str = ""
    skills: tuple[str, ...] = ()
    experience_count: int = 0


@dataclass(frozen=True)
class ApplicationTemplate:
    id: str
    user_id: str
    name: str
    subject_template: str
    body_template: str
    is_default: bool = False
    is_active: bool = True
    created_at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class ApplicationDraft:
    """Composed message for one job, consumed immediately by the dispatcher."""

    job_id: str
    subject: str
    body: str
    to_email: str
    attachment_refs: tuple[str, ...] = ()
    contact_synthesized: bool = False
    cover_letter: str = ""


@dataclass
class Application:
    """Durable record of one application, carrying the composed content."""

    job_id: str
    user_id: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: ApplicationStatus = ApplicationStatus.DRAFT
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    mail_id: str | None = None
    created_at: str = field(default_factory=utc_now)
    queued_at: str | None = None
    sent_at: str | None = None
    job_title: str = ""
    company: str = ""
    to_email: str = ""
    subject: str = ""
    body: str = ""
    attachment_refs: tuple[str, ...] = ()
    contact_synthesized: bool = False
    error_message: str | None = None

    def draft(self) -> ApplicationDraft:
        return ApplicationDraft(
            job_id=self.job_id,
            subject=self.subject,
            body=self.body,
            to_email=self.to_email,
            attachment_refs=self.attachment_refs,
            contact_synthesized=self.contact_synthesized,
        )


@dataclass
class EmailLog:
    """One row per send attempt."""

    application_id: str
    mail_id: str
    to_email: str
    from_email: str
    subject: str
    body: str
    user_id: str = ""
    attachments: tuple[str, ...] = ()
    sent_status: SentStatus = SentStatus.PENDING
    sent_at: str | None = None
    delivered_at: str | None = None
    read_at: str | None = None
    retries: int = 0
    error_message: str | None = None
    id: int | None = None


@dataclass
class RecruiterResponse:
    """Inbound reply tied to a dispatched application."""

    application_id: str
    from_email: str
    subject: str
    body: str
    received_at: str = field(default_factory=utc_now)
    email_log_id: int | None = None
    from_name: str = ""
    parsed: bool = False
    response_type: ResponseType = ResponseType.UNKNOWN
    sentiment: str | None = None
    action_required: bool = False
    priority: Priority = Priority.NORMAL
    processed: bool = False
    id: int | None = None


@dataclass(frozen=True)
class UserEmailAlias:
    """Per-user sender address; replies to it are routed back to the user."""

    user_id: str
    alias: str
    full_email: str
    routing_status: RoutingStatus = RoutingStatus.ACTIVE
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=utc_now)


@dataclass
class JobOutcome:
    """Result of one job inside a batch."""

    job_id: str
    title: str
    company: str
    outcome: str  # sent, failed, skipped_quota, awaiting_approval, abandoned
    reason: str = ""


@dataclass
class BatchSummary:
    """Aggregated counters for one run."""

    user_id: str
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: str = field(default_factory=utc_now)
    ended_at: str = ""
    matched: int = 0
    composed: int = 0
    sent: int = 0
    failed: int = 0
    skipped_by_quota: int = 0
    awaiting_approval: int = 0
    outcomes: list[JobOutcome] = field(default_factory=list)

    def finalize(self) -> None:
        self.ended_at = utc_now()
