"""Typed access to a user's auto-application preferences and templates."""

from __future__ import annotations

import logging
import re
import secrets
import sqlite3
import uuid

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from applydispatch.composition.composer import select_template
from applydispatch.exceptions import ConfigurationError, SettingsValidationError
from applydispatch.models import (
    ApplicationTemplate,
    ExperienceLevel,
    JobType,
    RoutingStatus,
    UserEmailAlias,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT_TEMPLATE = "Candidature - {jobTitle} - {firstName} {lastName}"
DEFAULT_BODY_TEMPLATE = (
    "Bonjour,\n\n{coverLetter}\n\nCordialement,\n{firstName} {lastName}\n{phone}\n{email}"
)

_ALIAS_STEM_RE = re.compile(r"[^a-z0-9]")


class NotificationPreferences(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: bool = True
    push: bool = True
    sms: bool = False


class AutoApplicationSettings(BaseModel):
    """Per-user auto-application configuration. Read-only to the pipeline."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    enabled: bool = False
    max_applications_per_day: int = Field(default=10, ge=1)
    min_salary: int | None = None
    max_salary: int | None = None
    preferred_locations: frozenset[str] = frozenset()
    excluded_companies: frozenset[str] = frozenset()
    required_keywords: frozenset[str] = frozenset()
    excluded_keywords: frozenset[str] = frozenset()
    job_types: frozenset[JobType] = frozenset({JobType.CDI, JobType.CDD})
    experience_level: ExperienceLevel = ExperienceLevel.ALL
    auto_send: bool = False
    require_approval: bool = True
    notification_preferences: NotificationPreferences = Field(
        default_factory=NotificationPreferences
    )

    @model_validator(mode="after")
    def _salary_band(self) -> "AutoApplicationSettings":
        if (
            self.min_salary is not None
            and self.max_salary is not None
            and self.min_salary > self.max_salary
        ):
            raise ValueError("min_salary must not exceed max_salary")
        return self


class SettingsPatch(BaseModel):
    """Partial update. Only fields explicitly set are merged; unknown keys fail."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool | None = None
    max_applications_per_day: int | None = Field(default=None, ge=1)
    min_salary: int | None = None
    max_salary: int | None = None
    preferred_locations: frozenset[str] | None = None
    excluded_companies: frozenset[str] | None = None
    required_keywords: frozenset[str] | None = None
    excluded_keywords: frozenset[str] | None = None
    job_types: frozenset[JobType] | None = None
    experience_level: ExperienceLevel | None = None
    auto_send: bool | None = None
    require_approval: bool | None = None
    notification_preferences: NotificationPreferences | None = None

    def apply_to(self, current: AutoApplicationSettings) -> AutoApplicationSettings:
        merged = current.model_dump()
        merged.update(self.model_dump(exclude_unset=True))
        try:
            return AutoApplicationSettings.model_validate(merged)
        except ValidationError as exc:
            raise SettingsValidationError(str(exc)) from exc


class PreferenceStore:
    """SQLite-backed settings and template storage.

    Defaults are written lazily the first time a user's settings are read.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # ---- settings ----

    def get(self, user_id: str) -> AutoApplicationSettings:
        cur = self._conn.execute(
            "SELECT payload FROM auto_application_settings WHERE user_id=?", (user_id,)
        )
        row = cur.fetchone()
        if row is None:
            logger.info("Creating default auto-application settings for %s.", user_id)
            return self.put(user_id, AutoApplicationSettings())
        return AutoApplicationSettings.model_validate_json(row["payload"])

    def put(self, user_id: str, settings: AutoApplicationSettings) -> AutoApplicationSettings:
        self._conn.execute(
            "INSERT INTO auto_application_settings (user_id, payload, updated_at) "
            "VALUES (?, ?, ?) ON CONFLICT(user_id) DO UPDATE SET "
            "payload=excluded.payload, updated_at=excluded.updated_at",
            (user_id, settings.model_dump_json(), utc_now()),
        )
        self._conn.commit()
        return settings

    def patch(self, user_id: str, changes: SettingsPatch | dict) -> AutoApplicationSettings:
        """Validate *changes* field by field and merge them into stored settings."""
        if isinstance(changes, dict):
            try:
                changes = SettingsPatch.model_validate(changes)
            except ValidationError as exc:
                raise SettingsValidationError(str(exc)) from exc
        return self.put(user_id, changes.apply_to(self.get(user_id)))

    # ---- templates ----

    def add_template(
        self,
        user_id: str,
        name: str,
        subject_template: str = DEFAULT_SUBJECT_TEMPLATE,
        body_template: str = DEFAULT_BODY_TEMPLATE,
        is_default: bool = False,
        is_active: bool = True,
    ) -> ApplicationTemplate:
        template = ApplicationTemplate(
            id=uuid.uuid4().hex,
            user_id=user_id,
            name=name,
            subject_template=subject_template,
            body_template=body_template,
            is_default=is_default,
            is_active=is_active,
        )
        self._conn.execute(
            "INSERT INTO auto_application_templates (id, user_id, name, subject_template, "
            "body_template, is_default, is_active, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                template.id,
                user_id,
                name,
                subject_template,
                body_template,
                int(is_default),
                int(is_active),
                template.created_at,
            ),
        )
        self._conn.commit()
        return template

    def list_templates(self, user_id: str) -> list[ApplicationTemplate]:
        """Active templates, default first, then newest first."""
        cur = self._conn.execute(
            "SELECT * FROM auto_application_templates WHERE user_id=? AND is_active=1 "
            "ORDER BY is_default DESC, created_at DESC",
            (user_id,),
        )
        return [
            ApplicationTemplate(
                id=r["id"],
                user_id=r["user_id"],
                name=r["name"],
                subject_template=r["subject_template"],
                body_template=r["body_template"],
                is_default=bool(r["is_default"]),
                is_active=bool(r["is_active"]),
                created_at=r["created_at"],
            )
            for r in cur.fetchall()
        ]

    def default_template(self, user_id: str) -> ApplicationTemplate:
        """The template new drafts use. Raises :class:`NoTemplateError` if none is active."""
        return select_template(self.list_templates(user_id))

    # ---- sender aliases ----

    def get_email_alias(self, user_id: str) -> UserEmailAlias | None:
        cur = self._conn.execute("SELECT * FROM user_email_aliases WHERE user_id=?", (user_id,))
        row = cur.fetchone()
        if row is None:
            return None
        return UserEmailAlias(
            id=row["id"],
            user_id=row["user_id"],
            alias=row["alias"],
            full_email=row["full_email"],
            routing_status=RoutingStatus(row["routing_status"]),
            created_at=row["created_at"],
        )

    def create_email_alias(self, user_id: str, domain: str) -> UserEmailAlias:
        """Return the user's alias, creating one under *domain* on first use."""
        existing = self.get_email_alias(user_id)
        if existing is not None:
            return existing
        if not domain:
            raise ConfigurationError("No alias domain configured; cannot create a sender alias.")
        stem = _ALIAS_STEM_RE.sub("", user_id.lower())[:20] or "candidat"
        alias = f"{stem}.{secrets.token_hex(3)}"
        created = UserEmailAlias(user_id=user_id, alias=alias, full_email=f"{alias}@{domain}")
        self._conn.execute(
            "INSERT INTO user_email_aliases (id, user_id, alias, full_email, routing_status, "
            "created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (
                created.id,
                user_id,
                alias,
                created.full_email,
                created.routing_status.value,
                created.created_at,
            ),
        )
        self._conn.commit()
        logger.info("Created sender alias %s for %s.", created.full_email, user_id)
        return created

    def set_alias_status(self, user_id: str, status: RoutingStatus) -> UserEmailAlias:
        alias = self.get_email_alias(user_id)
        if alias is None:
            raise ConfigurationError(f"No sender alias for {user_id}.")
        self._conn.execute(
            "UPDATE user_email_aliases SET routing_status=? WHERE user_id=?",
            (status.value, user_id),
        )
        self._conn.commit()
        return self.get_email_alias(user_id)
