"""Job catalog and profile store: read-only collaborators of the pipeline."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from applydispatch.models import JobPosting, UserProfile, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogQuery:
    """Filters pushed down to the catalog. Empty collections mean no restriction."""

    active_only: bool = True
    exclude_ids: frozenset[str] = frozenset()
    locations: frozenset[str] = frozenset()
    job_types: frozenset[str] = frozenset()
    limit: int = 50
    offset: int = 0


@runtime_checkable
class JobCatalog(Protocol):
    def query(self, filters: CatalogQuery) -> list[JobPosting]:
        """Return one page of postings matching *filters*, in catalog order."""
        ...


@runtime_checkable
class ProfileStore(Protocol):
    def get_profile(self, user_id: str) -> UserProfile | None:
        ...


class SQLiteJobCatalog:
    """Catalog backed by the ``jobs`` table, ordered by insertion time."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def add_job(self, job: JobPosting) -> JobPosting:
        self._conn.execute(
            "INSERT INTO jobs (id, title, company, location, type, description, is_active, "
            "salary_min, salary_max, source, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET title=excluded.title, company=excluded.company, "
            "location=excluded.location, type=excluded.type, description=excluded.description, "
            "is_active=excluded.is_active, salary_min=excluded.salary_min, "
            "salary_max=excluded.salary_max, source=excluded.source",
            (
                job.id,
                job.title,
                job.company,
                job.location,
                job.job_type,
                job.description,
                int(job.is_active),
                job.salary_min,
                job.salary_max,
                job.source,
                utc_now(),
            ),
        )
        self._conn.commit()
        return job

    def query(self, filters: CatalogQuery) -> list[JobPosting]:
        clauses: list[str] = []
        params: list[object] = []
        if filters.active_only:
            clauses.append("is_active = 1")
        for column, values in (
            ("id", filters.exclude_ids),
            ("location", filters.locations),
            ("type", filters.job_types),
        ):
            if not values:
                continue
            placeholders = ", ".join("?" for _ in values)
            negate = "NOT " if column == "id" else ""
            clauses.append(f"{column} {negate}IN ({placeholders})")
            params.extend(sorted(values))

        sql = "SELECT * FROM jobs"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at, rowid LIMIT ? OFFSET ?"
        params.extend([filters.limit, filters.offset])

        cur = self._conn.execute(sql, params)
        return [
            JobPosting(
                id=r["id"],
                title=r["title"],
                company=r["company"],
                location=r["location"] or "",
                job_type=r["type"] or "",
                description=r["description"] or "",
                is_active=bool(r["is_active"]),
                salary_min=r["salary_min"],
                salary_max=r["salary_max"],
                source=r["source"] or "",
            )
            for r in cur.fetchall()
        ]


class SQLiteProfileStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def save_profile(self, profile: UserProfile) -> UserProfile:
        self._conn.execute(
            "INSERT OR REPLACE INTO profiles (user_id, first_name, last_name, email, phone, "
            "title, skills, experience_count) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                profile.user_id,
                profile.first_name,
                profile.last_name,
                profile.email,
                profile.phone,
                profile.title,
                json.dumps(list(profile.skills)),
                profile.experience_count,
            ),
        )
        self._conn.commit()
        return profile

    def get_profile(self, user_id: str) -> UserProfile | None:
        cur = self._conn.execute("SELECT * FROM profiles WHERE user_id=?", (user_id,))
        row = cur.fetchone()
        if row is None:
            return None
        return UserProfile(
            user_id=row["user_id"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            email=row["email"],
            phone=row["phone"] or "",
            title=row["title"] or "",
            skills=tuple(json.loads(row["skills"] or "[]")),
            experience_count=row["experience_count"] or 0,
        )
