"""Shared test fixtures."""

from __future__ import annotations

import pytest

from applydispatch.catalog import SQLiteJobCatalog, SQLiteProfileStore
from applydispatch.models import JobPosting, UserProfile
from applydispatch.preferences import PreferenceStore
from applydispatch.settings import AppSettings
from applydispatch.storage.database import connect
from applydispatch.storage.tracker import ApplicationTracker


@pytest.fixture()
def tmp_settings_yaml(tmp_path):
    """Write a minimal settings.yaml and return its path."""
    content = """\
database_path: "{db}"
page_size: 20
parallelism: 3
llm_api_key: "sk-test"
llm_model: "llama-3.1-8b-instant"
llm_base_url: "https://api.groq.com/openai/v1"
smtp_host: "smtp.example.com"
alias_domain: "candidats.example.tn"
contact_fallback_tld: ".TN"
send_retry_delays: [0, 0, 0]
simulation_mode: true
""".format(db=str(tmp_path / "dispatch.db"))
    p = tmp_path / "settings.yaml"
    p.write_text(content)
    return p


@pytest.fixture()
def app_settings():
    return AppSettings(
        llm_api_key="sk-test",
        generation_retry_base_delay=0,
        send_retry_delays=[0, 0, 0],
        alias_domain="candidats.example.tn",
    )


@pytest.fixture()
def conn():
    connection = connect(":memory:")
    yield connection
    connection.close()


@pytest.fixture()
def tracker(conn):
    return ApplicationTracker(conn)


@pytest.fixture()
def preferences(conn):
    return PreferenceStore(conn)


@pytest.fixture()
def catalog(conn):
    return SQLiteJobCatalog(conn)


@pytest.fixture()
def profiles(conn):
    store = SQLiteProfileStore(conn)
    store.save_profile(
        UserProfile(
            user_id="u1",
            first_name="Amira",
            last_name="Ben Salah",
            email="amira@example.com",
            phone="+216 20 000 000",
            title="Backend Developer",
            skills=("Python", "Django", "SQL", "Docker", "AWS", "Kafka"),
            experience_count=3,
        )
    )
    return store


@pytest.fixture()
def make_job():
    def _make(job_id: str, **overrides) -> JobPosting:
        fields = dict(
            id=job_id,
            title=f"Developer {job_id}",
            company=f"Company {job_id}",
            location="Tunis",
            job_type="CDI",
            description=f"Send your CV to jobs-{job_id}@example.com",
        )
        fields.update(overrides)
        return JobPosting(**fields)

    return _make
