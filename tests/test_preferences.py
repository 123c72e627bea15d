"""Tests for the preference store and typed settings patches."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from applydispatch.exceptions import ConfigurationError, NoTemplateError, SettingsValidationError
from applydispatch.models import ExperienceLevel, JobType, RoutingStatus
from applydispatch.preferences import AutoApplicationSettings, SettingsPatch


def test_defaults_created_on_first_read(preferences, conn):
    settings = preferences.get("new-user")
    assert settings.enabled is False
    assert settings.max_applications_per_day == 10
    assert settings.job_types == frozenset({JobType.CDI, JobType.CDD})
    assert settings.experience_level == ExperienceLevel.ALL
    assert settings.require_approval is True
    row = conn.execute(
        "SELECT COUNT(*) AS n FROM auto_application_settings WHERE user_id='new-user'"
    ).fetchone()
    assert row["n"] == 1


def test_put_and_get_roundtrip(preferences):
    stored = AutoApplicationSettings(
        enabled=True,
        max_applications_per_day=3,
        preferred_locations={"Tunis", "Sfax"},
        excluded_companies={"BadCo"},
        job_types={JobType.STAGE},
        min_salary=1000,
        max_salary=3000,
    )
    preferences.put("u1", stored)
    loaded = preferences.get("u1")
    assert loaded == stored
    assert loaded.preferred_locations == frozenset({"Tunis", "Sfax"})


def test_patch_merges_only_given_fields(preferences):
    preferences.put("u1", AutoApplicationSettings(excluded_companies={"BadCo"}))
    patched = preferences.patch("u1", {"enabled": True, "max_applications_per_day": 4})
    assert patched.enabled is True
    assert patched.max_applications_per_day == 4
    assert patched.excluded_companies == frozenset({"BadCo"})
    assert preferences.get("u1") == patched


def test_patch_rejects_unknown_fields(preferences):
    with pytest.raises(SettingsValidationError):
        preferences.patch("u1", {"enabled": True, "maxApplications": 4})
    assert preferences.get("u1").enabled is False


def test_patch_rejects_inverted_salary_band(preferences):
    preferences.patch("u1", {"min_salary": 2000})
    with pytest.raises(SettingsValidationError):
        preferences.patch("u1", SettingsPatch(max_salary=1000))


def test_quota_must_be_positive():
    with pytest.raises(ValidationError):
        AutoApplicationSettings(max_applications_per_day=0)
    with pytest.raises(ValidationError):
        SettingsPatch(max_applications_per_day=0)


def test_unknown_job_type_rejected(preferences):
    with pytest.raises(SettingsValidationError):
        preferences.patch("u1", {"job_types": ["Interim"]})


def test_templates_default_first(preferences):
    preferences.add_template("u1", "plain")
    preferences.add_template("u1", "main", is_default=True)
    preferences.add_template("u1", "retired", is_active=False)
    names = [t.name for t in preferences.list_templates("u1")]
    assert names == ["main", "plain"]


def test_default_template(preferences):
    with pytest.raises(NoTemplateError):
        preferences.default_template("u1")
    preferences.add_template("u1", "first")
    chosen = preferences.add_template("u1", "main", is_default=True)
    assert preferences.default_template("u1").id == chosen.id


def test_email_alias_created_once(preferences):
    assert preferences.get_email_alias("u1") is None
    alias = preferences.create_email_alias("User_1", "candidats.example.tn")
    assert alias.alias.startswith("user1.")
    assert alias.full_email == f"{alias.alias}@candidats.example.tn"
    assert alias.routing_status == RoutingStatus.ACTIVE
    assert preferences.create_email_alias("User_1", "other.example") == alias


def test_email_alias_needs_a_domain(preferences):
    with pytest.raises(ConfigurationError):
        preferences.create_email_alias("u1", "")


def test_alias_status_change(preferences):
    preferences.create_email_alias("u1", "candidats.example.tn")
    updated = preferences.set_alias_status("u1", RoutingStatus.SUSPENDED)
    assert updated.routing_status == RoutingStatus.SUSPENDED
    with pytest.raises(ConfigurationError):
        preferences.set_alias_status("nobody", RoutingStatus.ACTIVE)
