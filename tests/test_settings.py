"""Tests for settings loading and validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from applydispatch.settings import AppSettings


def test_load_from_yaml(tmp_settings_yaml):
    settings = AppSettings.from_yaml(tmp_settings_yaml)
    assert settings.page_size == 20
    assert settings.parallelism == 3
    assert settings.llm_model == "llama-3.1-8b-instant"
    assert settings.send_retry_delays == [0, 0, 0]
    assert settings.simulation_mode is True


def test_env_var_override(tmp_settings_yaml, monkeypatch):
    monkeypatch.setenv("APPLYDISPATCH_ALIAS_DOMAIN", "@Mail.Example.org")
    settings = AppSettings.from_yaml(tmp_settings_yaml)
    assert settings.alias_domain == "mail.example.org"


def test_tld_normalised(tmp_settings_yaml):
    settings = AppSettings.from_yaml(tmp_settings_yaml)
    assert settings.contact_fallback_tld == "tn"


def test_defaults_when_no_file(tmp_path):
    settings = AppSettings.from_yaml(tmp_path / "nonexistent.yaml")
    assert settings.parallelism == 5
    assert settings.page_size == 50
    assert settings.generation_max_retries == 2
    assert settings.send_retry_delays == [1.0, 4.0, 10.0]
    assert settings.default_attachments == ["cv.pdf"]


def test_parallelism_must_be_positive():
    with pytest.raises(ValidationError):
        AppSettings(parallelism=0)
