"""Pydantic-based settings loaded from YAML with env-var overrides."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class AppSettings(BaseSettings):
    """Runtime configuration with YAML + env var support.

    Env vars are prefixed with ``APPLYDISPATCH_``.
    Example: ``APPLYDISPATCH_SMTP_HOST=smtp.example.com``
    """

    model_config = {"env_prefix": "APPLYDISPATCH_"}

    # --- storage ---
    database_path: str = ".state/dispatch.db"

    # --- matching ---
    page_size: int = 50

    # --- batch ---
    parallelism: int = 5  # concurrent compose+dispatch workers per batch

    # --- composition ---
    generation_max_retries: int = 2
    generation_retry_base_delay: float = 1.0  # seconds, doubled per retry
    contact_fallback_local_part: str = "recrutement"
    contact_fallback_tld: str = "tn"
    approve_synthesized_contacts: bool = True
    default_attachments: list[str] = Field(default_factory=lambda: ["cv.pdf"])

    # --- dispatch ---
    send_retry_delays: list[float] = Field(default_factory=lambda: [1.0, 4.0, 10.0])
    alias_domain: str = ""  # per-user sender aliases live under this domain
    attachments_dir: str = "."

    # --- content generator ---
    llm_api_key: str = ""
    llm_base_url: str = ""  # empty = api.openai.com
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 2048
    llm_timeout: float = 30.0

    # --- mail transport ---
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_starttls: bool = True
    simulation_mode: bool = False

    @field_validator("contact_fallback_tld", "alias_domain")
    @classmethod
    def _normalise_domain(cls, v: str) -> str:
        return v.strip().lower().lstrip("@.")

    @field_validator("parallelism", "page_size")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    # ---- factory ----

    @classmethod
    def from_yaml(cls, path: str | Path | None = None) -> "AppSettings":
        """Load settings from a YAML file, then overlay env vars.

        Env vars (``APPLYDISPATCH_*``) take priority over YAML values.
        """
        import os

        if path is None:
            path = _PROJECT_ROOT / "settings.yaml"
        path = Path(path)
        raw: dict[str, Any] = {}
        if path.exists():
            with open(path) as fh:
                raw = yaml.safe_load(fh) or {}

        # Let env vars override YAML: remove YAML keys that have an env override
        prefix = "APPLYDISPATCH_"
        for key in list(raw.keys()):
            env_key = f"{prefix}{key.upper()}"
            if env_key in os.environ:
                del raw[key]

        return cls(**raw)
