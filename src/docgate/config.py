from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from docgate.services.diff import FORMAT_ATTRS, SNIPPET_MAX_CHARS


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="DOCGATE_", extra="ignore")

    app_name: str = "DocGate Review Service"
    environment: Literal["dev", "test", "prod"] = "dev"
    database_url: str = "sqlite:///./docgate.db"
    schema_management_mode: Literal["auto_create", "migrate_only", "off"] | None = None
    bootstrap_keys_enabled: bool | None = None
    bootstrap_viewer_key: str = "docgate-dev-viewer-key"
    bootstrap_reviewer_key: str = "docgate-dev-reviewer-key"
    bootstrap_approver_key: str = "docgate-dev-approver-key"
    bootstrap_admin_key: str = "docgate-dev-admin-key"
    approval_workflow_preset: Literal["default", "sequential", "parallel"] = "default"
    approval_workflow_path: Path | None = None
    format_attrs: list[str] = Field(default_factory=lambda: sorted(FORMAT_ATTRS))
    snippet_max_chars: int = Field(default=SNIPPET_MAX_CHARS, ge=16)
    default_allow_merge_with_deferred_changes: bool = False
    default_ignore_format_only_changes_for_gate: bool = False

    def resolved_schema_management_mode(self) -> Literal["auto_create", "migrate_only", "off"]:
        if self.schema_management_mode:
            return self.schema_management_mode
        return "auto_create" if self.environment in {"dev", "test"} else "migrate_only"

    def resolved_bootstrap_keys_enabled(self) -> bool:
        if self.bootstrap_keys_enabled is not None:
            return self.bootstrap_keys_enabled
        return self.environment in {"dev", "test"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
