"""Settings loader for Metaport."""

from pathlib import Path
from typing import Any

import tomllib
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _toml_settings_source() -> dict[str, Any]:
    """Load settings from config.toml with keys mapped to Settings fields.

    This source has LOWER priority than env/.env so those can override TOML.
    """
    cfg_path = Path("config.toml")
    if not cfg_path.exists():
        return {}
    with cfg_path.open("rb") as f:
        t = tomllib.load(f)

    import_cfg = t.get("import", {}) or {}
    audit_cfg = t.get("audit", {}) or {}
    out: dict[str, Any] = {
        "env": t.get("app", {}).get("env", "dev"),
        # Example:
        # [import]
        # temp_directory = "/var/tmp/metaport"
        # continue_on_entity_error = true
        "import_temp_directory": import_cfg.get("temp_directory"),
        "import_continue_on_entity_error": import_cfg.get("continue_on_entity_error", True),
        # [audit]
        # max_detail_bytes = 10485760
        # [audit.excluded_attributes]
        # hive_table = ["parameters", "viewOriginalText"]
        "audit_max_detail_bytes": audit_cfg.get("max_detail_bytes", 10_485_760),
        "audit_excluded_attributes": audit_cfg.get("excluded_attributes", {}) or {},
        # Logging config
        "logging_level": t.get("logging", {}).get("level", "INFO"),
        "logging_console": None,
        "logging_file": None,
        "logging_file_path": t.get("logging", {}).get("file_path", "logs/metaport.jsonl"),
        "logging_max_bytes": t.get("logging", {}).get("max_bytes", 5_000_000),
        "logging_backup_count": t.get("logging", {}).get("backup_count", 5),
    }
    if "database_url" in (t.get("db", {}) or {}):
        out["database_url"] = t["db"]["database_url"]

    log_cfg = t.get("logging", {}) or {}
    # Per-handler levels: strings INFO|DEBUG|WARNING|ERROR|CRITICAL|NONE, or bools
    overall = out["logging_level"]

    def _norm_level(v, default):
        if isinstance(v, str):
            return v.upper()
        if isinstance(v, bool):
            return default if v else "NONE"
        return default

    out["logging_console"] = _norm_level(log_cfg.get("console"), overall)
    out["logging_file"] = _norm_level(log_cfg.get("to_file"), overall)

    # Drop unset optionals so field defaults apply
    return {k: v for k, v in out.items() if v is not None}


class Settings(BaseSettings):
    env: str = Field(default="dev")
    database_url: str = Field(default="sqlite+aiosqlite:///./metaport.sqlite3")

    # --- Import behavior ---
    # When set, incoming packages are spooled to a temp file here instead of memory
    import_temp_directory: str | None = None
    import_continue_on_entity_error: bool = True

    # --- Audit ---
    audit_max_detail_bytes: int = 10_485_760
    audit_excluded_attributes: dict[str, list[str]] = Field(default_factory=dict)

    # --- Logging ---
    logging_level: str = "INFO"
    logging_console: str = "INFO"
    logging_file: str = "NONE"
    logging_file_path: str = "logs/metaport.jsonl"
    logging_max_bytes: int = 5_000_000
    logging_backup_count: int = 5

    model_config = SettingsConfigDict(
        env_prefix="METAPORT_",
        case_sensitive=False,
        env_file=".env",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Precedence (highest to lowest):
        # 1) init_settings (explicit overrides in code/tests)
        # 2) dotenv (.env in cwd)
        # 3) env_settings (OS env)
        # 4) TOML (config.toml), project defaults
        # 5) file_secret_settings
        return (
            init_settings,
            dotenv_settings,
            env_settings,
            _toml_settings_source,
            file_secret_settings,
        )


def load_settings() -> Settings:
    return Settings()
