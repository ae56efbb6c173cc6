"""caretrack configuration loading and validation.

Reads caretrack.toml from a config directory, parses all sections, and
returns a validated CaretrackConfig dataclass. Every section is optional;
a missing file is an error only when explicitly requested.
"""

from __future__ import annotations

import enum
import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

CONFIG_FILENAME = "caretrack.toml"

# Pattern matching ${VAR_NAME}; supports alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when caretrack configuration is missing, malformed, or invalid."""


class NotificationBackend(enum.StrEnum):
    """Which transport delivers notification email."""

    LOG = "log"
    SMTP = "smtp"
    BREVO = "brevo"


@dataclass
class LoggingConfig:
    """Logging configuration from [caretrack.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class DatabaseConfig:
    """Database configuration from [caretrack.db] section.

    Host, port and credentials come from ``DATABASE_URL`` or the
    ``POSTGRES_*`` environment variables; see ``caretrack.db``.
    """

    name: str = "caretrack"


@dataclass
class SchedulerConfig:
    """Notification scheduler configuration from [caretrack.scheduler] section.

    Hour windows are half-open: ``(7, 21)`` means 07:00 up to 20:59.
    """

    medication_tick_seconds: float = 120
    daily_update_tick_seconds: float = 60
    reload_tick_seconds: float = 3600
    medication_hours: tuple[int, int] = (7, 21)
    daily_update_hours: tuple[int, int] = (6, 22)
    reminder_send_delay_seconds: float = 0.5
    daily_update_send_delay_seconds: float = 2.0
    alert_send_delay_seconds: float = 1.0
    alert_lookback_hours: int = 24
    alert_batch_limit: int = 3
    timezone: str = "UTC"

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass
class NotificationConfig:
    """Notification delivery configuration from [caretrack.notifications] section.

    Secrets are never stored in the file; the ``*_env`` fields name the
    environment variables that hold them.
    """

    backend: NotificationBackend = NotificationBackend.LOG
    sender_email: str = "no-reply@caretrack.local"
    sender_name: str = "CareTrack"
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_use_tls: bool = True
    smtp_username_env: str = "CARETRACK_SMTP_USERNAME"
    smtp_password_env: str = "CARETRACK_SMTP_PASSWORD"
    brevo_api_key_env: str = "BREVO_API_KEY"
    brevo_api_url: str = "https://api.brevo.com/v3/smtp/email"


@dataclass
class AnalysisConfig:
    """Analysis windows from [caretrack.analysis] section."""

    adherence_window_days: int = 7
    history_limit: int = 30
    comprehensive_window_days: int = 30
    prediction_history_days: int = 90


@dataclass
class CaretrackConfig:
    """Parsed and validated caretrack configuration."""

    name: str = "caretrack"
    development: bool = False
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _positive(section: dict, key: str, default: float, *, integer: bool = False) -> Any:
    raw = section.get(key, default)
    try:
        value = int(raw) if integer else float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid caretrack.scheduler.{key}: {raw!r}. Must be a number.") from exc
    if value <= 0:
        kind = "integer" if integer else "number"
        raise ConfigError(f"Invalid caretrack.scheduler.{key}: {raw!r}. Must be a positive {kind}.")
    return value


def _non_negative(section: dict, key: str, default: float) -> float:
    raw = section.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid caretrack.scheduler.{key}: {raw!r}. Must be a number.") from exc
    if value < 0:
        raise ConfigError(f"Invalid caretrack.scheduler.{key}: {raw!r}. Must not be negative.")
    return value


def _hour_window(section: dict, key: str, default: tuple[int, int]) -> tuple[int, int]:
    raw = section.get(key, list(default))
    if not isinstance(raw, list | tuple) or len(raw) != 2:
        raise ConfigError(f"Invalid caretrack.scheduler.{key}: {raw!r}. Expected [start, end].")
    try:
        start, end = int(raw[0]), int(raw[1])
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            f"Invalid caretrack.scheduler.{key}: {raw!r}. Hours must be integers."
        ) from exc
    if not 0 <= start < end <= 24:
        raise ConfigError(
            f"Invalid caretrack.scheduler.{key}: {raw!r}. Must satisfy 0 <= start < end <= 24."
        )
    return start, end


def _parse_scheduler(section: dict) -> SchedulerConfig:
    timezone = str(section.get("timezone", "UTC"))
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Invalid caretrack.scheduler.timezone: {timezone!r}") from exc

    return SchedulerConfig(
        medication_tick_seconds=_positive(section, "medication_tick_seconds", 120),
        daily_update_tick_seconds=_positive(section, "daily_update_tick_seconds", 60),
        reload_tick_seconds=_positive(section, "reload_tick_seconds", 3600),
        medication_hours=_hour_window(section, "medication_hours", (7, 21)),
        daily_update_hours=_hour_window(section, "daily_update_hours", (6, 22)),
        reminder_send_delay_seconds=_non_negative(section, "reminder_send_delay_seconds", 0.5),
        daily_update_send_delay_seconds=_non_negative(
            section, "daily_update_send_delay_seconds", 2.0
        ),
        alert_send_delay_seconds=_non_negative(section, "alert_send_delay_seconds", 1.0),
        alert_lookback_hours=_positive(section, "alert_lookback_hours", 24, integer=True),
        alert_batch_limit=_positive(section, "alert_batch_limit", 3, integer=True),
        timezone=timezone,
    )


def _parse_notifications(section: dict) -> NotificationConfig:
    raw_backend = str(section.get("backend", "log")).lower()
    try:
        backend = NotificationBackend(raw_backend)
    except ValueError as exc:
        raise ConfigError(
            f"Invalid caretrack.notifications.backend: {raw_backend!r}. "
            "Expected 'log', 'smtp' or 'brevo'."
        ) from exc

    defaults = NotificationConfig()
    return NotificationConfig(
        backend=backend,
        sender_email=str(section.get("sender_email", defaults.sender_email)),
        sender_name=str(section.get("sender_name", defaults.sender_name)),
        smtp_host=str(section.get("smtp_host", defaults.smtp_host)),
        smtp_port=int(section.get("smtp_port", defaults.smtp_port)),
        smtp_use_tls=bool(section.get("smtp_use_tls", defaults.smtp_use_tls)),
        smtp_username_env=str(section.get("smtp_username_env", defaults.smtp_username_env)),
        smtp_password_env=str(section.get("smtp_password_env", defaults.smtp_password_env)),
        brevo_api_key_env=str(section.get("brevo_api_key_env", defaults.brevo_api_key_env)),
        brevo_api_url=str(section.get("brevo_api_url", defaults.brevo_api_url)),
    )


def _parse_analysis(section: dict) -> AnalysisConfig:
    values: dict[str, int] = {}
    for key, default in (
        ("adherence_window_days", 7),
        ("history_limit", 30),
        ("comprehensive_window_days", 30),
        ("prediction_history_days", 90),
    ):
        raw = section.get(key, default)
        try:
            value = int(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                f"Invalid caretrack.analysis.{key}: {raw!r}. Must be an integer."
            ) from exc
        if value <= 0:
            raise ConfigError(
                f"Invalid caretrack.analysis.{key}: {value!r}. Must be a positive integer."
            )
        values[key] = value
    return AnalysisConfig(**values)


def parse_config(data: dict[str, Any]) -> CaretrackConfig:
    """Build a CaretrackConfig from already-parsed TOML *data*."""
    data = resolve_env_vars(data)

    section = data.get("caretrack", {})
    if not isinstance(section, dict):
        raise ConfigError("[caretrack] must be a table")

    name = str(section.get("name", "caretrack")).strip()
    if not name:
        raise ConfigError("caretrack.name must be a non-empty string")

    # --- [caretrack.logging] ---
    logging_section = section.get("logging", {})
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid caretrack.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    logging_config = LoggingConfig(
        level=str(logging_section.get("level", "INFO")).upper(),
        format=log_format,
        log_root=logging_section.get("log_root"),
    )

    # --- [caretrack.db] ---
    db_name = str(section.get("db", {}).get("name", "caretrack")).strip()
    if not db_name:
        raise ConfigError("caretrack.db.name must be a non-empty string")

    return CaretrackConfig(
        name=name,
        development=bool(section.get("development", False)),
        logging=logging_config,
        db=DatabaseConfig(name=db_name),
        scheduler=_parse_scheduler(section.get("scheduler", {})),
        notifications=_parse_notifications(section.get("notifications", {})),
        analysis=_parse_analysis(section.get("analysis", {})),
    )


def load_config(config_dir: Path) -> CaretrackConfig:
    """Load and validate caretrack.toml from *config_dir*.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or has invalid values.
    """
    toml_path = Path(config_dir) / CONFIG_FILENAME

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
