"""Configuration management for the registration desk."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_SESSION_MS = 2 * 60 * 60 * 1000
DEFAULT_MAX_UPLOAD_BYTES = 20 * 1024 * 1024
DEFAULT_PAYMENT_AMOUNT = "499"

_TRUE_VALUES = {"1", "true", "yes", "on"}

# Settings key -> environment variable that overrides it.
_ENV_KEYS: Dict[str, str] = {
    "admin_user": "ADMIN_USER",
    "admin_pass": "ADMIN_PASS",
    "session_ms": "ADMIN_SESSION_MS",
    "secure_cookies": "RPL_SESSION_SECURE",
    "max_upload_bytes": "RPL_MAX_UPLOAD_BYTES",
    "database_path": "RPL_DB_PATH",
    "uploads_dir": "RPL_UPLOADS_DIR",
    "smtp_host": "SMTP_HOST",
    "smtp_port": "SMTP_PORT",
    "smtp_user": "SMTP_USER",
    "smtp_pass": "SMTP_PASS",
    "smtp_use_ssl": "SMTP_USE_SSL",
    "upi_id": "FIXED_UPI",
    "payment_amount": "FIXED_AMOUNT",
    "cors_origins": "RPL_CORS_ORIGINS",
    "port": "PORT",
}


@dataclass(frozen=True)
class SmtpConfig:
    """Outbound mail settings. Only built when credentials are present."""

    host: str
    port: int
    username: str
    password: str
    use_ssl: bool = False
    timeout: float = 15.0


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the registration service."""

    admin_user: str = "admin"
    admin_pass: str = "password"
    session_ttl: timedelta = timedelta(milliseconds=DEFAULT_SESSION_MS)
    secure_cookies: bool = False
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    database_path: Path = PROJECT_ROOT / "data" / "rpl.sqlite3"
    uploads_dir: Path = PROJECT_ROOT / "uploads"
    smtp: Optional[SmtpConfig] = None
    upi_id: Optional[str] = None
    payment_amount: str = DEFAULT_PAYMENT_AMOUNT
    cors_origins: Tuple[str, ...] = field(default=("*",))
    port: int = 3000

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw (string or YAML-typed) values."""

        defaults = Settings()
        admin_user = _text(data.get("admin_user")) or defaults.admin_user
        admin_pass = _text(data.get("admin_pass")) or defaults.admin_pass

        session_ms = _integer(data, "session_ms", DEFAULT_SESSION_MS)
        if session_ms <= 0:
            raise ValueError("ADMIN_SESSION_MS must be a positive number of milliseconds")

        max_upload_bytes = _integer(data, "max_upload_bytes", DEFAULT_MAX_UPLOAD_BYTES)
        if max_upload_bytes <= 0:
            raise ValueError("RPL_MAX_UPLOAD_BYTES must be a positive number of bytes")

        database_path = _path(data.get("database_path"), base_path) or defaults.database_path
        uploads_dir = _path(data.get("uploads_dir"), base_path) or defaults.uploads_dir

        smtp: Optional[SmtpConfig] = None
        smtp_user = _text(data.get("smtp_user"))
        smtp_pass = _text(data.get("smtp_pass"))
        if smtp_user and smtp_pass:
            smtp = SmtpConfig(
                host=_text(data.get("smtp_host")) or "smtp.gmail.com",
                port=_integer(data, "smtp_port", 587),
                username=smtp_user,
                password=smtp_pass,
                use_ssl=_flag(data.get("smtp_use_ssl")),
            )

        raw_origins = data.get("cors_origins")
        if isinstance(raw_origins, (list, tuple)):
            origins = tuple(str(item).strip() for item in raw_origins if str(item).strip())
        else:
            origins = tuple(
                item.strip() for item in (_text(raw_origins) or "*").split(",") if item.strip()
            )

        return Settings(
            admin_user=admin_user,
            admin_pass=admin_pass,
            session_ttl=timedelta(milliseconds=session_ms),
            secure_cookies=_flag(data.get("secure_cookies")),
            max_upload_bytes=max_upload_bytes,
            database_path=database_path,
            uploads_dir=uploads_dir,
            smtp=smtp,
            upi_id=_text(data.get("upi_id")),
            payment_amount=_text(data.get("payment_amount")) or DEFAULT_PAYMENT_AMOUNT,
            cors_origins=origins or ("*",),
            port=_integer(data, "port", 3000),
        )

    def with_overrides(self, **changes: object) -> "Settings":
        return replace(self, **changes)


def _text(value: object) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _flag(value: object) -> bool:
    if isinstance(value, bool):
        return value
    text = _text(value)
    return text is not None and text.lower() in _TRUE_VALUES


def _integer(data: Mapping[str, object], key: str, default: int) -> int:
    raw = data.get(key)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    try:
        return int(str(raw).strip())
    except ValueError as exc:
        name = _ENV_KEYS.get(key, key)
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _path(value: object, base_path: Path | None) -> Optional[Path]:
    text = _text(value)
    if text is None:
        return None
    raw = Path(text).expanduser()
    if not raw.is_absolute() and base_path is not None:
        raw = base_path / raw
    return raw.resolve(strict=False)


def _read_config_file(config_path: Path) -> Dict[str, object]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping")
    section = raw.get("settings", raw)
    if not isinstance(section, dict):
        raise ValueError("The 'settings' key must contain a mapping")
    return dict(section)


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the optional YAML configuration file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    candidate = (PROJECT_ROOT / "config" / "settings.yaml").resolve(strict=False)
    return candidate if candidate.exists() else None


def load_settings(
    environ: Mapping[str, str] | None = None,
    *,
    config_path: Path | None = None,
) -> Settings:
    """Load settings from the optional YAML file, then environment overrides."""
    env = os.environ if environ is None else environ

    if config_path is None:
        config_path = resolve_config_path(env.get("RPL_CONFIG"))

    data: Dict[str, object] = {}
    base_path: Path | None = None
    if config_path is not None:
        data.update(_read_config_file(config_path))
        base_path = config_path.parent

    for key, variable in _ENV_KEYS.items():
        value = env.get(variable)
        if value is not None:
            data[key] = value

    return Settings.from_dict(data, base_path=base_path)


__all__ = ["Settings", "SmtpConfig", "load_settings", "resolve_config_path"]
