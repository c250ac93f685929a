from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal
from typing import Union
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .models import Credentials


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")
_TAX_YEAR_RE = re.compile(r"^\d{4}$")

DEFAULT_ENTRY_URL = "https://sa.www4.irs.gov/wmar/"
DEFAULT_SHARED_SECRETS_URL = "https://sa.www4.irs.gov/wmar/sharedSecrets"
DEFAULT_SUBJECT = "WMAR — amended return (daily)"

Engine = Literal["chromium", "firefox"]


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in {"1", "true", "t", "yes", "y", "on"}


def _env_int(name: str, default: int = 0) -> int:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        return int(float(raw))
    except ValueError:
        return default


def _parse_engines(value: str) -> list[str]:
    items = [s.strip().lower() for s in re.split(r"[,\s]+", value or "") if s.strip()]
    out: list[str] = []
    for item in items:
        if item not in out:
            out.append(item)
    return out


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _default_config_from_env() -> dict:
    """
    Env-only config so a scheduled job only needs environment variables (or `.env`).
    A YAML file remains an optional override.
    """
    return {
        "irs": {
            "ssn": os.getenv("IRS_SSN", ""),
            "dob": os.getenv("IRS_DOB", ""),
            "zip": os.getenv("IRS_ZIP", ""),
            "tax_year": os.getenv("TAX_YEAR", "2023"),
        },
        "flow": {
            "entry_url": os.getenv("WMAR_ENTRY_URL", DEFAULT_ENTRY_URL),
            "shared_secrets_url": os.getenv("WMAR_SHARED_SECRETS_URL", DEFAULT_SHARED_SECRETS_URL),
            "submit": _env_bool("SUBMIT", default=True),
            "headful": _env_bool("HEAD", default=False),
            "verify_ms": _env_int("VERIFY_MS"),
            "pause_before_year_ms": _env_int("PAUSE_BEFORE_YEAR_MS"),
            "pause_after_year_ms": _env_int("PAUSE_AFTER_YEAR_MS"),
            "slow_flow_ms": _env_int("SLOW_FLOW_MS"),
            "result_screenshot": _env_bool("RESULT_SHOT", default=False),
            "engines": _parse_engines(os.getenv("WMAR_ENGINES", "chromium,firefox")),
        },
        "state": {
            "state_path": os.getenv("STATE_PATH", ""),
            "history_path": os.getenv("HISTORY_PATH", ".wmar_history.json"),
            "history_limit": _env_int("HISTORY_LIMIT", 365),
        },
        "mail": {
            "subject": os.getenv("MAIL_SUBJECT", DEFAULT_SUBJECT),
            "sender": os.getenv("MAIL_FROM", ""),
            "recipient": os.getenv("MAIL_TO", ""),
            "app_password": os.getenv("GMAIL_APP_PWD", ""),
            "smtp_host": os.getenv("SMTP_HOST", "smtp.gmail.com"),
            "smtp_port": _env_int("SMTP_PORT", 465),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", "data/wmar.log"),
        },
        "debug_dir": os.getenv("DEBUG_DIR", "data/debug"),
    }


class IrsConfig(BaseModel):
    """
    Raw shared secrets as configured. Validation/canonicalization happens in `credentials()`, so a
    malformed SSN is reported before any browser is launched rather than at config load.
    """

    ssn: str = Field(default="", repr=False)
    dob: str = Field(default="", repr=False)
    zip: str = ""
    tax_year: str = "2023"

    @field_validator("tax_year", mode="before")
    @classmethod
    def _validate_tax_year(cls, value: object) -> str:
        s = str(value if value is not None else "").strip()
        if not _TAX_YEAR_RE.match(s):
            raise ValueError("irs.tax_year must be a 4-digit year like '2023'")
        return s

    def credentials(self) -> Credentials:
        return Credentials(ssn=self.ssn, date_of_birth=self.dob, zip=self.zip)


class FlowConfig(BaseModel):
    entry_url: str = DEFAULT_ENTRY_URL
    shared_secrets_url: str = DEFAULT_SHARED_SECRETS_URL
    submit: bool = True
    headful: bool = False

    # Optional artificial delays at named checkpoints (watching a headful run, slow networks).
    verify_ms: int = 0
    pause_before_year_ms: int = 0
    pause_after_year_ms: int = 0
    slow_flow_ms: int = 0

    result_screenshot: bool = False
    engines: list[Engine] = Field(default_factory=lambda: ["chromium", "firefox"])

    @model_validator(mode="after")
    def _validate_urls(self) -> "FlowConfig":
        for name in ("entry_url", "shared_secrets_url"):
            parsed = urlparse(getattr(self, name))
            if not parsed.scheme or not parsed.netloc:
                raise ValueError(f"flow.{name} must be a full URL like '{DEFAULT_ENTRY_URL}'")
        if not self.engines:
            raise ValueError("flow.engines must list at least one browser engine")
        return self


class StateConfig(BaseModel):
    # Empty disables change tracking entirely.
    state_path: str = ""
    history_path: str = ".wmar_history.json"
    history_limit: int = Field(default=365, ge=1)


class MailConfig(BaseModel):
    # Keep the subject constant so successive notifications thread together.
    subject: str = DEFAULT_SUBJECT
    sender: str = ""
    recipient: str = ""
    app_password: str = Field(default="", repr=False)
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465

    @property
    def enabled(self) -> bool:
        return bool(self.sender and self.recipient and self.app_password)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = "data/wmar.log"


class AppConfig(BaseModel):
    irs: IrsConfig = IrsConfig()
    flow: FlowConfig = FlowConfig()
    state: StateConfig = StateConfig()
    mail: MailConfig = MailConfig()
    logging: LoggingConfig = LoggingConfig()
    debug_dir: str = "data/debug"


def load_config(path: Union[str, Path, None] = None) -> AppConfig:
    raw: dict = {}
    if path:
        p = Path(path)
        if p.exists():
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
            raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    return AppConfig.model_validate(merged)
