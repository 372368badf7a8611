"""Service settings.

Values come from an optional JSON file (``BEEPER_CONFIG``, default
``config.json``) laid out as::

    {"server": {"port": 3000},
     "smtp": {"host": "...", "port": 465, "secure": true,
              "auth": {"user": "...", "pass": "..."}},
     "mail": {"fromName": "...", "fromAddress": "..."}}

and are then overridden by environment variables.
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_SMTP_HOST = "smtp.qq.com"


class Settings(BaseSettings):
    """Field names double as environment variable names (``SMTP_PASS`` and so on)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    pending_file: Path = Path("pending_emails.json")
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    smtp_host: str = DEFAULT_SMTP_HOST
    smtp_port: int = 465
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    smtp_timeout: float = 30.0

    mail_from_name: str = "Motorola Beeper"
    mail_from_address: Optional[str] = None
    mail_subject: str = "📟 Motorola Beeper"
    mail_template: Optional[Path] = None

    delivery_max_retries: int = 0
    delivery_retry_delay: float = 60.0

    @property
    def smtp_secure(self) -> bool:
        return self.smtp_port == 465

    @property
    def sender_address(self) -> str:
        return self.mail_from_address or self.smtp_user or ""


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("ignoring config file %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def _from_file(data: Dict[str, Any]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    server = data.get("server") or {}
    smtp = data.get("smtp") or {}
    auth = smtp.get("auth") or {}
    mail = data.get("mail") or {}

    if server.get("port") is not None:
        values["port"] = server["port"]
    host = smtp.get("host")
    if host is not None and str(host).strip():
        values["smtp_host"] = str(host).strip()
    if smtp.get("port") is not None:
        values["smtp_port"] = int(smtp["port"])
    elif smtp.get("secure") is False:
        values["smtp_port"] = 587
    if auth.get("user"):
        values["smtp_user"] = auth["user"]
    if auth.get("pass"):
        values["smtp_pass"] = auth["pass"]
    if mail.get("fromName"):
        values["mail_from_name"] = mail["fromName"]
    if mail.get("fromAddress"):
        values["mail_from_address"] = mail["fromAddress"]
    return values


def load_settings(config_file: Optional[Path] = None) -> Settings:
    """Defaults, then the config file, then the environment."""
    if config_file is None:
        config_file = Path(os.environ.get("BEEPER_CONFIG", "config.json"))
    from_env = Settings()
    values = _from_file(_read_config_file(config_file))
    values.update(from_env.model_dump(include=from_env.model_fields_set))
    return Settings(**values)
