"""Environment-driven settings.

Values are read once at import time after ``load_dotenv()``. Provider
configuration is not global: ``default_provider_configs`` builds a plain value
that callers pass to ``ProviderRouter`` explicitly.
"""

import os
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

ENV = os.getenv("ENV", "development")
ENV_IS_PROD = ENV in ("prod", "production")

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    if ENV_IS_PROD:
        raise ValueError("DATABASE_URL environment variable is required")
    DATABASE_URL = "sqlite+aiosqlite:///./message_relay.db"

SQL_DEBUG = os.getenv("SQL_DEBUG", "false").lower() == "true"
AUTO_CREATE_TABLES = os.getenv(
    "AUTO_CREATE_TABLES", "false" if ENV_IS_PROD else "true"
).lower() == "true"

COMMIT_HASH = os.getenv("COMMIT_HASH")
if not COMMIT_HASH and ENV_IS_PROD:
    raise ValueError("COMMIT_HASH is required for production environments")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

APP_ADDR = os.getenv("HOST", "0.0.0.0")
APP_PORT = int(os.getenv("PORT", "8000"))

DELIVERY_QUEUE = os.getenv("DELIVERY_QUEUE", "messaging")
DELIVERY_MAX_ATTEMPTS = int(os.getenv("DELIVERY_MAX_ATTEMPTS", "3"))

# In-process execution of jobs held by the in-memory scheduler
RUN_JOBS = os.getenv("RUN_JOBS", "true").lower() == "true"
JOB_POLL_INTERVAL = float(os.getenv("JOB_POLL_INTERVAL", "1.0"))

PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10"))


def default_provider_configs(
    env: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Dict[str, Any]]:
    """Build the provider configuration map for an environment.

    Keys are provider names in priority-neutral configuration order; each
    value is ``{"enabled": bool, "config": {...}}``.
    """
    env = env or ENV
    environ = os.environ if environ is None else environ

    mock = {
        "enabled": True,
        "config": {"provider_name": "mock"},
    }

    if env == "test":
        return {"mock": mock}

    twilio_config = {
        "account_sid": environ.get("TWILIO_ACCOUNT_SID", ""),
        "auth_token": environ.get("TWILIO_AUTH_TOKEN", ""),
        "from_number": environ.get("TWILIO_FROM_NUMBER", ""),
        "timeout": PROVIDER_TIMEOUT_SECONDS,
    }
    if environ.get("TWILIO_BASE_URL"):
        twilio_config["base_url"] = environ["TWILIO_BASE_URL"]

    sendgrid_config = {
        "api_key": environ.get("SENDGRID_API_KEY", ""),
        "from_email": environ.get("SENDGRID_FROM_EMAIL", ""),
        "from_name": environ.get("SENDGRID_FROM_NAME", "Message Relay"),
        "timeout": PROVIDER_TIMEOUT_SECONDS,
    }
    if environ.get("SENDGRID_BASE_URL"):
        sendgrid_config["base_url"] = environ["SENDGRID_BASE_URL"]

    if env in ("prod", "production"):
        return {
            "twilio": {"enabled": True, "config": twilio_config},
            "sendgrid": {"enabled": True, "config": sendgrid_config},
        }

    return {
        "twilio": {"enabled": False, "config": twilio_config},
        "sendgrid": {"enabled": False, "config": sendgrid_config},
        "mock": mock,
    }
