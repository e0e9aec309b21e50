"""
Engine configuration.

Values come from the environment, optionally seeded from backend/.env.
A missing routing credential is not a startup failure: the route calculator
reports API_NOT_CONFIGURED and the engine falls back to time-based estimates.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / ".env")

DEFAULT_OJP_ENDPOINT = "https://api.opentransportdata.swiss/ojp20"

# Placeholder shipped in sample .env files; treated as "no key"
PLACEHOLDER_API_KEY = "your_api_key_here"


@dataclass(frozen=True)
class EngineConfig:
    ojp_api_key: str
    ojp_endpoint: str
    ojp_requestor_ref: str
    mode: str
    timezone: str
    deep_link_scheme: str
    mongo_url: str
    db_name: str

    @property
    def routing_configured(self) -> bool:
        return bool(self.ojp_api_key) and self.ojp_api_key != PLACEHOLDER_API_KEY


def load_config() -> EngineConfig:
    """Read the engine configuration from the current environment."""
    return EngineConfig(
        ojp_api_key=os.environ.get("OJP_API_KEY", "").strip(),
        ojp_endpoint=os.environ.get("OJP_API_ENDPOINT", DEFAULT_OJP_ENDPOINT).strip(),
        ojp_requestor_ref=os.environ.get("OJP_REQUESTOR_REF", "DepartureReminder").strip(),
        mode=os.environ.get("DEPARTURE_MODE", "prod").strip().lower(),
        timezone=os.environ.get("DEPARTURE_TIMEZONE", "UTC").strip(),
        deep_link_scheme=os.environ.get("DEEP_LINK_SCHEME", "app").strip(),
        mongo_url=os.environ.get("MONGO_URL", "mongodb://localhost:27017").strip(),
        db_name=os.environ.get("DB_NAME", "departure_reminders").strip(),
    )
