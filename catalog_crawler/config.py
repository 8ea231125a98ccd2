"""Centralised settings for the catalog crawler.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (one level up from this package)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)

_DEFAULT_REQUIRED_SUBJECTS = "BIO,PSY,CSE,ECO,AMS,POL"

_DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/91.0.4472.124 Safari/537.36"
)


def parse_subject_list(raw: str) -> tuple[str, ...]:
    """Split a comma-separated subject list into upper-cased codes.

    Blank entries are dropped, so ``"cse, ,ams"`` becomes ``("CSE", "AMS")``.
    """
    return tuple(part.strip().upper() for part in raw.split(",") if part.strip())


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Catalog target
    # ------------------------------------------------------------------
    catalog_base_url: str = field(
        default_factory=lambda: os.environ.get(
            "CATALOG_BASE_URL", "https://catalog.stonybrook.edu"
        ).rstrip("/")
    )
    required_subjects: tuple[str, ...] = field(
        default_factory=lambda: parse_subject_list(
            os.environ.get("REQUIRED_SUBJECTS", _DEFAULT_REQUIRED_SUBJECTS)
        )
    )

    # ------------------------------------------------------------------
    # Concurrency / timeouts (seconds)
    # ------------------------------------------------------------------
    request_concurrency: int = field(
        default_factory=lambda: int(os.environ.get("REQUEST_CONCURRENCY", "30"))
    )
    detail_timeout: float = field(
        default_factory=lambda: float(os.environ.get("DETAIL_TIMEOUT", "15.0"))
    )
    index_timeout: float = field(
        default_factory=lambda: float(os.environ.get("INDEX_TIMEOUT", "60.0"))
    )

    # ------------------------------------------------------------------
    # Retry policy
    # ------------------------------------------------------------------
    max_retries: int = field(
        default_factory=lambda: int(os.environ.get("MAX_RETRIES", "2"))
    )
    retry_base_delay: float = field(
        default_factory=lambda: float(os.environ.get("RETRY_BASE_DELAY", "1.0"))
    )
    failure_log_sample_rate: float = field(
        default_factory=lambda: float(os.environ.get("FAILURE_LOG_SAMPLE_RATE", "0.05"))
    )
    failure_summary_threshold: float = field(
        default_factory=lambda: float(os.environ.get("FAILURE_SUMMARY_THRESHOLD", "0.3"))
    )

    # ------------------------------------------------------------------
    # Browser / HTTP identity
    # ------------------------------------------------------------------
    headless: bool = field(default_factory=lambda: _env_bool("BROWSER_HEADLESS", "true"))
    user_agent: str = field(
        default_factory=lambda: os.environ.get("SCRAPER_USER_AGENT", _DEFAULT_USER_AGENT)
    )

    def is_supported(self, subject: str) -> bool:
        """Return ``True`` if *subject* is one of the required subjects."""
        return subject.strip().upper() in self.required_subjects


# Module-level singleton. The CLI reads this; the orchestrator accepts any
# Settings instance explicitly:
#   from catalog_crawler.config import settings
settings = Settings()
