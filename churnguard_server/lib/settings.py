"""Runtime settings for the ChurnGuard server.

Values come from the process environment. `.env` and `.env.local` files in the
working directory are loaded first (python-dotenv) so local development does
not need exported variables.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import FrozenSet, List

from dotenv import load_dotenv

DEFAULT_DATABASE_URL = 'sqlite:///./churnguard.db'
DEFAULT_SIGNIFICANT_EVENT_TYPES = frozenset({'page_view', 'form_submit', 'identify'})


def load_env_files(*paths: str) -> None:
  """Load environment variables from dotenv files that exist (first one wins)."""
  for filepath in paths:
    if Path(filepath).exists():
      load_dotenv(filepath, override=False)


def _split_csv(raw: str) -> List[str]:
  return [item.strip() for item in raw.split(',') if item.strip()]


@dataclass(frozen=True)
class Settings:
  """Server configuration resolved from environment variables.

  Attributes:
      database_url: SQLAlchemy URL of the persistence store (DATABASE_URL)
      prediction_ttl: Freshness window of cached predictions (PREDICTION_TTL_HOURS)
      significant_event_types: Event types that dispatch a recompute job (SIGNIFICANT_EVENT_TYPES)
      auto_create_tables: Create tables on startup instead of relying on alembic (AUTO_CREATE_TABLES)
      cors_origins: Origins allowed to post events (CORS_ORIGINS, '*' by default)
  """

  database_url: str = DEFAULT_DATABASE_URL
  prediction_ttl: timedelta = timedelta(hours=24)
  significant_event_types: FrozenSet[str] = DEFAULT_SIGNIFICANT_EVENT_TYPES
  auto_create_tables: bool = True
  cors_origins: List[str] = field(default_factory=lambda: ['*'])

  @classmethod
  def from_env(cls) -> 'Settings':
    """Build settings from the current environment."""
    ttl_hours = float(os.getenv('PREDICTION_TTL_HOURS', '24'))
    if ttl_hours <= 0:
      raise ValueError('PREDICTION_TTL_HOURS must be positive')

    significant = os.getenv('SIGNIFICANT_EVENT_TYPES')
    return cls(
      database_url=os.getenv('DATABASE_URL', DEFAULT_DATABASE_URL),
      prediction_ttl=timedelta(hours=ttl_hours),
      significant_event_types=(
        frozenset(_split_csv(significant)) if significant else DEFAULT_SIGNIFICANT_EVENT_TYPES
      ),
      auto_create_tables=os.getenv('AUTO_CREATE_TABLES', 'true').lower() == 'true',
      cors_origins=_split_csv(os.getenv('CORS_ORIGINS', '*')) or ['*'],
    )


_settings: Settings | None = None


def get_settings() -> Settings:
  """Get the process-wide settings (resolved once)."""
  global _settings
  if _settings is None:
    load_env_files('.env.local', '.env')
    _settings = Settings.from_env()
  return _settings


def reset_settings() -> None:
  """Forget cached settings so the next call re-reads the environment (tests)."""
  global _settings
  _settings = None
