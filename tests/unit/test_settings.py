"""Unit tests for environment-driven server settings."""

import os
from datetime import timedelta

import pytest

from churnguard_server.lib.settings import (
  DEFAULT_DATABASE_URL,
  DEFAULT_SIGNIFICANT_EVENT_TYPES,
  Settings,
  get_settings,
  load_env_files,
  reset_settings,
)

ENV_VARS = (
  'DATABASE_URL',
  'PREDICTION_TTL_HOURS',
  'SIGNIFICANT_EVENT_TYPES',
  'AUTO_CREATE_TABLES',
  'CORS_ORIGINS',
)


@pytest.fixture
def clean_env(monkeypatch):
  for name in ENV_VARS:
    monkeypatch.delenv(name, raising=False)
  reset_settings()
  yield monkeypatch
  # load_env_files writes os.environ directly; monkeypatch restores the originals after this
  for name in ENV_VARS:
    os.environ.pop(name, None)
  reset_settings()


def test_defaults(clean_env):
  settings = Settings.from_env()

  assert settings.database_url == DEFAULT_DATABASE_URL
  assert settings.prediction_ttl == timedelta(hours=24)
  assert settings.significant_event_types == DEFAULT_SIGNIFICANT_EVENT_TYPES
  assert settings.auto_create_tables is True
  assert settings.cors_origins == ['*']


def test_reads_overrides_from_environment(clean_env):
  clean_env.setenv('DATABASE_URL', 'postgresql+psycopg://u:p@db/churn')
  clean_env.setenv('PREDICTION_TTL_HOURS', '6')
  clean_env.setenv('SIGNIFICANT_EVENT_TYPES', 'page_view, click ,')
  clean_env.setenv('AUTO_CREATE_TABLES', 'False')
  clean_env.setenv('CORS_ORIGINS', 'https://a.example.com,https://b.example.com')

  settings = Settings.from_env()

  assert settings.database_url == 'postgresql+psycopg://u:p@db/churn'
  assert settings.prediction_ttl == timedelta(hours=6)
  assert settings.significant_event_types == frozenset({'page_view', 'click'})
  assert settings.auto_create_tables is False
  assert settings.cors_origins == ['https://a.example.com', 'https://b.example.com']


@pytest.mark.parametrize('value', ['0', '-1'])
def test_non_positive_ttl_is_rejected(clean_env, value):
  clean_env.setenv('PREDICTION_TTL_HOURS', value)

  with pytest.raises(ValueError, match='PREDICTION_TTL_HOURS'):
    Settings.from_env()


def test_get_settings_is_cached_until_reset(clean_env, tmp_path):
  clean_env.chdir(tmp_path)
  clean_env.setenv('PREDICTION_TTL_HOURS', '2')
  first = get_settings()
  clean_env.setenv('PREDICTION_TTL_HOURS', '3')

  assert get_settings() is first

  reset_settings()
  assert get_settings().prediction_ttl == timedelta(hours=3)


def test_first_env_file_wins_and_environment_is_not_overridden(clean_env, tmp_path):
  local = tmp_path / '.env.local'
  shared = tmp_path / '.env'
  local.write_text('PREDICTION_TTL_HOURS=12\n')
  shared.write_text('PREDICTION_TTL_HOURS=48\nDATABASE_URL=sqlite:///shared.db\n')
  clean_env.setenv('DATABASE_URL', 'sqlite:///exported.db')

  load_env_files(str(local), str(shared), str(tmp_path / 'missing.env'))
  settings = Settings.from_env()

  assert settings.prediction_ttl == timedelta(hours=12)
  assert settings.database_url == 'sqlite:///exported.db'
