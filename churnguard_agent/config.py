"""Collector configuration."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_ENDPOINT = 'http://localhost:8000/api'


class CollectorConfig(BaseModel):
    """Configuration of a ChurnGuardian instance.

    Accepts snake_case or camelCase keys (`api_key` / `apiKey`). Tracking
    flags default to enabled except `identify_from_url` and `debug`.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    api_key: str = Field(..., min_length=1, description='Tenant API key')
    endpoint: str = Field(DEFAULT_ENDPOINT, description='Base URL of the collection API')

    track_clicks: bool = True
    track_page_views: bool = True
    track_forms: bool = True
    track_errors: bool = True
    identify_from_url: bool = False
    user_id_param: str = 'uid'

    retry_attempts: int = Field(3, ge=1, description='Total delivery attempts per event')
    retry_delay: float = Field(1.0, ge=0, description='Base backoff delay in seconds')
    max_concurrency: int = Field(10, ge=1, description='Concurrent in-flight deliveries')
    request_timeout: float = Field(10.0, gt=0, description='HTTP timeout in seconds')
    heartbeat_interval: float = Field(60.0, gt=0, description='Seconds between heartbeats')

    user_id: Optional[str] = Field(None, description='Known user id (skips anonymous id)')
    debug: bool = False

    @field_validator('api_key')
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('API key is required')
        return v.strip()

    @field_validator('endpoint')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip('/')
