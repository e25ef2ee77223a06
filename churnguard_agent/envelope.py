"""Event envelope construction.

Every tracked event is stamped with the active identity, the session, the
page it happened on and a client-generated `event_id` that the server uses
to discard duplicate deliveries.
"""

import copy
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from churnguard_agent.identity import Session, UserIdentity


class EventType(str, Enum):
    """Event types understood by the scoring engine (custom names are also allowed)."""

    PAGE_VIEW = 'page_view'
    CLICK = 'click'
    FORM_SUBMIT = 'form_submit'
    ERROR = 'error'
    PROMISE_REJECTION = 'promise_rejection'
    IDENTIFY = 'identify'
    HEARTBEAT = 'heartbeat'
    CUSTOM = 'custom'


@dataclass(frozen=True)
class PageContext:
    """Snapshot of the page an event happened on."""

    url: str = ''
    title: str = ''
    referrer: str = ''
    user_agent: str = ''


class Event(BaseModel):
    """Immutable event envelope. Serializes to the camelCase wire format."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    event_id: str
    user_id: str
    session_id: str
    event_type: str
    page_url: str = ''
    properties: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str

    def with_user(self, user_id: str) -> 'Event':
        """Copy of the event attributed to another user."""
        return self.model_copy(update={'user_id': user_id})

    def to_payload(self, api_key: str) -> Dict[str, Any]:
        """Request body for POST /track-event."""
        return {'apiKey': api_key, **self.model_dump(by_alias=True)}


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def build_event(
    event_type: Union[EventType, str],
    properties: Optional[Mapping[str, Any]],
    identity: UserIdentity,
    session: Session,
    page: Optional[PageContext] = None,
    now: Optional[datetime] = None,
) -> Event:
    """Build an envelope for one event.

    The caller's properties are copied, never mutated. `timestamp`,
    `user_agent` and `referrer` are added to the properties; missing page
    details become empty strings.

    Raises:
        ValueError: If `event_type` is empty
    """
    name = event_type.value if isinstance(event_type, EventType) else str(event_type or '')
    if not name:
        raise ValueError('event_type is required')

    page = page or PageContext()
    timestamp = iso_timestamp(now)

    payload = copy.deepcopy(dict(properties or {}))
    payload.update({
        'timestamp': timestamp,
        'user_agent': page.user_agent or '',
        'referrer': page.referrer or '',
    })

    return Event(
        event_id=uuid.uuid4().hex,
        user_id=identity.user_id,
        session_id=session.session_id,
        event_type=name,
        page_url=page.url or '',
        properties=payload,
        timestamp=timestamp,
    )
