"""Models package for database entities."""

from churnguard_server.models.client import Client
from churnguard_server.models.prediction import Prediction, risk_level_for
from churnguard_server.models.tracked_event import TrackedEvent
from churnguard_server.models.user_profile import UserProfile

__all__ = [
    'Client',
    'TrackedEvent',
    'UserProfile',
    'Prediction',
    'risk_level_for',
]
