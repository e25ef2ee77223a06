"""ChurnGuard agent: behavioural event collection for churn prediction.

Usage:
    host = PageHost(url='https://app.example.com/dashboard', title='Dashboard')
    guardian = ChurnGuardian({'api_key': 'cg_live_123'}, host, FileStorage('~/.churnguard.json'))
    await guardian.start()
    guardian.track('plan_upgraded', {'plan': 'pro'})
    await guardian.close()
"""

import logging

from churnguard_agent.collector import ChurnGuardian
from churnguard_agent.config import CollectorConfig
from churnguard_agent.delivery import DeliveryQueue, DeliveryState
from churnguard_agent.envelope import Event, EventType, build_event
from churnguard_agent.host import Element, ErrorReport, PageHost
from churnguard_agent.identity import IdentityManager
from churnguard_agent.runtime_hooks import RuntimeErrorHooks
from churnguard_agent.storage import FileStorage, MemoryStorage
from churnguard_agent.transport import DeliveryError, HttpTransport, PredictionError

# Silent unless the host application (or `debug=True`) configures a handler
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    'ChurnGuardian',
    'CollectorConfig',
    'DeliveryError',
    'DeliveryQueue',
    'DeliveryState',
    'Element',
    'ErrorReport',
    'Event',
    'EventType',
    'FileStorage',
    'HttpTransport',
    'IdentityManager',
    'MemoryStorage',
    'PageHost',
    'PredictionError',
    'RuntimeErrorHooks',
    'build_event',
]
