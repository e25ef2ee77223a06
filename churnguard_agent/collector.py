"""ChurnGuardian: the instrumentation collector.

Observes a PageHost (page views, clicks, form submits, errors, heartbeats),
turns each signal into an event envelope and hands it to the delivery
queue. Every handler is isolated: a failure is logged and counted and never
reaches the host's own error signal. A collector without a valid
configuration stays inert.
"""

import asyncio
import logging
import os
from contextlib import suppress
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from churnguard_agent.config import CollectorConfig
from churnguard_agent.delivery import DeliveryQueue
from churnguard_agent.envelope import Event, EventType, build_event
from churnguard_agent.host import Element, ErrorReport, PageHost
from churnguard_agent.identity import IdentityManager
from churnguard_agent.storage import KeyValueStorage, MemoryStorage
from churnguard_agent.transport import HttpTransport, PredictionError, Transport

logger = logging.getLogger(__name__)
# Outside the package logger (which only has a NullHandler) so a disabled
# collector is reported even when the host configured no logging
setup_logger = logging.getLogger('churnguard.setup')

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
LOG_PREFIX = '[ChurnGuardian]'


def _enable_debug_logging() -> None:
    package_logger = logging.getLogger('churnguard_agent')
    package_logger.setLevel(logging.DEBUG)
    if not any(getattr(h, '_churnguard_debug', False) for h in package_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(f'{LOG_PREFIX} %(message)s'))
        handler._churnguard_debug = True
        package_logger.addHandler(handler)


def _compact(properties: Dict[str, Any]) -> Dict[str, Any]:
    """Drop empty values, the way the browser agent omitted undefined fields."""
    return {key: value for key, value in properties.items() if value not in (None, '')}


def _is_internal_source(path: str) -> bool:
    return bool(path) and os.path.abspath(path).startswith(PACKAGE_DIR + os.sep)


class ChurnGuardian:
    """Behavioural event collector bound to one host and one configuration.

    Usage:
        guardian = ChurnGuardian({'api_key': 'cg_live_123'}, host)
        await guardian.start()
        guardian.identify('user-42', {'plan': 'pro'})
        prediction = await guardian.get_prediction()
        await guardian.close()
    """

    def __init__(
        self,
        config: Union[CollectorConfig, Mapping[str, Any]],
        host: PageHost,
        storage: Optional[KeyValueStorage] = None,
        transport: Optional[Transport] = None,
    ):
        self.host = host
        self.handler_failures = 0
        self._started = False
        self._closed = False
        self._listeners: List[Tuple[str, Callable]] = []
        self._heartbeat_task: Optional[asyncio.Task] = None

        try:
            self.config = config if isinstance(config, CollectorConfig) else CollectorConfig.model_validate(config)
        except ValidationError as e:
            setup_logger.error('%s API key is required; collector disabled (%d config errors)', LOG_PREFIX, e.error_count())
            self.config = None
            self.identity = None
            self.queue = None
            self.transport = None
            return

        if self.config.debug:
            _enable_debug_logging()

        self._owns_transport = transport is None
        self.transport = transport or HttpTransport(self.config.endpoint, timeout=self.config.request_timeout)

        self.identity = IdentityManager(
            storage if storage is not None else MemoryStorage(),
            user_id=self.config.user_id,
        )
        self.identity.resolve_user_id()
        self.identity.new_session()

        self.queue = DeliveryQueue(
            self._deliver,
            max_concurrency=self.config.max_concurrency,
            retry_attempts=self.config.retry_attempts,
            retry_delay=self.config.retry_delay,
        )

    @property
    def inert(self) -> bool:
        return self.config is None

    @property
    def user_id(self) -> Optional[str]:
        return None if self.inert else self.identity.user_id

    @property
    def session_id(self) -> Optional[str]:
        return None if self.inert else self.identity.session.session_id

    async def start(self) -> None:
        """Attach to the host, track the initial page view and flush buffered events."""
        if self.inert or self._started or self._closed:
            return
        self._started = True
        config = self.config

        if config.identify_from_url:
            url_user_id = self.host.query_param(config.user_id_param)
            if url_user_id:
                self.identify(url_user_id)

        if config.track_page_views:
            self._listen('navigation', self._on_navigation)
            self._isolated('page_view', self._track_page_view)
        if config.track_clicks:
            self._listen('click', self._on_click)
        if config.track_forms:
            self._listen('submit', self._on_submit)
        if config.track_errors:
            self._listen('error', self._on_error)
            self._listen('unhandledrejection', self._on_rejection)

        self.queue.start()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.debug('ChurnGuardian initialized for %s', self.user_id)

    def track(self, event_type: Union[EventType, str], properties: Optional[Mapping[str, Any]] = None) -> Optional[Event]:
        """Track an event. Returns the envelope, or None when nothing was tracked."""
        if self.inert or self._closed or not event_type:
            return None

        try:
            event = build_event(
                event_type,
                properties,
                self.identity.identity,
                self.identity.session,
                self.host.context(),
            )
        except Exception as e:
            self.handler_failures += 1
            logger.debug('Event %s not tracked: %s', event_type, e, exc_info=True)
            return None
        self.queue.enqueue(event)
        logger.debug('Event tracked: %s %s', event.event_type, dict(properties or {}))
        return event

    def identify(self, user_id: str, traits: Optional[Mapping[str, Any]] = None) -> Optional[Event]:
        """Switch to a durable user id.

        Events not yet delivered are attributed to the new id. The emitted
        `identify` event carries `traits` and, when the id changed,
        `previous_id`.
        """
        if self.inert or self._closed or not user_id:
            return None

        previous_id = self.identity.identify(user_id)
        self.queue.retag(user_id)

        properties: Dict[str, Any] = {'traits': dict(traits or {})}
        if previous_id:
            properties['previous_id'] = previous_id
        logger.debug('User identified: %s', user_id)
        return self.track(EventType.IDENTIFY, properties)

    async def get_prediction(self) -> Dict[str, Any]:
        """Fetch the current churn prediction of the active user.

        Raises:
            PredictionError: If the collector is inert or the request fails
        """
        if self.inert:
            raise PredictionError('Collector is not configured')
        try:
            prediction = await self.transport.fetch_prediction(self.config.api_key, self.identity.user_id)
        except PredictionError as e:
            logger.debug('Error getting prediction: %s', e)
            raise
        logger.debug('Prediction received: %s', prediction)
        return prediction

    def reset_session(self) -> Optional[str]:
        """Start a new session and return its id."""
        if self.inert:
            return None
        session_id = self.identity.new_session()
        logger.debug('Session reset: %s', session_id)
        return session_id

    async def flush(self) -> None:
        """Wait until every tracked event was delivered or dropped."""
        if not self.inert and self.queue.started:
            await self.queue.wait_idle()

    async def close(self) -> None:
        """Detach from the host, stop the heartbeat and abandon pending retries.

        In-flight requests finish before an owned transport is closed.
        """
        if self.inert or self._closed:
            return
        self._closed = True

        for signal, listener in self._listeners:
            self.host.remove_listener(signal, listener)
        self._listeners.clear()

        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._heartbeat_task
            self._heartbeat_task = None

        self.queue.close()
        await self.queue.wait_idle()
        if self._owns_transport:
            await self.transport.aclose()

    async def _deliver(self, event: Event) -> None:
        await self.transport.send(event.to_payload(self.config.api_key))

    def _listen(self, signal: str, handler: Callable[[Any], None]) -> None:
        def listener(payload: Any) -> None:
            self._isolated(signal, handler, payload)

        self.host.add_listener(signal, listener)
        self._listeners.append((signal, listener))

    def _isolated(self, name: str, handler: Callable, *args: Any) -> None:
        try:
            handler(*args)
        except Exception as e:
            self.handler_failures += 1
            logger.debug('Handler %s failed: %s', name, e, exc_info=True)

    def _track_page_view(self) -> None:
        self.track(EventType.PAGE_VIEW, {
            'title': self.host.title,
            'path': self.host.path,
            'url': self.host.url,
        })

    def _on_navigation(self, url: Any) -> None:
        self._track_page_view()

    def _on_click(self, element: Optional[Element]) -> None:
        if element is None:
            return
        target = element.closest(lambda node: node.is_interactive)
        if target is None:
            return

        properties = _compact({
            'element_type': target.tag,
            'element_id': target.id,
            'element_class': target.class_name,
            'element_text': target.text or target.value,
        })
        if target.tag == 'a':
            properties['href'] = target.href
        self.track(EventType.CLICK, properties)

    def _on_submit(self, form: Optional[Element]) -> None:
        if form is None or form.tag != 'form':
            return
        self.track(EventType.FORM_SUBMIT, _compact({
            'form_id': form.id,
            'form_name': form.name,
            'form_action': form.action,
        }))

    def _on_error(self, report: ErrorReport) -> None:
        # Our own failures must not be reported as application errors
        if _is_internal_source(report.source):
            return
        self.track(EventType.ERROR, _compact({
            'message': report.message,
            'source': report.source,
            'line': report.line,
            'column': report.column,
            'stack': report.stack,
        }))

    def _on_rejection(self, reason: Any) -> None:
        if isinstance(reason, BaseException):
            if reason.__traceback__ is not None:
                if _is_internal_source(ErrorReport.from_exception(reason).source):
                    return
            message = str(reason) or type(reason).__name__
        elif reason is None:
            message = 'Promise rejected'
        else:
            message = str(getattr(reason, 'message', None) or reason)
        self.track(EventType.PROMISE_REJECTION, {'message': message})

    async def _heartbeat_loop(self) -> None:
        interval = self.config.heartbeat_interval
        while True:
            await asyncio.sleep(interval)
            # Backgrounded pages would inflate session duration
            if self.host.visible:
                self._isolated('heartbeat', self.track, EventType.HEARTBEAT, {
                    'session_duration': int(self.identity.session_duration()),
                })
