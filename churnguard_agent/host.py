"""Host page abstraction observed by the collector.

`PageHost` stands in for the browser window the original agent ran in: it
knows the current URL, title, referrer, user agent and visibility, and it
dispatches signals to registered listeners. Applications (or tests) drive it
by calling `navigate`, `click`, `submit`, `report_error`, `reject` and
`set_visibility`.
"""

import logging
import traceback
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qs, urljoin, urlparse

from churnguard_agent.envelope import PageContext

logger = logging.getLogger(__name__)

SIGNALS = ('navigation', 'click', 'submit', 'error', 'unhandledrejection', 'visibilitychange')

INTERACTIVE_TAGS = frozenset({'a', 'button'})
INTERACTIVE_INPUT_TYPES = frozenset({'button', 'submit'})

Listener = Callable[[Any], None]


@dataclass(eq=False)
class Element:
    """A node of the host's element tree."""

    tag: str
    id: str = ''
    class_name: str = ''
    text: str = ''
    value: str = ''
    href: str = ''
    type: str = ''
    name: str = ''
    action: str = ''
    parent: Optional['Element'] = None
    children: List['Element'] = field(default_factory=list, repr=False)

    def __post_init__(self):
        self.tag = self.tag.lower()
        self.type = self.type.lower()
        if self.parent is not None:
            self.parent.children.append(self)

    @property
    def is_interactive(self) -> bool:
        """Links, buttons and button-like inputs."""
        if self.tag in INTERACTIVE_TAGS:
            return True
        return self.tag == 'input' and self.type in INTERACTIVE_INPUT_TYPES

    def closest(self, predicate: Callable[['Element'], bool]) -> Optional['Element']:
        """Nearest ancestor-or-self matching `predicate`."""
        node = self
        while node is not None:
            if predicate(node):
                return node
            node = node.parent
        return None


@dataclass(frozen=True)
class ErrorReport:
    """An uncaught error as seen by the host."""

    message: str
    source: str = ''
    line: Optional[int] = None
    column: Optional[int] = None
    stack: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> 'ErrorReport':
        """Build a report from an exception, locating it at its innermost frame."""
        frames = traceback.extract_tb(exc.__traceback__) if exc.__traceback__ else []
        last = frames[-1] if frames else None
        stack = ''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return cls(
            message=str(exc) or type(exc).__name__,
            source=last.filename if last else '',
            line=last.lineno if last else None,
            column=getattr(last, 'colno', None) if last else None,
            stack=stack,
        )


class PageHost:
    """In-process model of a page: location, metadata, visibility and signals."""

    def __init__(
        self,
        url: str = 'about:blank',
        title: str = '',
        referrer: str = '',
        user_agent: str = '',
        visible: bool = True,
    ):
        self.url = url
        self.title = title
        self.referrer = referrer
        self.user_agent = user_agent
        self.visible = visible
        self._history: List[tuple] = []
        self._listeners: Dict[str, List[Listener]] = {signal: [] for signal in SIGNALS}

    @property
    def path(self) -> str:
        return urlparse(self.url).path or '/'

    def query_param(self, name: str) -> Optional[str]:
        """First value of a query string parameter of the current URL."""
        values = parse_qs(urlparse(self.url).query).get(name)
        return values[0] if values else None

    def context(self) -> PageContext:
        return PageContext(
            url=self.url,
            title=self.title,
            referrer=self.referrer,
            user_agent=self.user_agent,
        )

    def add_listener(self, signal: str, listener: Listener) -> Listener:
        """Register a listener; returns it so it can be removed later.

        Raises:
            ValueError: For unknown signal names
        """
        if signal not in self._listeners:
            raise ValueError(f'Unknown signal: {signal}')
        self._listeners[signal].append(listener)
        return listener

    def remove_listener(self, signal: str, listener: Listener) -> None:
        listeners = self._listeners.get(signal, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, signal: str, payload: Any = None) -> None:
        """Dispatch a signal to every listener.

        A listener that raises does not stop the others; like a browser, the
        host reports the failure through its own `error` signal.
        """
        for listener in list(self._listeners.get(signal, [])):
            try:
                listener(payload)
            except Exception as e:
                if signal == 'error':
                    logger.warning('Error listener failed: %s', e)
                else:
                    self.emit('error', ErrorReport.from_exception(e))

    def navigate(self, url: str, title: Optional[str] = None) -> None:
        """Route change within the page (the pushState equivalent)."""
        self._history.append((self.url, self.title))
        self.referrer = self.url
        self.url = urljoin(self.url, url)
        if title is not None:
            self.title = title
        self.emit('navigation', self.url)

    def go_back(self) -> bool:
        """Return to the previous route (the popstate equivalent)."""
        if not self._history:
            return False
        self.url, self.title = self._history.pop()
        self.emit('navigation', self.url)
        return True

    def click(self, element: Element) -> None:
        self.emit('click', element)

    def submit(self, form: Element) -> None:
        self.emit('submit', form)

    def report_error(self, error: BaseException | ErrorReport) -> None:
        report = error if isinstance(error, ErrorReport) else ErrorReport.from_exception(error)
        self.emit('error', report)

    def reject(self, reason: Any = None) -> None:
        """Report an unhandled rejection (a failed task nobody awaited)."""
        self.emit('unhandledrejection', reason)

    def set_visibility(self, visible: bool) -> None:
        if visible != self.visible:
            self.visible = visible
            self.emit('visibilitychange', visible)
