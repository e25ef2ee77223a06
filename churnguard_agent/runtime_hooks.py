"""Bridge Python runtime error hooks to a PageHost.

Uncaught exceptions (`sys.excepthook`) become `error` signals and exceptions
of tasks nobody awaited (the asyncio loop exception handler) become
`unhandledrejection` signals. Previous handlers keep running and are put
back by `uninstall`.
"""

import asyncio
import sys
from typing import Any, Callable, Dict, Optional

from churnguard_agent.host import ErrorReport, PageHost


class RuntimeErrorHooks:
    """Installs the bridge; usable as a context manager.

    Usage:
        with RuntimeErrorHooks(host, loop=asyncio.get_running_loop()):
            await app.run()
    """

    def __init__(self, host: PageHost, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.host = host
        self.loop = loop
        self._previous_excepthook: Optional[Callable] = None
        self._previous_loop_handler: Optional[Callable] = None
        self._installed = False

    def install(self) -> None:
        if self._installed:
            return
        self._previous_excepthook = sys.excepthook
        sys.excepthook = self._excepthook
        if self.loop is not None:
            self._previous_loop_handler = self.loop.get_exception_handler()
            self.loop.set_exception_handler(self._loop_exception_handler)
        self._installed = True

    def uninstall(self) -> None:
        if not self._installed:
            return
        sys.excepthook = self._previous_excepthook
        if self.loop is not None:
            self.loop.set_exception_handler(self._previous_loop_handler)
        self._installed = False

    def __enter__(self) -> 'RuntimeErrorHooks':
        self.install()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.uninstall()

    def _excepthook(self, exc_type, exc, tb) -> None:
        if exc is not None and exc.__traceback__ is None:
            exc = exc.with_traceback(tb)
        if exc is not None and not isinstance(exc, KeyboardInterrupt):
            self.host.report_error(ErrorReport.from_exception(exc))
        self._previous_excepthook(exc_type, exc, tb)

    def _loop_exception_handler(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        self.host.reject(context.get('exception') or context.get('message'))
        if self._previous_loop_handler is not None:
            self._previous_loop_handler(loop, context)
        else:
            loop.default_exception_handler(context)
