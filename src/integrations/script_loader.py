"""
Single-flight loader for the third-party checkout widget script.

The hosting page is modelled by a ``ScriptDocument``: a list of script tags and a
namespace of globals. Appending a ``ScriptElement`` starts loading it; the
document later fires the element's ``onload`` or ``onerror`` callback. The
production ``HttpScriptDocument`` fetches the script source with httpx and runs
a registered initialiser that installs the widget constructor as a global.

``CheckoutScriptLoader`` guarantees that concurrent ``load()`` callers share one
injection attempt. A load succeeds only when the load event fires and the
expected global is present afterwards. It fails on the error event, on a
missing global, or on the timeout, whichever happens first; the other outcomes
are then ignored.
"""

import asyncio
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

import httpx
import structlog

from src.monitoring.logging import StructuredLogger

from .exceptions import ScriptLoadError

logger = structlog.get_logger(__name__)

CHECKOUT_SCRIPT_URL = 'https://checkout.razorpay.com/v1/checkout.js'
CHECKOUT_GLOBAL_NAME = 'Razorpay'
SCRIPT_LOAD_TIMEOUT = 10.0


class ScriptElement:
    """A ``<script>`` tag appended to a ``ScriptDocument``."""

    def __init__(self, src: str, async_: bool = True, defer: bool = True):
        self.src = src
        self.async_ = async_
        self.defer = defer
        self.onload: Optional[Callable[[], None]] = None
        self.onerror: Optional[Callable[[Optional[str]], None]] = None

    def dispatch_load(self) -> None:
        if self.onload is not None:
            self.onload()

    def dispatch_error(self, message: Optional[str] = None) -> None:
        if self.onerror is not None:
            self.onerror(message)

    def __repr__(self) -> str:
        return f"<ScriptElement src={self.src!r}>"


class ScriptDocument:
    """
    In-memory page holding script tags and globals.

    The base class never fires load or error events on its own; subclasses
    (or tests) decide when an appended script finishes.
    """

    def __init__(self):
        self.scripts: List[ScriptElement] = []
        self.globals: Dict[str, Any] = {}

    def query_scripts(self, src: str) -> List[ScriptElement]:
        return [element for element in self.scripts if element.src == src]

    def append_script(self, element: ScriptElement) -> None:
        self.scripts.append(element)
        self._on_append(element)

    def remove_script(self, element: ScriptElement) -> None:
        if element in self.scripts:
            self.scripts.remove(element)

    def get_global(self, name: str) -> Any:
        return self.globals.get(name)

    def set_global(self, name: str, value: Any) -> None:
        self.globals[name] = value

    def _on_append(self, element: ScriptElement) -> None:
        """Hook for subclasses that actually fetch the script."""


class CheckoutWidget:
    """
    Payment sheet handle installed as the checkout global.

    ``open()`` returns the options the client renders the sheet with; callbacks
    registered with ``on()`` receive events reported back by the client.
    """

    def __init__(self, options: Mapping[str, Any]):
        self.options = dict(options)
        self.is_open = False
        self._handlers: Dict[str, List[Callable[[Any], None]]] = {}

    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def open(self) -> Dict[str, Any]:
        self.is_open = True
        return dict(self.options)

    def emit(self, event: str, payload: Any = None) -> None:
        for handler in self._handlers.get(event, []):
            handler(payload)


def install_checkout_widget(document: ScriptDocument, source: str) -> None:
    """Initialiser run after the checkout script is fetched."""
    if source.strip():
        document.set_global(CHECKOUT_GLOBAL_NAME, CheckoutWidget)


class HttpScriptDocument(ScriptDocument):
    """
    Document that fetches appended scripts over HTTP.

    Args:
        initializers: Per-URL callables run with the fetched source before the load event
        timeout: HTTP timeout in seconds
        transport: Optional httpx transport for tests
    """

    def __init__(
        self,
        initializers: Optional[Mapping[str, Callable[[ScriptDocument, str], None]]] = None,
        timeout: float = SCRIPT_LOAD_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        super().__init__()
        self._initializers = dict(initializers or {CHECKOUT_SCRIPT_URL: install_checkout_widget})
        self._timeout = timeout
        self._transport = transport
        self._fetches: Set[asyncio.Task] = set()

    def _on_append(self, element: ScriptElement) -> None:
        task = asyncio.get_running_loop().create_task(self._fetch(element))
        self._fetches.add(task)
        task.add_done_callback(self._fetches.discard)

    async def _fetch(self, element: ScriptElement) -> None:
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self._timeout, follow_redirects=True
            ) as client:
                response = await client.get(element.src)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Script fetch failed", src=element.src, error=str(exc))
            element.dispatch_error(None)
            return

        # Removed while in flight: a detached script never fires events
        if element not in self.scripts:
            return

        initializer = self._initializers.get(element.src)
        if initializer is not None:
            initializer(self, response.text)
        element.dispatch_load()


class CheckoutScriptLoader:
    """
    Ensures the checkout script is present and initialised exactly once.

    Args:
        document: Page model the script is injected into
        structured_logger: Logger for load outcomes
        script_url: Script source URL
        global_name: Global the script must define
        timeout: Seconds to wait for the load event
        metrics: Optional ``PaymentMetrics``
    """

    def __init__(
        self,
        document: ScriptDocument,
        structured_logger: StructuredLogger,
        script_url: str = CHECKOUT_SCRIPT_URL,
        global_name: str = CHECKOUT_GLOBAL_NAME,
        timeout: float = SCRIPT_LOAD_TIMEOUT,
        metrics: Any = None
    ):
        self.document = document
        self.logger = structured_logger
        self.script_url = script_url
        self.global_name = global_name
        self.timeout = timeout
        self.metrics = metrics
        self._loaded = False
        self._load_task: Optional[asyncio.Task] = None
        self._last_error: Optional[str] = None
        self._generation = 0
        self._background: Set[asyncio.Task] = set()

    def is_loaded(self) -> bool:
        return self._loaded and self.document.get_global(self.global_name) is not None

    async def load(self, force_reload: bool = False) -> bool:
        """
        Inject the script, or join the load already in flight.

        Returns:
            True once the script is loaded and its global is available

        Raises:
            ScriptLoadError: On load error, missing global or timeout
        """
        if self._load_task is not None and not force_reload:
            return await asyncio.shield(self._load_task)

        if self.is_loaded() and not force_reload:
            return True

        if force_reload:
            self._reset()

        task = asyncio.ensure_future(self._inject(self._generation))
        self._load_task = task
        task.add_done_callback(self._on_load_done)
        return await asyncio.shield(task)

    def preload(self) -> Optional[asyncio.Task]:
        """Start loading in the background; failures are only warned about."""
        if self.is_loaded():
            return None
        task = asyncio.ensure_future(self._preload())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def get_loading_status(self) -> Dict[str, Any]:
        return {
            'is_loaded': self.is_loaded(),
            'is_loading': self._load_task is not None and not self._loaded,
            'error': self._last_error,
        }

    async def _preload(self) -> None:
        try:
            await self.load()
        except ScriptLoadError as exc:
            self.logger.warn('SCRIPT_LOADER', 'Failed to preload checkout script', {'error': str(exc)})

    def _reset(self) -> None:
        for element in self.document.query_scripts(self.script_url):
            self.document.remove_script(element)
        self._loaded = False
        self._load_task = None
        self._last_error = None
        self._generation += 1

    async def _inject(self, generation: int) -> bool:
        loop = asyncio.get_running_loop()
        outcome: asyncio.Future = loop.create_future()
        name = self.global_name

        def on_load() -> None:
            if outcome.done():
                return
            if self.document.get_global(name) is None:
                outcome.set_exception(ScriptLoadError(
                    f"{name} script loaded but {name} object is not available",
                    reason='missing_global', url=self.script_url
                ))
            else:
                outcome.set_result(True)

        def on_error(message: Optional[str] = None) -> None:
            if outcome.done():
                return
            if message:
                text = f"Failed to load {name} script: {message}"
            else:
                text = f"Failed to load {name} script due to network error"
            outcome.set_exception(ScriptLoadError(text, reason='network_error', url=self.script_url))

        element = ScriptElement(self.script_url, async_=True, defer=True)
        element.onload = on_load
        element.onerror = on_error

        try:
            self.document.append_script(element)
        except Exception as exc:
            raise ScriptLoadError(
                f"Failed to add {name} script to document: {exc}",
                reason='append_failed', url=self.script_url
            ) from exc

        try:
            await asyncio.wait_for(outcome, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ScriptLoadError(
                f"{name} script loading timed out after {int(self.timeout * 1000)}ms",
                reason='timeout', url=self.script_url
            ) from None
        finally:
            element.onload = None
            element.onerror = None

        if generation == self._generation:
            self._loaded = True
        return True

    def _on_load_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            if task is self._load_task:
                self._load_task = None
            return

        error = task.exception()
        if task is not self._load_task:
            # superseded by a forced reload
            return

        if error is None:
            self._last_error = None
            self.logger.info('SCRIPT_LOADER', 'Checkout script loaded', {'url': self.script_url})
            if self.metrics is not None:
                self.metrics.record_script_load('success')
            return

        self._load_task = None
        self._last_error = str(error)
        reason = getattr(error, 'reason', 'unknown')
        self.logger.error(
            'SCRIPT_LOADER', 'Checkout script failed to load', error,
            {'url': self.script_url, 'reason': reason}
        )
        if self.metrics is not None:
            self.metrics.record_script_load(reason)
