from __future__ import annotations

import asyncio
import logging
import random
import string
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from pydantic import ValidationError

from lms_telemetry.client.client_info import probe_host
from lms_telemetry.client.context import ContextExtractor
from lms_telemetry.client.dom import Disposer, DomEvent, Element, Host
from lms_telemetry.client.queue import DEFAULT_BATCH_SIZE, DEFAULT_MAX_PENDING, BatchQueue
from lms_telemetry.client.transport import Transport, TransportError
from lms_telemetry.schemas.interaction import ChatbotInteractionEvent, ClientInfo, InteractionEvent
from lms_telemetry.schemas.metadata import MetadataBag, MetadataError

_log = logging.getLogger(__name__)

TRACKABLE_SELECTOR = 'button, a, [data-track], input[type="submit"], input[type="checkbox"], input[type="radio"]'
SCROLL_THRESHOLDS = (25, 50, 75, 100)
ELEMENT_TEXT_LIMIT = 200
REDACTED = '[REDACTED]'

_BASE36 = string.digits + string.ascii_lowercase


def generate_session_id(now_ms: int | None = None) -> str:
    """``<epoch-ms>-<9 random base36 chars>``."""
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return f"{now_ms}-{''.join(random.choices(_BASE36, k=9))}"


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


@dataclass
class CollectorOptions:
    debug_mode: bool = False
    flush_interval_ms: int = 30_000
    batch_size: int = DEFAULT_BATCH_SIZE
    max_pending: int = DEFAULT_MAX_PENDING
    scroll_throttle_ms: int = 100
    endpoint: str = '/analytics/interactions'
    chatbot_endpoint: str = '/analytics/chatbot-interaction'
    # unload sends go here; None reuses ``endpoint``
    beacon_url: str | None = None


def element_text(element: Element) -> str:
    text = (
        element.text_content.strip()
        or element.get_attribute('aria-label')
        or element.get_attribute('title')
        or element.get_attribute('alt')
        or ''
    )
    return text[:ELEMENT_TEXT_LIMIT]


def element_value(element: Element) -> str | None:
    """Value safe to record: never free text typed by the user."""
    if element.tag == 'input':
        kind = element.input_type
        if kind == 'password':
            return REDACTED
        if kind in ('checkbox', 'radio'):
            return 'checked' if element.checked else 'unchecked'
        return None
    if element.tag == 'select':
        if 0 <= element.selected_index < len(element.options):
            return element.options[element.selected_index]
        return None
    return None


def infer_category(element: Element) -> str:
    if element.closest('nav'):
        return 'navigation'
    if element.closest('form'):
        return 'form'
    if element.closest('header'):
        return 'header'
    if element.closest('footer'):
        return 'footer'
    if element.closest('[role="dialog"], .modal'):
        return 'modal'
    if element.tag == 'a':
        return 'link'
    if element.tag == 'button':
        return 'button'
    return 'content'


class Collector:
    """Turns host activity into ``InteractionEvent`` batches for the ingest API.

    Lifecycle: construct, ``initialize()`` (inside a running event loop),
    track, ``destroy()``. Each instance owns one session id; ``destroy()``
    followed by ``initialize()`` keeps the session and registers listeners
    afresh.
    """

    def __init__(
        self,
        host: Host,
        transport: Transport,
        options: CollectorOptions | None = None,
        *,
        clock: Callable[[], int] = _epoch_ms,
    ) -> None:
        self.host = host
        self.transport = transport
        self.options = options or CollectorOptions()
        self._clock = clock
        self.session_start_time = clock()
        self.session_id = generate_session_id(self.session_start_time)
        self.test_mode: str | None = None
        self.client_info: ClientInfo | None = None
        self.queue: BatchQueue[InteractionEvent] = BatchQueue(
            batch_size=self.options.batch_size,
            max_pending=self.options.max_pending,
        )
        self.extractor = ContextExtractor(host)
        self._initialized = False
        self._disposers: list[Disposer] = []
        self._timer: asyncio.Task | None = None
        self._scroll_handle: asyncio.TimerHandle | None = None
        self._sends: set[asyncio.Task] = set()
        self._page_load_time = self.session_start_time
        self._max_scroll_depth = 0
        self._event_sequence = 0

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def debug_mode(self) -> bool:
        return self.options.debug_mode

    def initialize(self, debug_mode: bool | None = None, flush_interval_ms: int | None = None) -> None:
        if self._initialized:
            return
        if debug_mode is not None:
            self.options.debug_mode = debug_mode
        if flush_interval_ms:
            self.options.flush_interval_ms = flush_interval_ms

        loop = asyncio.get_running_loop()
        self.client_info = probe_host(self.host)
        self._timer = loop.create_task(self._flush_loop(self.options.flush_interval_ms / 1000))

        doc = self.host.document
        self._disposers = [
            self.host.add_event_listener('beforeunload', self._guarded('beforeunload', self._on_unload)),
            doc.add_event_listener('visibilitychange', self._guarded('visibilitychange', self._on_visibility)),
            self.host.add_event_listener('popstate', self._guarded('popstate', self._on_navigation)),
            doc.add_event_listener('click', self._guarded('click', self._on_click), capture=True),
            doc.add_event_listener('submit', self._guarded('submit', self._on_submit), capture=True),
            doc.add_event_listener('scroll', self._guarded('scroll', self._on_scroll)),
        ]
        self._initialized = True
        if self.debug_mode:
            _log.debug('collector initialized session=%s client=%s', self.session_id, self.client_info)

    def destroy(self) -> None:
        """Stop the timer, drop every listener and push out what is still pending."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._scroll_handle is not None:
            self._scroll_handle.cancel()
            self._scroll_handle = None
        for dispose in self._disposers:
            dispose()
        self._disposers = []
        self.flush_sync()
        self._initialized = False

    async def _flush_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if self.queue:
                await self.flush()

    def _guarded(self, name: str, handler: Callable[[DomEvent], None]) -> Callable[[DomEvent], None]:
        # a telemetry bug must never break the host's own event handling
        def run(event: DomEvent) -> None:
            try:
                handler(event)
            except Exception:
                _log.warning('telemetry %s handler failed', name, exc_info=True)
        return run

    # ------------------------------------------------------------------
    # listeners
    # ------------------------------------------------------------------

    def _on_unload(self, event: DomEvent) -> None:
        self.flush_sync()

    def _on_visibility(self, event: DomEvent) -> None:
        if self.host.document.hidden:
            self._spawn(self.flush())

    def _on_navigation(self, event: DomEvent) -> None:
        self._reset_page()

    def _on_click(self, event: DomEvent) -> None:
        if event.target is None:
            return
        element = event.target.closest(TRACKABLE_SELECTOR)
        if element is None:
            return
        context = self.extractor.extract(element)
        self.track_click(
            elementId=element.id or None,
            elementType=element.tag,
            elementText=element_text(element),
            elementValue=element_value(element),
            elementHref=element.get_attribute('href') or None,
            elementClasses=element.class_name or None,
            elementName=element.get_attribute('name') or None,
            category=element.get_attribute('data-track-category') or infer_category(element),
            label=element.get_attribute('data-track-label'),
            metadata={
                'dataTrack': element.get_attribute('data-track') or None,
                'ariaLabel': element.get_attribute('aria-label') or None,
            },
            **context.as_event_fields(),
        )

    def _on_submit(self, event: DomEvent) -> None:
        form = event.target
        if form is None:
            return
        self.track_form_submit(
            elementId=form.id or None,
            elementType='form',
            elementName=form.get_attribute('name') or None,
            category='form',
            metadata={
                'action': form.get_attribute('action'),
                'method': (form.get_attribute('method') or 'get').lower(),
            },
        )

    def _on_scroll(self, event: DomEvent) -> None:
        if self._scroll_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._scroll_handle = loop.call_later(self.options.scroll_throttle_ms / 1000, self._scroll_tick)

    def _scroll_tick(self) -> None:
        self._scroll_handle = None
        try:
            self.measure_scroll()
        except Exception:
            _log.warning('telemetry scroll measurement failed', exc_info=True)

    def measure_scroll(self) -> list[int]:
        """Record the current scroll depth; returns the thresholds newly crossed.

        Depth only ever rises within a page, so each threshold is emitted at
        most once until the next page view or navigation resets it.
        """
        viewport = self.host.viewport
        scrollable = self.host.document.scroll_height - viewport.inner_height
        depth = round(viewport.scroll_y / scrollable * 100) if scrollable > 0 else 0
        depth = max(0, min(100, depth))
        if depth <= self._max_scroll_depth:
            return []
        crossed = [t for t in SCROLL_THRESHOLDS if self._max_scroll_depth < t <= depth]
        self._max_scroll_depth = depth
        for threshold in crossed:
            self._track(
                type='scroll',
                page=self.host.location.pathname,
                pageUrl=self.host.location.href,
                pageTitle=self.host.document.title,
                action=f'scroll_{threshold}',
                category='engagement',
                scrollDepth=threshold,
                viewportWidth=viewport.inner_width,
                viewportHeight=viewport.inner_height,
            )
        return crossed

    def _reset_page(self) -> None:
        self._page_load_time = self._clock()
        self._max_scroll_depth = 0

    # ------------------------------------------------------------------
    # explicit tracking API
    # ------------------------------------------------------------------

    def set_test_mode(self, mode: str | None) -> None:
        """Tag later payloads with an admin "view as" role (``None`` clears it)."""
        self.test_mode = mode
        if self.debug_mode:
            _log.debug('test mode set: %s', mode or 'disabled')

    @property
    def session_duration(self) -> int:
        return round((self._clock() - self.session_start_time) / 1000)

    @property
    def time_on_page(self) -> int:
        return round((self._clock() - self._page_load_time) / 1000)

    def _page_fields(self) -> dict[str, Any]:
        return {
            'page': self.host.location.pathname,
            'pageUrl': self.host.location.href,
            'pageTitle': self.host.document.title or None,
        }

    def _viewport_fields(self) -> dict[str, Any]:
        return {
            'viewportWidth': self.host.viewport.inner_width,
            'viewportHeight': self.host.viewport.inner_height,
        }

    def track_page_view(self, page: str, metadata: Mapping[str, Any] | None = None) -> InteractionEvent | None:
        self._reset_page()
        return self._track(**{
            **self._page_fields(),
            'type': 'page_view',
            'page': page,
            'referrerUrl': self.host.document.referrer or None,
            'action': 'view',
            'category': 'navigation',
            **self._viewport_fields(),
            **self.extractor.extract().as_event_fields(),
            'metadata': {**(metadata or {}), 'historyLength': self.host.history_length},
        })

    def track_click(self, **fields: Any) -> InteractionEvent | None:
        return self._track(**{
            **self._page_fields(),
            'type': 'click',
            'action': 'click',
            **self._viewport_fields(),
            **fields,
        })

    def track_form_submit(self, **fields: Any) -> InteractionEvent | None:
        return self._track(**{
            **self._page_fields(),
            'type': 'form_submit',
            'action': 'submit',
            **fields,
        })

    def track_custom(self, action: str, **fields: Any) -> InteractionEvent | None:
        return self._track(**{
            **self._page_fields(),
            'type': 'custom',
            'action': action,
            **self.extractor.extract().as_event_fields(),
            **fields,
        })

    def _track(self, **fields: Any) -> InteractionEvent | None:
        """Stamp timing, validate, enqueue; an invalid event is logged and dropped."""
        raw_metadata = fields.pop('metadata', None)
        event_type = fields.get('type', 'custom')
        try:
            bag = MetadataBag(event_type, raw_metadata)
            event = InteractionEvent(
                **{k: v for k, v in fields.items() if v is not None},
                metadata=bag.to_dict(),
                timestamp=self._clock(),
                sessionDuration=self.session_duration,
                timeOnPage=self.time_on_page,
            )
        except (ValidationError, MetadataError) as exc:
            _log.warning('dropping invalid %s event: %s', event_type, exc)
            return None

        if self.debug_mode:
            _log.debug('event tracked: %s %s', event.type, event.action)
        if self.queue.enqueue(event):
            if _running_loop() is None:
                # the batch stays pending until a flush runs inside a loop
                _log.debug('batch ready but no event loop; %d events kept pending', len(self.queue))
            else:
                # snapshot now so later enqueues start a fresh batch
                self._spawn(self._send(self.queue.take()))
        return event

    # ------------------------------------------------------------------
    # flushing
    # ------------------------------------------------------------------

    def _payload(self, events: list[InteractionEvent]) -> dict[str, Any]:
        payload: dict[str, Any] = {
            'sessionId': self.session_id,
            'sessionStartTime': self.session_start_time,
            'events': [e.model_dump(exclude_none=True) for e in events],
            'testMode': self.test_mode,
        }
        if self.client_info is not None:
            payload.update(self.client_info.model_dump(exclude_none=True))
        return payload

    async def flush(self) -> int:
        """Send everything pending; returns the number of events delivered."""
        events = self.queue.take()
        if not events:
            return 0
        return len(events) if await self._send(events) else 0

    async def _send(self, events: list[InteractionEvent]) -> bool:
        if not events:
            return True
        try:
            await self.transport.post_json(self.options.endpoint, self._payload(events))
        except TransportError as exc:
            self.queue.requeue(events)
            if self.debug_mode:
                _log.debug('flush of %d events failed, requeued: %s', len(events), exc)
            return False
        if self.debug_mode:
            _log.debug('flushed %d events', len(events))
        return True

    def flush_sync(self) -> None:
        """Unload-time flush that returns immediately.

        With a beacon-capable transport the snapshot is handed off with no
        delivery confirmation at all: it is neither requeued nor known to have
        arrived. Otherwise the normal async send is scheduled, which the host
        may cancel by tearing down.
        """
        events = self.queue.take()
        if not events:
            return
        if getattr(self.transport, 'supports_beacon', False):
            self.transport.send_beacon(self.options.beacon_url or self.options.endpoint, self._payload(events))
            return
        if _running_loop() is None:
            # nothing to send on; keep the events for a later flush
            self.queue.requeue(events)
            _log.warning('no event loop for unload flush; %d events kept pending', len(events))
            return
        self._spawn(self._send(events))

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)
        return task

    async def drain(self) -> None:
        """Wait for sends already in flight (tests, orderly shutdown)."""
        while self._sends:
            await asyncio.gather(*list(self._sends), return_exceptions=True)

    # ------------------------------------------------------------------
    # chat turns
    # ------------------------------------------------------------------

    async def track_chatbot_interaction(self, event: ChatbotInteractionEvent | Mapping[str, Any]) -> int | None:
        """Send one AI-tutor turn right away (never batched).

        Returns the stored record id, or ``None`` when the send failed; the
        failure is logged and never raised to the chat widget.
        """
        self._event_sequence += 1
        sequence = self._event_sequence
        try:
            if not isinstance(event, ChatbotInteractionEvent):
                event = ChatbotInteractionEvent.model_validate(event)
            payload: dict[str, Any] = {
                'sessionId': self.session_id,
                'sessionStartTime': self.session_start_time,
                **event.model_dump(exclude_none=True),
                'eventSequence': sequence,
                'timestamp': self._clock(),
                'testMode': self.test_mode,
            }
            if self.client_info is not None:
                payload.update(self.client_info.model_dump(exclude_none=True))
            response = await self.transport.post_json(self.options.chatbot_endpoint, payload)
            record_id = response['data']['id']
        except ValidationError as exc:
            _log.error('invalid chatbot event not sent: %s', exc)
            return None
        except TransportError as exc:
            _log.error('failed to track chatbot %s for section %s: %s', event.eventType, event.sectionId, exc)
            return None
        except (KeyError, TypeError) as exc:
            _log.error('unexpected chatbot ingest response: %r', exc)
            return None
        if self.debug_mode:
            _log.debug('chatbot interaction tracked seq=%d type=%s section=%s id=%s', sequence, event.eventType, event.sectionId, record_id)
        return record_id
