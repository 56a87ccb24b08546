"""Headless host model the collector attaches to.

A real embedding (browser bridge, desktop shell, test) builds an element tree,
keeps ``Location``/``Viewport`` current and dispatches events; the collector
only ever sees this surface.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator
from urllib.parse import urlsplit

_log = logging.getLogger(__name__)

Listener = Callable[['DomEvent'], None]
Disposer = Callable[[], None]

# tag, .class, [attr] and [attr="value"] in any combination; comma separated
_SIMPLE_SELECTOR = re.compile(
    r'^(?P<tag>[a-zA-Z][a-zA-Z0-9-]*)?'
    r'(?P<cls>\.[\w-]+)?'
    r'(?:\[(?P<attr>[\w-]+)(?:="(?P<val>[^"]*)")?\])?$'
)


@dataclass(slots=True)
class DomEvent:
    type: str
    target: 'Element | None' = None
    detail: dict[str, Any] = field(default_factory=dict)


class EventTarget:
    """Listener registry where every registration hands back its own disposer."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[tuple[Listener, bool]]] = {}

    def add_event_listener(self, event_type: str, listener: Listener, *, capture: bool = False) -> Disposer:
        entry = (listener, capture)
        self._listeners.setdefault(event_type, []).append(entry)

        def dispose() -> None:
            bucket = self._listeners.get(event_type)
            if bucket and entry in bucket:
                bucket.remove(entry)

        return dispose

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(event_type, ()))

    def dispatch_event(self, event: DomEvent) -> None:
        bucket = list(self._listeners.get(event.type, ()))
        # capture-phase listeners run before bubbling ones
        for listener, capture in sorted(bucket, key=lambda e: not e[1]):
            listener(event)


class Element:
    def __init__(
        self,
        tag: str,
        attrs: dict[str, str] | None = None,
        *,
        text: str = '',
        children: list['Element'] | None = None,
        checked: bool = False,
        options: list[str] | None = None,
        selected_index: int = -1,
    ) -> None:
        self.tag = tag.lower()
        self.attrs: dict[str, str] = dict(attrs or {})
        self.text = text
        self.parent: Element | None = None
        self.children: list[Element] = []
        # form control state
        self.checked = checked
        self.options = list(options or [])
        self.selected_index = selected_index
        for child in children or []:
            self.append(child)

    def __repr__(self) -> str:
        return f'<Element {self.tag} {self.attrs}>'

    def append(self, child: 'Element') -> 'Element':
        child.parent = self
        self.children.append(child)
        return child

    @property
    def id(self) -> str:
        return self.attrs.get('id', '')

    @property
    def class_name(self) -> str:
        return self.attrs.get('class', '')

    @property
    def input_type(self) -> str:
        return self.attrs.get('type', 'text').lower() if self.tag == 'input' else ''

    @property
    def text_content(self) -> str:
        return self.text + ''.join(child.text_content for child in self.children)

    def get_attribute(self, name: str) -> str | None:
        return self.attrs.get(name)

    def set_attribute(self, name: str, value: str) -> None:
        self.attrs[name] = value

    def matches(self, selector: str) -> bool:
        return any(_matches_simple(self, part.strip()) for part in selector.split(','))

    def closest(self, selector: str) -> 'Element | None':
        node: Element | None = self
        while node is not None:
            if node.matches(selector):
                return node
            node = node.parent
        return None

    def iter(self) -> Iterator['Element']:
        yield self
        for child in self.children:
            yield from child.iter()

    def query_selector(self, selector: str) -> 'Element | None':
        for node in self.iter():
            if node.matches(selector):
                return node
        return None


def _matches_simple(element: Element, selector: str) -> bool:
    m = _SIMPLE_SELECTOR.match(selector)
    if not m:
        _log.debug('unsupported selector %r', selector)
        return False
    if m.group('tag') and element.tag != m.group('tag').lower():
        return False
    if m.group('cls') and m.group('cls')[1:] not in element.class_name.split():
        return False
    attr = m.group('attr')
    if attr:
        value = element.get_attribute(attr)
        if value is None:
            return False
        if m.group('val') is not None and value != m.group('val'):
            return False
    return True


class Document(EventTarget):
    def __init__(self, root: Element | None = None, *, title: str = '', referrer: str = '', scroll_height: int = 0) -> None:
        super().__init__()
        self.root = root or Element('html', children=[Element('body')])
        self.title = title
        self.referrer = referrer
        self.hidden = False
        self.scroll_height = scroll_height

    @property
    def body(self) -> Element:
        return self.root.query_selector('body') or self.root

    def query_selector(self, selector: str) -> Element | None:
        return self.root.query_selector(selector)


@dataclass(slots=True)
class Location:
    href: str = 'http://localhost/'

    @property
    def pathname(self) -> str:
        return urlsplit(self.href).path or '/'


@dataclass(slots=True)
class Viewport:
    inner_width: int = 1280
    inner_height: int = 720
    scroll_y: float = 0.0


@dataclass(slots=True)
class Navigator:
    user_agent: str = ''
    language: str = 'en-US'
    timezone: str = 'UTC'
    screen_width: int = 1920
    screen_height: int = 1080


class Host(EventTarget):
    """Window-level surface: location, viewport, history and the document.

    Window events (``beforeunload``, ``popstate``) are dispatched on the host;
    ``click``, ``submit``, ``scroll`` and ``visibilitychange`` on the document.
    """

    def __init__(
        self,
        document: Document | None = None,
        *,
        location: Location | None = None,
        viewport: Viewport | None = None,
        navigator: Navigator | None = None,
    ) -> None:
        super().__init__()
        self.document = document or Document()
        self.location = location or Location()
        self.viewport = viewport or Viewport()
        self.navigator = navigator or Navigator()
        self.history_length = 1

    # driving helpers for embeddings and tests

    def navigate(self, href: str, *, title: str | None = None) -> None:
        """History navigation (back/forward): updates the location and fires ``popstate``."""
        self.location.href = href
        if title is not None:
            self.document.title = title
        self.history_length += 1
        self.dispatch_event(DomEvent('popstate'))

    def click(self, target: Element) -> None:
        self.document.dispatch_event(DomEvent('click', target))

    def submit(self, form: Element) -> None:
        self.document.dispatch_event(DomEvent('submit', form))

    def scroll_to(self, y: float) -> None:
        self.viewport.scroll_y = y
        self.document.dispatch_event(DomEvent('scroll'))

    def set_hidden(self, hidden: bool) -> None:
        self.document.hidden = hidden
        self.document.dispatch_event(DomEvent('visibilitychange'))

    def unload(self) -> None:
        self.dispatch_event(DomEvent('beforeunload'))
