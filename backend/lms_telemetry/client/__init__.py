"""Client-side collector/batcher for the interaction telemetry API."""
from lms_telemetry.client.collector import Collector, CollectorOptions
from lms_telemetry.client.dom import Document, Element, Host, Location, Navigator, Viewport
from lms_telemetry.client.transport import HttpTransport, TransportError

__all__ = [
    'Collector',
    'CollectorOptions',
    'Document',
    'Element',
    'Host',
    'HttpTransport',
    'Location',
    'Navigator',
    'TransportError',
    'Viewport',
]
