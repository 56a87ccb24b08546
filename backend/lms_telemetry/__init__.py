"""Interaction telemetry for the learning platform: client collector, ingest API and operator analytics."""
from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]

try:
    __version__ = version("lms-telemetry")
except PackageNotFoundError:
    # bare source checkout (tests run with backend/ on sys.path)
    __version__ = "0.0.0+local"
