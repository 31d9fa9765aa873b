"""IoT Monitor — sensor-monitoring backend.

Session-backed JWT authentication, an owner-scoped device registry,
and temperature/humidity ingestion with aggregate queries for the
browser dashboard.
"""

__version__ = "0.1.0"
