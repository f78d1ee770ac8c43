"""Storage and network connectors for Delta Sync."""

from delta_sync.connectors.sqlite import ChangeLogStore
from delta_sync.connectors.http import HttpTransport, create_http_transport

__all__ = ["ChangeLogStore", "HttpTransport", "create_http_transport"]
