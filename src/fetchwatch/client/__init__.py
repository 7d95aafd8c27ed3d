"""Request execution: coordination, transport adapters and payload helpers."""

from fetchwatch.client.coordinator import InFlightEntry, RequestCoordinator
from fetchwatch.client.response import BufferedBody, extract_response_data
from fetchwatch.client.transport import HttpxCall, HttpxTransport, TransportAdapter, TransportCall

__all__ = [
    "BufferedBody",
    "HttpxCall",
    "HttpxTransport",
    "InFlightEntry",
    "RequestCoordinator",
    "TransportAdapter",
    "TransportCall",
    "extract_response_data",
]
