"""Dropwire: chunked file transfer between peers over a WebSocket relay."""

__version__ = "1.0.0"
