"""Heartline — real-time chat and notification delivery for a dating backend.

Durable chat history lives in PostgreSQL; recently published messages and
notifications are mirrored in Redis, which also carries the pub/sub wake-up
signals that drive the WebSocket streams.
"""

__version__ = "0.1.0"
