"""Real-time delivery — Redis fan-out + WebSocket streams.

Learn: Data flows through two paths:
1. Command handlers → Postgres, then a copy into a Redis list + PUBLISH "new"
2. Redis SUBSCRIBE → session re-reads the list (or the store) → WebSocket

The published payload is only a wake-up marker, so a lost or duplicated
signal never loses or duplicates a message.
"""
