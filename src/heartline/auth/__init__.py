"""Authentication.

Learn: Every caller, REST or WebSocket, resolves to an AuthenticatedRequest
carrying the participant id from a signed JWT. Handlers receive it as a
typed argument instead of reading it from request context.
"""
