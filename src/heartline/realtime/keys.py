"""Redis key and channel naming.

Every key is scoped by domain and recipient, and every list has its own
channel derived the same way, so a publish for one recipient never wakes an
unrelated connection.

    heartline:chat:{chat_id}:recipient:{user_id}          bounded list
    heartline:events:chat:{chat_id}:recipient:{user_id}   channel
    heartline:notifications:{user_id}                     bounded list
    heartline:events:notifications:{user_id}              channel
"""

PREFIX = "heartline"


def chat_recent_key(chat_id: int, user_id: int) -> str:
    return f"{PREFIX}:chat:{chat_id}:recipient:{user_id}"


def chat_channel(chat_id: int, user_id: int) -> str:
    return f"{PREFIX}:events:chat:{chat_id}:recipient:{user_id}"


def notifications_key(user_id: int) -> str:
    return f"{PREFIX}:notifications:{user_id}"


def notifications_channel(user_id: int) -> str:
    return f"{PREFIX}:events:notifications:{user_id}"
