"""Key layout for chat messages in the key-value store.

Layout:
- pk: family identifier (every family is its own partition)
- sk: <userId>#SESSION#<sessionId>#MSG#<ISO-8601 timestamp>

Timestamps are always UTC with millisecond precision and a trailing "Z",
so string order of sort keys equals chronological order.
"""
from datetime import datetime, timedelta, timezone

SEPARATOR = "#"
SESSION_MARKER = "SESSION"
MESSAGE_MARKER = "MSG"

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Assistant reply is stored this long after the user message of the same turn
ASSISTANT_OFFSET = timedelta(milliseconds=1000)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime as e.g. 2024-01-01T10:00:00.000Z."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    millis = value.microsecond // 1000
    return f"{value.strftime(TIMESTAMP_FORMAT)}.{millis:03d}Z"


def parse_timestamp(text: str) -> datetime:
    """
    Parse a timestamp produced by format_timestamp.

    Raises:
        ValueError: If the text is not in the stored format
    """
    if not text.endswith("Z"):
        raise ValueError(f"Timestamp must be UTC with a trailing 'Z': {text!r}")
    parsed = datetime.strptime(text[:-1], TIMESTAMP_FORMAT + ".%f")
    return parsed.replace(tzinfo=timezone.utc)


def paired_timestamp(timestamp: str) -> str:
    """Timestamp of the assistant slot paired with a user message."""
    return format_timestamp(parse_timestamp(timestamp) + ASSISTANT_OFFSET)


def partition_key(family_id: str) -> str:
    return family_id


def user_prefix(user_id: str) -> str:
    """Prefix shared by every message of a user, across all sessions."""
    return f"{user_id}{SEPARATOR}{SESSION_MARKER}{SEPARATOR}"


def session_prefix(user_id: str, session_id: str) -> str:
    """Prefix shared by every message in one session.

    Ends with the message marker so session "s1" never matches "s10".
    """
    return f"{user_prefix(user_id)}{session_id}{SEPARATOR}{MESSAGE_MARKER}{SEPARATOR}"


def message_sort_key(user_id: str, session_id: str, timestamp: str) -> str:
    return f"{session_prefix(user_id, session_id)}{timestamp}"


def timestamp_from_sort_key(sort_key: str) -> str:
    marker = f"{SEPARATOR}{MESSAGE_MARKER}{SEPARATOR}"
    return sort_key.rsplit(marker, 1)[1]


def session_id_from_sort_key(user_id: str, sort_key: str) -> str:
    """
    Recover the session id from a message sort key.

    Raises:
        ValueError: If the sort key does not belong to the user
    """
    prefix = user_prefix(user_id)
    marker = f"{SEPARATOR}{MESSAGE_MARKER}{SEPARATOR}"
    if not sort_key.startswith(prefix) or marker not in sort_key:
        raise ValueError(f"Not a message key of {user_id}: {sort_key!r}")
    return sort_key[len(prefix):].rsplit(marker, 1)[0]


def user_profile_key(family_id: str, user_id: str) -> tuple[str, str]:
    """Point key of the family-member item (role, birthDate, ...)."""
    return partition_key(family_id), user_id
