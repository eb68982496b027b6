"""Time-sortable identifiers for upload history records."""

from uuid_extensions import uuid7


def generate_id(prefix: str = "") -> str:
    """Generate a UUID v7 hex string with an optional prefix.

    Args:
        prefix: e.g. "up_" for upload history records

    Returns:
        String like "up_01926f4e8b7d7a8e9c0d1e2f3a4b5c6d". Later ids sort after earlier ones.
    """
    uid = uuid7().hex
    return f"{prefix}{uid}" if prefix else uid
