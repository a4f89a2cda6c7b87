"""ULID helpers for primary keys and path validation."""

import ulid


def generate_ulid() -> str:
    """Return a string ULID for primary keys."""
    return str(ulid.new())


def is_ulid(value: str) -> bool:
    """True when ``value`` parses as a 26-char Crockford base32 ULID."""
    try:
        ulid.from_str(value.upper())
    except ValueError:
        return False
    return True
