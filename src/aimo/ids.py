"""Id generation for aimo records."""

import secrets
import string

_ALPHABET = string.ascii_lowercase + string.digits
ID_LENGTH = 24


def generate_id(prefix: str) -> str:
    """Return ``prefix`` followed by random lowercase alphanumerics (24 chars total)."""
    body = "".join(secrets.choice(_ALPHABET) for _ in range(ID_LENGTH - len(prefix)))
    return f"{prefix}{body}"


def generate_memo_id() -> str:
    return generate_id("m")


def generate_tag_id() -> str:
    return generate_id("t")


def generate_relation_id() -> str:
    return generate_id("r")
