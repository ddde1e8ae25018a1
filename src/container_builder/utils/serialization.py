"""Canonical JSON serialization shared by manifests, configs and digests."""

import json
from typing import Any


def to_json_data(value: Any) -> Any:
    """Convert model objects (anything with ``to_dict``) into plain JSON data."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def to_json_bytes(value: Any) -> bytes:
    """Serialize a value to compact UTF-8 JSON.

    The output has no insignificant whitespace so the same document always
    hashes to the same digest.
    """
    return json.dumps(
        to_json_data(value), separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def parse_json_bytes(data: bytes | str) -> Any:
    """Parse JSON from raw bytes or text."""
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    return json.loads(data)
