"""Utility functions."""

from .digest import Digest, DigestAlgorithm
from .serialization import parse_json_bytes, to_json_bytes

__all__ = [
    "Digest",
    "DigestAlgorithm",
    "parse_json_bytes",
    "to_json_bytes",
]
