"""Digest calculation and validation utilities."""

import hashlib
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, BinaryIO, Union

from ..exceptions import DigestFormatError
from .serialization import to_json_bytes

# Regex pattern for valid digest format (algorithm:hex)
DIGEST_PATTERN = re.compile(r"^([a-z0-9]+):([a-f0-9]+)$")

_READ_SIZE = 1024 * 64


class DigestAlgorithm(str, Enum):
    """Supported content hash algorithms."""

    SHA256 = "sha256"
    SHA512 = "sha512"

    @property
    def hex_length(self) -> int:
        return 64 if self is DigestAlgorithm.SHA256 else 128

    def new_hasher(self) -> "hashlib._Hash":
        return hashlib.new(self.value)


@dataclass(frozen=True)
class Digest:
    """An algorithm-tagged content hash, e.g. ``sha256:9f86d0...``.

    Validation happens on construction, so an invalid Digest cannot exist.
    """

    algorithm: DigestAlgorithm
    value: str

    def __post_init__(self) -> None:
        try:
            algorithm = DigestAlgorithm(self.algorithm)
        except ValueError as e:
            raise DigestFormatError(f"Unsupported digest algorithm: {self.algorithm}") from e
        object.__setattr__(self, "algorithm", algorithm)

        if not isinstance(self.value, str) or len(self.value) != algorithm.hex_length:
            raise DigestFormatError(
                f"Invalid {algorithm.value} digest length for '{self.value}', "
                f"expected {algorithm.hex_length} hex characters"
            )
        if not re.fullmatch(r"[a-f0-9]+", self.value):
            raise DigestFormatError(
                f"Digest value must be lowercase hex: '{self.value}'"
            )

    def __str__(self) -> str:
        return f"{self.algorithm.value}:{self.value}"

    @classmethod
    def parse(cls, digest: str) -> "Digest":
        """Parse an ``algorithm:hex`` string.

        Raises:
            DigestFormatError: If the string is malformed or the algorithm is unknown
        """
        if isinstance(digest, Digest):
            return digest
        if not isinstance(digest, str):
            raise DigestFormatError(f"Invalid digest format: {digest!r}")
        match = DIGEST_PATTERN.match(digest)
        if not match:
            raise DigestFormatError(f"Invalid digest format: {digest}")
        return cls(match.group(1), match.group(2))  # type: ignore[arg-type]

    @classmethod
    def is_valid(cls, digest: str) -> bool:
        try:
            cls.parse(digest)
        except DigestFormatError:
            return False
        return True

    @classmethod
    def from_bytes(
        cls,
        data: Union[bytes, bytearray, memoryview],
        algorithm: DigestAlgorithm = DigestAlgorithm.SHA256,
    ) -> "Digest":
        hasher = DigestAlgorithm(algorithm).new_hasher()
        hasher.update(data)
        return cls(DigestAlgorithm(algorithm), hasher.hexdigest())

    @classmethod
    def from_stream(
        cls, stream: BinaryIO, algorithm: DigestAlgorithm = DigestAlgorithm.SHA256
    ) -> "Digest":
        """Hash a readable binary stream from its current position to the end."""
        hasher = DigestAlgorithm(algorithm).new_hasher()
        while True:
            chunk = stream.read(_READ_SIZE)
            if not chunk:
                break
            hasher.update(chunk)
        return cls(DigestAlgorithm(algorithm), hasher.hexdigest())

    @classmethod
    def from_content_string(
        cls, content: str, algorithm: DigestAlgorithm = DigestAlgorithm.SHA256
    ) -> "Digest":
        return cls.from_bytes(content.encode("utf-8"), algorithm)

    @classmethod
    def from_content(
        cls, content: Any, algorithm: DigestAlgorithm = DigestAlgorithm.SHA256
    ) -> "Digest":
        """Hash the canonical JSON serialization of ``content``."""
        return cls.from_bytes(to_json_bytes(content), algorithm)

    @classmethod
    def from_hasher(cls, hasher: "hashlib._Hash") -> "Digest":
        return cls(DigestAlgorithm(hasher.name), hasher.hexdigest())
