"""Tests for digests and descriptors."""

import hashlib
import io

import pytest

from container_builder.exceptions import DigestFormatError
from container_builder.models import media_types
from container_builder.models.descriptor import Descriptor
from container_builder.utils.digest import (
    Digest,
    DigestAlgorithm,
)

SHA256_HELLO = hashlib.sha256(b"hello").hexdigest()


class TestDigest:
    """Digest parsing and validation."""

    def test_parse_round_trip(self):
        """Parsing the string form gives back an equal digest."""
        for algorithm, data in ((DigestAlgorithm.SHA256, b"a"), (DigestAlgorithm.SHA512, b"b")):
            digest = Digest.from_bytes(data, algorithm)
            assert Digest.parse(str(digest)) == digest

    def test_str_format(self):
        digest = Digest.from_bytes(b"hello")
        assert str(digest) == f"sha256:{SHA256_HELLO}"
        assert digest.algorithm is DigestAlgorithm.SHA256
        assert digest.value == SHA256_HELLO

    @pytest.mark.parametrize(
        "text",
        [
            "sha256",
            "sha256:",
            "sha256:abc",
            f"md5:{SHA256_HELLO}",
            f"sha256:{SHA256_HELLO.upper()}",
            f"sha512:{SHA256_HELLO}",
            f"sha256:{SHA256_HELLO}0",
            f"sha256:{'g' * 64}",
        ],
    )
    def test_invalid_digests_rejected(self, text):
        """Wrong length, charset, case or algorithm never produces a Digest."""
        with pytest.raises(DigestFormatError):
            Digest.parse(text)
        assert not Digest.is_valid(text)

    def test_digest_format_error_is_value_error(self):
        with pytest.raises(ValueError):
            Digest("sha256", "abc")

    def test_hashing_is_stable(self):
        assert Digest.from_bytes(b"content") == Digest.from_bytes(b"content")
        assert Digest.from_bytes(b"content") != Digest.from_bytes(b"other")

    def test_from_stream_matches_from_bytes(self):
        data = b"x" * 200_000
        assert Digest.from_stream(io.BytesIO(data)) == Digest.from_bytes(data)

    def test_from_content_uses_canonical_json(self):
        content = {"b": 1, "a": [1, 2]}
        expected = Digest.from_bytes(b'{"b":1,"a":[1,2]}')
        assert Digest.from_content(content) == expected

    def test_from_content_string(self):
        assert Digest.from_content_string("hello") == Digest.from_bytes(b"hello")

    def test_digests_are_hashable(self):
        digests = {Digest.from_bytes(b"a"), Digest.parse(str(Digest.from_bytes(b"a")))}
        assert len(digests) == 1


class TestDescriptor:
    """Descriptor serialization."""

    def test_string_digest_is_parsed(self):
        descriptor = Descriptor(media_types.DOCKER_LAYER_GZIP, f"sha256:{SHA256_HELLO}", 5)
        assert isinstance(descriptor.digest, Digest)

    def test_invalid_digest_rejected(self):
        with pytest.raises(DigestFormatError):
            Descriptor(media_types.DOCKER_LAYER_GZIP, "sha256:bad", 5)

    def test_to_dict_omits_unset_fields(self):
        descriptor = Descriptor(
            media_types.DOCKER_LAYER_GZIP,
            Digest.from_bytes(b"hello"),
            5,
            uncompressed_digest=Digest.from_bytes(b"raw"),
        )
        assert descriptor.to_dict() == {
            "mediaType": media_types.DOCKER_LAYER_GZIP,
            "digest": f"sha256:{SHA256_HELLO}",
            "size": 5,
        }

    def test_uncompressed_digest_not_compared(self):
        first = Descriptor(media_types.DOCKER_LAYER_GZIP, Digest.from_bytes(b"x"), 1)
        second = Descriptor(
            media_types.DOCKER_LAYER_GZIP,
            Digest.from_bytes(b"x"),
            1,
            uncompressed_digest=Digest.from_bytes(b"y"),
        )
        assert first == second

    def test_from_content_bytes(self):
        descriptor = Descriptor.from_content(b"hello", media_types.DOCKER_CONTAINER_V1)
        assert descriptor.digest == Digest.from_bytes(b"hello")
        assert descriptor.size == 5

    def test_from_dict_round_trip(self):
        data = {
            "mediaType": media_types.OCI_LAYER_GZIP_V1,
            "digest": f"sha256:{SHA256_HELLO}",
            "size": 10,
            "urls": ["https://example.com/layer"],
            "annotations": {"k": "v"},
        }
        assert Descriptor.from_dict(data).to_dict() == data
