"""Tests for image references."""

import pytest

from container_builder.models.references import (
    DestinationImageReference,
    DestinationKind,
    SourceImageReference,
    parse_repository_tag,
)

DIGEST = "sha256:" + "a" * 64


@pytest.mark.parametrize(
    "repo_tag,expected",
    [
        ("nginx:alpine", ("nginx", "alpine")),
        ("nginx", ("nginx", "latest")),
        ("localhost:5000/app", ("localhost:5000/app", "latest")),
        ("localhost:5000/app:1.0", ("localhost:5000/app", "1.0")),
    ],
)
def test_parse_repository_tag(repo_tag, expected):
    assert parse_repository_tag(repo_tag) == expected


def test_parse_repository_tag_without_default():
    assert parse_repository_tag("dotnet/runtime", None) == ("dotnet/runtime", None)


class TestSourceImageReferenceParse:
    """Base image references written as strings."""

    def test_tag(self):
        source = SourceImageReference.parse(None, "dotnet/runtime:8.0")
        assert (source.repository, source.tag, source.digest) == ("dotnet/runtime", "8.0", None)
        assert source.reference == "8.0"
        assert str(source) == "dotnet/runtime:8.0"

    def test_default_tag(self):
        source = SourceImageReference.parse(None, "dotnet/runtime")
        assert source.tag == "latest"

    def test_digest_only(self):
        source = SourceImageReference.parse(None, f"dotnet/runtime@{DIGEST}")
        assert source.tag is None
        assert source.reference == DIGEST
        assert str(source) == f"dotnet/runtime@{DIGEST}"

    def test_tag_and_digest(self):
        """The digest pins the image; the tag is kept for display."""
        source = SourceImageReference.parse(None, f"dotnet/runtime:8.0@{DIGEST}")
        assert source.tag == "8.0"
        assert source.reference == DIGEST

    def test_empty_repository_rejected(self):
        with pytest.raises(ValueError):
            SourceImageReference.parse(None, ":8.0")


def test_destination_repo_tags():
    destination = DestinationImageReference.local("app", ["1.0", "latest"])
    assert destination.repo_tags == ["app:1.0", "app:latest"]


def test_destination_requires_a_tag():
    with pytest.raises(ValueError):
        DestinationImageReference(DestinationKind.LOCAL_REGISTRY, "app", [])
