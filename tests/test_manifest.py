"""Tests for manifest and manifest list models."""

import json

import pytest

from container_builder.exceptions import UnrecognizedMediaTypeError
from container_builder.models import media_types
from container_builder.models.descriptor import Descriptor, PlatformInformation
from container_builder.models.manifest import (
    ManifestList,
    ManifestV2,
    PlatformSpecificManifest,
    parse_manifest,
)
from container_builder.models.media_types import ManifestKind
from container_builder.utils.digest import Digest


def make_manifest(media_type=media_types.DOCKER_MANIFEST_V2):
    kind = ManifestKind.from_media_type(media_type)
    return ManifestV2(
        media_type=media_type,
        config=Descriptor.from_content(b"{}", kind.config_media_type),
        layers=[
            Descriptor(kind.layer_media_type, Digest.from_bytes(b"base"), 100),
            Descriptor(kind.layer_media_type, Digest.from_bytes(b"app"), 50),
        ],
    )


class TestManifestV2:
    """Single-image manifests."""

    def test_json_round_trip(self):
        """schemaVersion, config and layer order survive a round trip."""
        manifest = make_manifest()
        parsed = ManifestV2.from_json(manifest.to_json_bytes())

        assert parsed.schema_version == 2
        assert parsed.config == manifest.config
        assert [layer.digest for layer in parsed.layers] == [
            Digest.from_bytes(b"base"),
            Digest.from_bytes(b"app"),
        ]
        assert parsed == manifest

    def test_serialized_keys(self):
        data = json.loads(make_manifest().to_json_bytes())
        assert list(data) == ["schemaVersion", "mediaType", "config", "layers"]
        assert "annotations" not in data

    def test_digest_is_computed_from_json(self):
        manifest = make_manifest()
        assert manifest.digest == Digest.from_bytes(manifest.to_json_bytes())

    def test_known_digest_is_authoritative(self):
        """A registry-reported digest is kept even though the JSON would hash differently."""
        reported = Digest.from_bytes(b"pretty printed original")
        manifest = ManifestV2.from_json(make_manifest().to_json_bytes(), known_digest=reported)
        assert manifest.digest == reported

    def test_digest_cached_once_computed(self):
        manifest = make_manifest()
        first = manifest.digest
        manifest.layers.append(Descriptor(media_types.DOCKER_LAYER_GZIP, Digest.from_bytes(b"x"), 1))
        assert manifest.digest == first

    def test_copy_is_deep_and_forgets_digest(self):
        manifest = make_manifest()
        _ = manifest.digest
        clone = manifest.copy()
        clone.layers.pop()

        assert len(manifest.layers) == 2
        assert clone.known_digest is None


class TestManifestList:
    """Manifest lists and image indexes."""

    def test_round_trip(self):
        manifest_list = ManifestList(
            media_type=media_types.OCI_IMAGE_INDEX_V1,
            manifests=[
                PlatformSpecificManifest(
                    media_types.OCI_MANIFEST_V1,
                    Digest.from_bytes(b"amd64"),
                    10,
                    PlatformInformation("amd64", "linux"),
                ),
                PlatformSpecificManifest(
                    media_types.OCI_MANIFEST_V1,
                    Digest.from_bytes(b"win"),
                    11,
                    PlatformInformation("amd64", "windows", os_version="10.0.17763.1"),
                ),
            ],
        )
        data = json.loads(manifest_list.to_json_bytes())
        assert data["manifests"][1]["platform"]["os.version"] == "10.0.17763.1"

        parsed = ManifestList.from_dict(data)
        assert parsed == manifest_list

    def test_media_type_defaults_from_header(self):
        parsed = ManifestList.from_dict(
            {"schemaVersion": 2, "manifests": []}, media_types.DOCKER_MANIFEST_LIST_V2
        )
        assert parsed.media_type == media_types.DOCKER_MANIFEST_LIST_V2


class TestParseManifest:
    """Media-type dispatch."""

    def test_single_manifest(self):
        body = make_manifest(media_types.OCI_MANIFEST_V1).to_json_bytes()
        assert isinstance(parse_manifest(media_types.OCI_MANIFEST_V1, body), ManifestV2)

    def test_list(self):
        body = json.dumps({"schemaVersion": 2, "manifests": []}).encode()
        parsed = parse_manifest(media_types.DOCKER_MANIFEST_LIST_V2, body)
        assert isinstance(parsed, ManifestList)

    def test_media_type_from_document(self):
        body = make_manifest().to_json_bytes()
        parsed = parse_manifest(None, body)
        assert parsed.media_type == media_types.DOCKER_MANIFEST_V2

    def test_missing_media_type_field_takes_header(self):
        data = json.loads(make_manifest(media_types.OCI_MANIFEST_V1).to_json_bytes())
        del data["mediaType"]
        parsed = parse_manifest(media_types.OCI_MANIFEST_V1, json.dumps(data))
        assert parsed.media_type == media_types.OCI_MANIFEST_V1

    def test_unknown_media_type(self):
        with pytest.raises(UnrecognizedMediaTypeError):
            parse_manifest("application/json", b"{}")


class TestManifestKind:
    """Media type tables per manifest family."""

    def test_docker(self):
        kind = ManifestKind.from_media_type(media_types.DOCKER_MANIFEST_V2)
        assert kind is ManifestKind.DOCKER_V2
        assert kind.config_media_type == media_types.DOCKER_CONTAINER_V1
        assert kind.layer_media_type == media_types.DOCKER_LAYER_GZIP
        assert kind.index_media_type == media_types.DOCKER_MANIFEST_LIST_V2

    def test_oci(self):
        kind = ManifestKind.from_media_type(media_types.OCI_LAYER_TAR_V1)
        assert kind is ManifestKind.OCI_V1
        assert kind.manifest_media_type == media_types.OCI_MANIFEST_V1

    def test_unknown(self):
        with pytest.raises(UnrecognizedMediaTypeError):
            ManifestKind.from_media_type("text/plain")

    def test_layer_media_type_for(self):
        assert media_types.layer_media_type_for(media_types.OCI_MANIFEST_V1) == (
            media_types.OCI_LAYER_GZIP_V1
        )
        with pytest.raises(UnrecognizedMediaTypeError):
            media_types.layer_media_type_for(media_types.DOCKER_MANIFEST_LIST_V2)
