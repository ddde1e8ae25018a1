"""Tests for the content store."""

import pytest

from container_builder.content_store import ContentStore, sanitize_segment
from container_builder.exceptions import UnrecognizedMediaTypeError
from container_builder.models import media_types
from container_builder.models.descriptor import Descriptor
from container_builder.utils.digest import Digest

DIGEST = Digest.from_bytes(b"content")


def test_directories_created_lazily(tmp_path):
    """Namespaces appear on first access only."""
    store = ContentStore(tmp_path)
    assert not (tmp_path / "Containers").exists()
    assert store.content_root == tmp_path / "Containers" / "Content"
    assert store.content_root.is_dir()
    assert store.temp_root.is_dir()
    assert store.manifest_root.is_dir()


@pytest.mark.parametrize(
    "media_type,extension",
    [
        (media_types.DOCKER_LAYER_GZIP, ".tar.gz"),
        (media_types.OCI_LAYER_GZIP_V1, ".tar.gz"),
        (media_types.DOCKER_LAYER_TAR, ".tar"),
        (media_types.OCI_LAYER_TAR_V1, ".tar"),
        (media_types.DOCKER_MANIFEST_V2, ""),
        (media_types.OCI_MANIFEST_V1, ""),
        (media_types.DOCKER_MANIFEST_LIST_V2, ""),
        (media_types.OCI_IMAGE_INDEX_V1, ""),
        (media_types.DOCKER_CONTAINER_V1, ""),
        (media_types.OCI_IMAGE_CONFIG_V1, ""),
    ],
)
def test_path_for_descriptor_extension(store, media_type, extension):
    path = store.path_for_descriptor(Descriptor(media_type, DIGEST, 7))
    assert path == store.content_root / f"{DIGEST.value}{extension}"


def test_path_for_descriptor_is_stable(store):
    descriptor = Descriptor(media_types.DOCKER_LAYER_GZIP, DIGEST, 7)
    assert store.path_for_descriptor(descriptor) == store.path_for_descriptor(descriptor)


def test_unknown_media_type_is_an_error(store):
    with pytest.raises(UnrecognizedMediaTypeError):
        store.path_for_descriptor(Descriptor("application/x-unknown", DIGEST, 7))


def test_get_path_for_hash(store):
    assert store.get_path_for_hash(str(DIGEST)) == store.content_root / DIGEST.value


def test_manifest_paths_are_sanitized(store):
    path = store.path_for_manifest_by_tag("localhost:5000", "team/app", "v1")
    assert path == store.manifest_root / "localhost_5000" / "team" / "app" / "v1"

    by_digest = store.path_for_manifest_by_digest("localhost:5000", "team/app", DIGEST)
    assert by_digest.name == f"sha256_{DIGEST.value}"


def test_reference_or_digest_dispatch(store):
    assert store.path_for_manifest_by_reference_or_digest(
        "r", "app", str(DIGEST)
    ) == store.path_for_manifest_by_digest("r", "app", DIGEST)
    assert store.path_for_manifest_by_reference_or_digest(
        "r", "app", "latest"
    ) == store.path_for_manifest_by_tag("r", "app", "latest")


def test_sanitize_segment():
    assert sanitize_segment('a:b*c?d"e|f<g>h') == "a_b_c_d_e_f_g_h"
    assert sanitize_segment("plain-name.1") == "plain-name.1"


def test_temp_files_are_unique(store):
    assert store.get_temp_file() != store.get_temp_file()


@pytest.mark.asyncio
async def test_write_and_read_content(store):
    descriptor = Descriptor.from_content(b'{"a":1}', media_types.DOCKER_CONTAINER_V1)
    path = await store.write_content(descriptor, b'{"a":1}')
    assert path.read_bytes() == b'{"a":1}'
    assert await store.read_content(descriptor) == b'{"a":1}'


@pytest.mark.asyncio
async def test_read_missing_content(store):
    descriptor = Descriptor(media_types.DOCKER_CONTAINER_V1, DIGEST, 7)
    assert await store.read_content(descriptor) is None


@pytest.mark.asyncio
async def test_manifest_reference_round_trip(store):
    """Reference files hold digest, media type and size on three lines."""
    descriptor = Descriptor(media_types.OCI_MANIFEST_V1, DIGEST, 321)
    path = store.path_for_manifest_by_tag("registry", "app", "latest")
    await store.write_manifest_reference(path, descriptor)

    assert path.read_text().splitlines() == [str(DIGEST), media_types.OCI_MANIFEST_V1, "321"]
    assert await store.read_manifest_reference(path) == descriptor


@pytest.mark.asyncio
async def test_malformed_manifest_reference_ignored(store):
    path = store.path_for_manifest_by_tag("registry", "app", "broken")
    path.write_text("only-one-line\n")
    assert await store.read_manifest_reference(path) is None
