"""Local content-addressed store for blobs and manifest references."""

import logging
import os
import re
import tempfile
import uuid
from pathlib import Path
from typing import Optional, Union

import aiofiles
import aiofiles.os

from .exceptions import UnrecognizedMediaTypeError
from .models import media_types
from .models.descriptor import Descriptor
from .utils.digest import Digest

logger = logging.getLogger(__name__)

CONTENT_STORE_ROOT_ENV = "CONTAINER_CONTENT_STORE_ROOT"

# Characters that are not safe in a single path segment on any platform.
_INVALID_SEGMENT_CHARS = re.compile(r'[<>:"|?*\\\x00-\x1f]')

_NO_EXTENSION_TYPES = (
    media_types.MANIFEST_TYPES | media_types.MANIFEST_LIST_TYPES | media_types.CONFIG_TYPES
)


def sanitize_segment(name: str) -> str:
    """Replace characters that are invalid in a path segment with ``_``."""
    return _INVALID_SEGMENT_CHARS.sub("_", name)


def default_store_root() -> Path:
    root = os.environ.get(CONTENT_STORE_ROOT_ENV)
    return Path(root) if root else Path(tempfile.gettempdir())


class ContentStore:
    """Directory tree addressing blobs by digest and manifests by reference.

    Layout under ``root``::

        Containers/Content/<hex>[.tar.gz|.tar]
        Containers/Manifests/<registry>/<repository>/<tag-or-digest>
        Containers/Temp/<random>

    Directories are created on first access. Writes go through a temp file and
    ``os.replace`` so readers never observe partial content; two writers of the
    same digest race harmlessly because the bytes are identical.
    """

    def __init__(self, root: Optional[Union[str, Path]] = None) -> None:
        self.root = Path(root) if root is not None else default_store_root()

    def _ensure(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def artifact_root(self) -> Path:
        return self._ensure(self.root / "Containers")

    @property
    def content_root(self) -> Path:
        return self._ensure(self.artifact_root / "Content")

    @property
    def manifest_root(self) -> Path:
        return self._ensure(self.artifact_root / "Manifests")

    @property
    def temp_root(self) -> Path:
        return self._ensure(self.artifact_root / "Temp")

    def get_path_for_hash(self, digest: Union[Digest, str]) -> Path:
        """Extensionless content path for a digest."""
        digest = Digest.parse(digest)
        return self.content_root / digest.value

    def path_for_descriptor(self, descriptor: Descriptor) -> Path:
        """Content path for a descriptor, with an extension chosen by media type.

        Raises:
            UnrecognizedMediaTypeError: If the media type is not a known layer,
                manifest, list or config type
        """
        media_type = descriptor.media_type
        if media_type in media_types.GZIP_LAYER_TYPES:
            extension = ".tar.gz"
        elif media_type in media_types.TAR_LAYER_TYPES:
            extension = ".tar"
        elif media_type in _NO_EXTENSION_TYPES:
            extension = ""
        else:
            raise UnrecognizedMediaTypeError(media_type)
        return self.content_root / f"{descriptor.digest.value}{extension}"

    def _manifest_dir(self, registry: str, repository: str) -> Path:
        parts = [sanitize_segment(part) for part in repository.split("/") if part]
        return self._ensure(self.manifest_root.joinpath(sanitize_segment(registry), *parts))

    def path_for_manifest_by_tag(self, registry: str, repository: str, tag: str) -> Path:
        return self._manifest_dir(registry, repository) / sanitize_segment(tag)

    def path_for_manifest_by_digest(
        self, registry: str, repository: str, digest: Union[Digest, str]
    ) -> Path:
        return self._manifest_dir(registry, repository) / sanitize_segment(
            str(Digest.parse(digest))
        )

    def path_for_manifest_by_reference_or_digest(
        self, registry: str, repository: str, reference: str
    ) -> Path:
        if Digest.is_valid(reference):
            return self.path_for_manifest_by_digest(registry, repository, reference)
        return self.path_for_manifest_by_tag(registry, repository, reference)

    def get_temp_file(self) -> Path:
        """A fresh, not yet existing path under ``Temp/``."""
        return self.temp_root / uuid.uuid4().hex

    def move_into_store(self, temp_path: Union[str, Path], descriptor: Descriptor) -> Path:
        """Atomically move a finished temp file to its content path."""
        destination = self.path_for_descriptor(descriptor)
        os.replace(temp_path, destination)
        logger.debug(f"Stored {descriptor.digest} at {destination}")
        return destination

    async def write_content(self, descriptor: Descriptor, data: bytes) -> Path:
        """Write a small blob (manifest, config) to the store."""
        temp_path = self.get_temp_file()
        async with aiofiles.open(temp_path, "wb") as f:
            await f.write(data)
        destination = self.path_for_descriptor(descriptor)
        await aiofiles.os.replace(temp_path, destination)
        return destination

    async def read_content(self, descriptor: Descriptor) -> Optional[bytes]:
        path = self.path_for_descriptor(descriptor)
        if not path.exists():
            return None
        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    async def write_manifest_reference(self, path: Path, descriptor: Descriptor) -> None:
        """Record which manifest a tag or digest pointed at.

        The file holds three lines: digest, media type and size.
        """
        temp_path = self.get_temp_file()
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(f"{descriptor.digest}\n{descriptor.media_type}\n{descriptor.size}\n")
        await aiofiles.os.replace(temp_path, path)

    async def read_manifest_reference(self, path: Path) -> Optional[Descriptor]:
        if not path.exists():
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            lines = (await f.read()).splitlines()
        if len(lines) < 3:
            logger.debug(f"Ignoring malformed manifest reference {path}")
            return None
        return Descriptor(
            media_type=lines[1], digest=Digest.parse(lines[0]), size=int(lines[2])
        )
