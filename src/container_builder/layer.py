"""Layer tarball construction and layer bookkeeping."""

import asyncio
import gzip
import hashlib
import logging
import os
import shutil
import stat
import tarfile
from collections.abc import Iterable
from pathlib import Path
from typing import BinaryIO, Optional, Union

from .content_store import ContentStore
from .models import media_types
from .models.descriptor import Descriptor
from .utils.digest import Digest, DigestAlgorithm

logger = logging.getLogger(__name__)

# Self-relative security descriptor granting BUILTIN\Users ownership of the
# application directory on Windows images.
BUILTIN_USERS_SECURITY_DESCRIPTOR = (
    "AQAAgBQAAAAkAAAAAAAAAAAAAAABAgAAAAAABSAAAAAhAgAAAQIAAAAAAAUgAAAAIQIAAA=="
)
WINDOWS_SECURITY_DESCRIPTOR_ATTRIBUTE = "MSWINDOWS.rawsd"

DIRECTORY_MODE = 0o755
EXECUTABLE_FILE_MODE = 0o755
REGULAR_FILE_MODE = 0o644

_PATH_SEPARATORS = "/\\"
_COPY_BUFFER_SIZE = 1024 * 64


class HashDigestGzipWriter:
    """Write-only stream that gzips its input and hashes the uncompressed bytes.

    The gzip header carries no file name and a zero timestamp, so identical
    input always produces identical output.
    """

    def __init__(self, fileobj: BinaryIO) -> None:
        self._hasher = hashlib.sha256()
        self._gzip = gzip.GzipFile(filename="", mode="wb", fileobj=fileobj, mtime=0)

    def write(self, data: bytes) -> int:
        self._hasher.update(data)
        return self._gzip.write(data)

    def flush(self) -> None:
        self._gzip.flush()

    def close(self) -> None:
        # Closing the GzipFile writes the trailer but leaves fileobj open.
        self._gzip.close()

    def uncompressed_digest(self) -> Digest:
        return Digest.from_hasher(self._hasher)


def _normalize_container_path(container_path: str, is_windows_layer: bool) -> str:
    # A COPY to `/app` is recorded as `app/`, without the leading slash.
    container_path = container_path.lstrip(_PATH_SEPARATORS)
    if is_windows_layer:
        if len(container_path) > 1 and container_path[1] == ":":
            container_path = container_path[3:]
        container_path = "Files/" + container_path
    return container_path.rstrip(_PATH_SEPARATORS).replace("\\", "/")


def _entry(
    name: str,
    entry_type: bytes,
    mode: int,
    attributes: dict[str, str],
    user_id: Optional[int],
    mtime: int = 0,
    size: int = 0,
) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = entry_type
    info.mode = mode
    info.mtime = mtime
    info.size = size
    info.uid = user_id if user_id is not None else 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    info.pax_headers = dict(attributes)
    return info


def _is_executable(path: Path, is_windows_layer: bool) -> bool:
    if is_windows_layer:
        return True
    return bool(path.stat().st_mode & stat.S_IXUSR)


def _write_layer_tarball(
    inputs: list[tuple[str, str]],
    container_path: str,
    is_windows_layer: bool,
    user_id: Optional[int],
    output: BinaryIO,
) -> Digest:
    """Write the canonical layer tarball to ``output``.

    Returns:
        Digest of the uncompressed tar stream
    """
    attributes: dict[str, str] = {}
    if is_windows_layer:
        attributes[WINDOWS_SECURITY_DESCRIPTOR_ATTRIBUTE] = BUILTIN_USERS_SECURITY_DESCRIPTOR

    writer = HashDigestGzipWriter(output)
    with tarfile.open(fileobj=writer, mode="w|", format=tarfile.PAX_FORMAT) as tar:
        created_directories: set[str] = set()

        if is_windows_layer:
            tar.addfile(_entry("Files", tarfile.DIRTYPE, DIRECTORY_MODE, attributes, None))
            created_directories.add("Files")

        if container_path and container_path not in created_directories:
            tar.addfile(
                _entry(container_path, tarfile.DIRTYPE, DIRECTORY_MODE, attributes, user_id)
            )
            created_directories.add(container_path)

        ordered = sorted(
            inputs, key=lambda item: item[1].replace("\\", "/").lstrip(_PATH_SEPARATORS)
        )
        for absolute_path, relative_path in ordered:
            relative_path = relative_path.replace("\\", "/").lstrip(_PATH_SEPARATORS)
            final_path = f"{container_path}/{relative_path}" if container_path else relative_path

            parts = final_path.split("/")[:-1]
            for depth in range(1, len(parts) + 1):
                directory = "/".join(parts[:depth])
                if directory not in created_directories:
                    tar.addfile(
                        _entry(directory, tarfile.DIRTYPE, DIRECTORY_MODE, attributes, user_id)
                    )
                    created_directories.add(directory)

            source = Path(absolute_path)
            source_stat = source.stat()
            mode = (
                EXECUTABLE_FILE_MODE
                if _is_executable(source, is_windows_layer)
                else REGULAR_FILE_MODE
            )
            info = _entry(
                final_path,
                tarfile.REGTYPE,
                mode,
                attributes,
                user_id,
                mtime=int(source_stat.st_mtime),
                size=source_stat.st_size,
            )
            with open(source, "rb") as f:
                tar.addfile(info, f)

        if is_windows_layer:
            tar.addfile(_entry("Hives", tarfile.DIRTYPE, DIRECTORY_MODE, attributes, None))

    writer.close()
    return writer.uncompressed_digest()


def _hash_file(path: Path, algorithm: DigestAlgorithm = DigestAlgorithm.SHA256) -> Digest:
    with open(path, "rb") as f:
        return Digest.from_stream(f, algorithm)


class Layer:
    """A filesystem-delta tarball plus the descriptor that addresses it."""

    def __init__(self, descriptor: Descriptor, backing_file: Optional[Path]) -> None:
        self.descriptor = descriptor
        self.backing_file = Path(backing_file) if backing_file is not None else None

    def __repr__(self) -> str:
        return f"Layer({self.descriptor.digest}, {self.backing_file})"

    @classmethod
    def from_descriptor(cls, descriptor: Descriptor, store: ContentStore) -> "Layer":
        return cls(descriptor, store.path_for_descriptor(descriptor))

    @classmethod
    async def from_backing_file(
        cls,
        backing_file: Union[str, Path],
        media_type: str,
        algorithm: DigestAlgorithm = DigestAlgorithm.SHA256,
    ) -> "Layer":
        """Wrap an existing file, hashing it to build the descriptor."""
        path = Path(backing_file)
        loop = asyncio.get_event_loop()
        digest = await loop.run_in_executor(None, _hash_file, path, algorithm)
        return cls(Descriptor(media_type, digest, path.stat().st_size), path)

    @classmethod
    async def from_files(
        cls,
        inputs: Iterable[tuple[str, str]],
        container_path: str,
        is_windows_layer: bool,
        manifest_media_type: str,
        store: ContentStore,
        layer_write_path: Optional[Union[str, Path]] = None,
        user_id: Optional[int] = None,
    ) -> "Layer":
        """Build a gzip layer from ``(absolute_path, container_relative_path)`` pairs.

        Entries are written in a canonical order: the working directory, then
        for each file (sorted by container path) any not yet written parent
        directories followed by the file. Windows layers are rooted under
        ``Files/`` and end with an empty ``Hives`` directory. The same inputs
        always produce a byte-identical tarball.

        Args:
            inputs: Files to add and where they land relative to ``container_path``
            container_path: Working directory inside the container
            is_windows_layer: Use Windows layer conventions
            manifest_media_type: Media type of the manifest the layer will join
            store: Content store receiving a copy of the layer
            layer_write_path: Where the finished tarball is moved to; defaults to
                the content store copy
            user_id: Owner uid for entries of Unix layers

        Returns:
            Layer with the compressed digest, size and uncompressed digest

        Raises:
            UnrecognizedMediaTypeError: If the manifest media type is unknown
        """
        layer_media_type = media_types.layer_media_type_for(manifest_media_type)
        resolved_user_id = None if is_windows_layer else user_id
        normalized_path = _normalize_container_path(container_path, is_windows_layer)
        files = list(inputs)
        temp_path = store.get_temp_file()

        def build() -> tuple[Digest, Digest, int]:
            with open(temp_path, "w+b") as f:
                uncompressed = _write_layer_tarball(
                    files, normalized_path, is_windows_layer, resolved_user_id, f
                )
                f.flush()
                size = f.tell()
                f.seek(0)
                compressed = Digest.from_stream(f)
            return compressed, uncompressed, size

        loop = asyncio.get_event_loop()
        compressed, uncompressed, size = await loop.run_in_executor(None, build)

        descriptor = Descriptor(
            media_type=layer_media_type,
            digest=compressed,
            size=size,
            uncompressed_digest=uncompressed,
        )
        stored = store.path_for_descriptor(descriptor)
        if layer_write_path is None:
            os.replace(temp_path, stored)
            backing = stored
        else:
            backing = Path(layer_write_path)
            backing.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(temp_path, stored)
            shutil.move(str(temp_path), str(backing))

        logger.debug(
            f"Built layer {compressed} ({size} bytes, {len(files)} files, "
            f"uncompressed {uncompressed})"
        )
        return cls(descriptor, backing)

    def open_backing_file(self) -> BinaryIO:
        if self.backing_file is None:
            raise FileNotFoundError(f"Layer {self.descriptor.digest} has no backing file")
        return open(self.backing_file, "rb")

    async def decompress(self, store: ContentStore) -> "Layer":
        """Return the uncompressed (plain tar) form of this layer.

        The content store is checked first so a layer is decompressed at most once.
        """
        media_type = self.descriptor.media_type
        if media_type in media_types.TAR_LAYER_TYPES:
            return self
        tar_media_type = media_types.uncompressed_media_type_for(media_type)

        known = self.descriptor.uncompressed_digest
        if known is not None:
            probe = Descriptor(tar_media_type, known, 0)
            existing = store.path_for_descriptor(probe)
            if existing.exists():
                probe.size = existing.stat().st_size
                return Layer(probe, existing)

        temp_path = store.get_temp_file()

        def gunzip() -> tuple[Digest, int]:
            hasher = hashlib.sha256()
            size = 0
            with self.open_backing_file() as src, gzip.GzipFile(fileobj=src, mode="rb") as gz:
                with open(temp_path, "wb") as dst:
                    while True:
                        chunk = gz.read(_COPY_BUFFER_SIZE)
                        if not chunk:
                            break
                        hasher.update(chunk)
                        dst.write(chunk)
                        size += len(chunk)
            return Digest.from_hasher(hasher), size

        loop = asyncio.get_event_loop()
        digest, size = await loop.run_in_executor(None, gunzip)
        descriptor = Descriptor(tar_media_type, digest, size)
        path = store.move_into_store(temp_path, descriptor)
        logger.debug(f"Decompressed layer {self.descriptor.digest} to {digest}")
        return Layer(descriptor, path)
