"""Loading built images into a local Docker or Podman daemon."""

import asyncio
import json
import logging
from typing import Optional

import aiofiles
import aiofiles.os

from .builder import BuiltImage
from .content_store import ContentStore
from .exceptions import LocalDaemonLoadError, LocalDaemonUnavailableError
from .models.references import DestinationImageReference, SourceImageReference
from .tar.writer import write_docker_image_to_stream

logger = logging.getLogger(__name__)

DOCKER_COMMAND = "docker"
PODMAN_COMMAND = "podman"

_LOAD_CHUNK_SIZE = 1024 * 256


async def _run(*args: str) -> Optional[tuple[int, bytes, bytes]]:
    """Run a command to completion; None when the executable does not exist."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *args, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
    except (FileNotFoundError, PermissionError):
        return None
    stdout, stderr = await proc.communicate()
    return proc.returncode, stdout, stderr


class LocalDaemon:
    """The ``docker`` or ``podman`` CLI on this machine.

    When both are installed and ``docker`` is really podman in disguise,
    podman is used directly.
    """

    def __init__(self, command: Optional[str] = None) -> None:
        self.command = command

    async def _responds_to_version(self, command: str) -> bool:
        result = await _run(command, "version")
        return result is not None and result[0] == 0

    async def _is_podman_alias(self) -> bool:
        # Docker's info has DockerRootDir; podman's has host.buildahVersion.
        result = await _run(DOCKER_COMMAND, "info", "--format={{json .}}")
        if result is None or result[0] != 0:
            return False
        try:
            info = json.loads(result[1])
        except ValueError:
            return False
        if not isinstance(info, dict):
            return False
        has_docker_root = isinstance(info.get("DockerRootDir"), str)
        host = info.get("host")
        has_buildah = isinstance(host, dict) and isinstance(host.get("buildahVersion"), str)
        return not has_docker_root and has_buildah

    async def get_command(self) -> Optional[str]:
        """Detect which CLI to use, remembering the answer."""
        if self.command is not None:
            return self.command

        podman_ok, docker_ok = await asyncio.gather(
            self._responds_to_version(PODMAN_COMMAND),
            self._responds_to_version(DOCKER_COMMAND),
        )
        if docker_ok and podman_ok and await self._is_podman_alias():
            self.command = PODMAN_COMMAND
        elif docker_ok:
            self.command = DOCKER_COMMAND
        elif podman_ok:
            self.command = PODMAN_COMMAND

        if self.command is not None:
            logger.debug(f"Using local container CLI '{self.command}'")
        return self.command

    async def is_available(self) -> bool:
        command = await self.get_command()
        if command is None:
            logger.error(f"Cannot find {DOCKER_COMMAND} or {PODMAN_COMMAND} executable")
            return False
        return await self._responds_to_version(command)

    async def load(
        self,
        image: BuiltImage,
        source: SourceImageReference,
        destination: DestinationImageReference,
    ) -> None:
        """Write the image as a Docker tarball and pipe it into ``<cli> load``.

        Raises:
            LocalDaemonUnavailableError: If no CLI is installed
            LocalDaemonLoadError: If ``load`` exits with a non-zero status
        """
        command = await self.get_command()
        if command is None:
            raise LocalDaemonUnavailableError(
                f"Cannot find {DOCKER_COMMAND} or {PODMAN_COMMAND} executable"
            )

        store = source.registry.store if source.registry is not None else ContentStore()
        tarball = store.get_temp_file()
        try:
            with open(tarball, "wb") as stream:
                await write_docker_image_to_stream(image, source, destination, stream, store)

            try:
                proc = await asyncio.create_subprocess_exec(
                    command,
                    "load",
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                raise LocalDaemonUnavailableError(f"Failed to start '{command} load': {e}") from e

            try:
                async with aiofiles.open(tarball, "rb") as f:
                    while True:
                        chunk = await f.read(_LOAD_CHUNK_SIZE)
                        if not chunk:
                            break
                        proc.stdin.write(chunk)
                        await proc.stdin.drain()
                proc.stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                # The CLI exited early; its stderr explains why.
                logger.debug(f"'{command} load' closed its input early")

            stdout, stderr = await proc.communicate()
            if proc.returncode != 0:
                raise LocalDaemonLoadError(
                    f"'{command} load' failed: {stderr.decode('utf-8', errors='replace').strip()}"
                )
            logger.info(
                f"Loaded {', '.join(destination.repo_tags)} into {command}: "
                f"{stdout.decode('utf-8', errors='replace').strip()}"
            )
        finally:
            if tarball.exists():
                await aiofiles.os.remove(tarball)
