"""Selecting the best image of a manifest list for a runtime identifier (RID)."""

import json
import logging
from collections.abc import Iterable, Mapping
from importlib import resources
from pathlib import Path
from typing import Optional, Union

from .exceptions import BaseImageNotFoundError
from .models.descriptor import PlatformInformation
from .models.manifest import PlatformSpecificManifest

logger = logging.getLogger(__name__)

_OS_PARTS = {"linux": "linux", "windows": "win"}


def rid_for_platform(platform: PlatformInformation) -> Optional[str]:
    """Map a manifest-list platform to a runtime identifier.

    Only Linux and Windows images on the common architectures are recognized;
    anything else yields None and is skipped by the caller.

    Examples:
        linux/amd64 -> "linux-x64", linux/arm/v6 -> "linux-armv6",
        windows/amd64 with os.version 10.0.17763 -> "win10-x64"
    """
    os_part = _OS_PARTS.get(platform.os)

    version_part = ""
    if platform.os_version:
        version_part = platform.os_version.split(".")[0]

    architecture = platform.architecture
    if architecture == "amd64":
        arch_part: Optional[str] = "x64"
    elif architecture in ("386", "x386"):
        arch_part = "x86"
    elif architecture == "arm":
        variant = platform.variant or ""
        arch_part = "arm" if variant == "v7" else f"arm{variant}"
    elif architecture == "arm64":
        arch_part = "arm64"
    else:
        arch_part = None

    if os_part is None or arch_part is None:
        return None
    return f"{os_part}{version_part}-{arch_part}"


class RuntimeGraph:
    """A RID compatibility graph in NuGet ``runtime.json`` form.

    Each RID imports the RIDs it is compatible with; a RID is compatible with
    everything reachable through its imports.
    """

    def __init__(self, runtimes: Mapping[str, Iterable[str]]) -> None:
        self.runtimes: dict[str, list[str]] = {
            rid: list(imports) for rid, imports in runtimes.items()
        }

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "RuntimeGraph":
        document = json.loads(data)
        return cls(
            {
                rid: entry.get("#import", [])
                for rid, entry in document.get("runtimes", {}).items()
            }
        )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "RuntimeGraph":
        return cls.from_json(Path(path).read_text(encoding="utf-8"))

    @classmethod
    def load_default(cls) -> "RuntimeGraph":
        """The RID graph bundled with this package."""
        resource = resources.files("container_builder").joinpath("data").joinpath("runtime.json")
        data = resource.read_text(encoding="utf-8")
        return cls.from_json(data)

    def expand_runtime(self, rid: str) -> list[str]:
        """The RID followed by every RID it is compatible with, nearest first."""
        expanded = [rid]
        seen = {rid}
        index = 0
        while index < len(expanded):
            for imported in self.runtimes.get(expanded[index], []):
                if imported not in seen:
                    seen.add(imported)
                    expanded.append(imported)
            index += 1
        return expanded

    def are_compatible(self, criteria: str, provided: str) -> bool:
        """Whether assets built for ``criteria`` can run on ``provided``."""
        return criteria in self.expand_runtime(provided)

    def subgraph(self, rids: Iterable[str]) -> "RuntimeGraph":
        """A graph holding only ``rids`` and their ancestors."""
        selected: dict[str, list[str]] = {}
        pending = list(rids)
        while pending:
            rid = pending.pop()
            if rid in selected:
                continue
            imports = self.runtimes.get(rid, [])
            selected[rid] = imports
            pending.extend(imports)
        return RuntimeGraph(selected)


def get_manifests_by_rid(
    manifests: Iterable[PlatformSpecificManifest],
) -> dict[str, PlatformSpecificManifest]:
    """Index manifest-list entries by RID, keeping the first entry per RID."""
    by_rid: dict[str, PlatformSpecificManifest] = {}
    for manifest in manifests:
        rid = rid_for_platform(manifest.platform)
        if rid is None:
            logger.debug(
                f"Skipping unsupported platform {manifest.platform.os}/"
                f"{manifest.platform.architecture} ({manifest.digest})"
            )
            continue
        by_rid.setdefault(rid, manifest)
    return by_rid


def pick_best_manifest_for_rid(
    manifests_by_rid: Mapping[str, PlatformSpecificManifest],
    runtime_identifier: str,
    repository: str,
    reference: str,
    runtime_graph: Optional[RuntimeGraph] = None,
) -> PlatformSpecificManifest:
    """Pick the entry whose RID is compatible with ``runtime_identifier``.

    The compatibility graph is seeded only with the RIDs present in the list
    and their ancestors.

    Raises:
        BaseImageNotFoundError: If no entry is compatible
    """
    graph = (runtime_graph or RuntimeGraph.load_default()).subgraph(manifests_by_rid)
    for rid, manifest in manifests_by_rid.items():
        if graph.are_compatible(rid, runtime_identifier):
            logger.debug(f"Selected {rid} ({manifest.digest}) for {runtime_identifier}")
            return manifest
    raise BaseImageNotFoundError(
        runtime_identifier, repository, reference, list(manifests_by_rid)
    )
