"""In-process fake registry and image fixtures for tests."""

import gzip
import hashlib
import io
import json
import re
import tarfile
import uuid
from dataclasses import dataclass, field
from typing import Optional

from aiohttp import web

from container_builder.models import media_types

_BLOB = re.compile(r"^/v2/(?P<name>.+)/blobs/(?P<digest>[a-z0-9]+:[a-f0-9]+)$")
_UPLOADS = re.compile(r"^/v2/(?P<name>.+)/blobs/uploads/$")
_UPLOAD_SESSION = re.compile(r"^/v2/(?P<name>.+)/blobs/uploads/(?P<session>[a-f0-9]+)$")
_MANIFEST = re.compile(r"^/v2/(?P<name>.+)/manifests/(?P<reference>[^/]+)$")

TOKEN = "test-token"


def sha256_digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


@dataclass
class FakeRegistry:
    """A Docker Registry API v2 server good enough to exercise the client.

    Failure injection:
        patch_failures: PATCH call number (1-based, counting every PATCH) to
            the status returned instead of accepting that request
        whole_patch_status: status returned for a PATCH without Content-Range
        finalize_status: status returned for every finalizing PUT
        blob_failures: GET blob requests answered 500 before serving content
        declared_chunk_size: value of OCI-Chunk-Min-Length on new sessions
        require_token: answer 401 with a Bearer challenge unless the token is sent
        token_status: status of the token endpoint; anything but 200 refuses
        chunk_status: status for an accepted chunk PATCH (Amazon ECR answers 201)
        chunk_range: Range header sent back for an accepted chunk instead of the
            real progress
        strict_repositories: a blob exists in a repository only once it was
            uploaded, mounted or seeded there
    """

    blobs: dict[str, bytes] = field(default_factory=dict)
    manifests: dict[tuple[str, str], tuple[bytes, str]] = field(default_factory=dict)
    sessions: dict[str, bytearray] = field(default_factory=dict)
    patch_failures: dict[int, int] = field(default_factory=dict)
    whole_patch_status: Optional[int] = None
    finalize_status: Optional[int] = None
    blob_failures: int = 0
    declared_chunk_size: Optional[int] = None
    require_token: bool = False
    token_status: int = 200
    chunk_status: int = 202
    chunk_range: Optional[str] = None
    strict_repositories: bool = False
    links: set[tuple[str, str]] = field(default_factory=set)
    requests: list[tuple[str, str]] = field(default_factory=list)
    patch_count: int = 0
    token_requests: int = 0
    mounts: list[tuple[str, str, str]] = field(default_factory=list)
    url: str = ""

    @property
    def registry_name(self) -> str:
        return self.url.split("://", 1)[1]

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/token", self._token)
        app.router.add_route("*", "/v2/{tail:.*}", self._dispatch)
        return app

    def add_blob(self, data: bytes, repository: Optional[str] = None) -> str:
        digest = sha256_digest(data)
        self.blobs[digest] = data
        if repository is not None:
            self.links.add((repository, digest))
        return digest

    def has_blob(self, repository: str, digest: str) -> bool:
        if digest not in self.blobs:
            return False
        return not self.strict_repositories or (repository, digest) in self.links

    def add_manifest(self, repository: str, reference: str, body: bytes, media_type: str) -> str:
        digest = sha256_digest(body)
        self.manifests[(repository, reference)] = (body, media_type)
        self.manifests[(repository, digest)] = (body, media_type)
        return digest

    def count(self, method: str, fragment: str = "") -> int:
        return sum(1 for m, path in self.requests if m == method and fragment in path)

    async def _token(self, request: web.Request) -> web.Response:
        self.token_requests += 1
        if self.token_status != 200:
            return web.Response(status=self.token_status)
        return web.json_response({"token": TOKEN})

    def _challenge(self, request: web.Request, name: str) -> web.Response:
        realm = f"{request.url.origin()}/token"
        header = f'Bearer realm="{realm}",service="fake-registry",scope="repository:{name}:pull,push"'
        return web.Response(status=401, headers={"WWW-Authenticate": header})

    async def _dispatch(self, request: web.Request) -> web.StreamResponse:
        path = request.path
        self.requests.append((request.method, path))
        if path == "/v2/":
            return web.Response(status=200)

        for pattern in (_UPLOAD_SESSION, _UPLOADS, _BLOB, _MANIFEST):
            match = pattern.match(path)
            if match:
                break
        else:
            return web.Response(status=404)

        if self.require_token and request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return self._challenge(request, match.group("name"))

        if pattern is _UPLOAD_SESSION:
            return await self._upload_session(request, match.group("name"), match.group("session"))
        if pattern is _UPLOADS:
            return await self._start_upload(request, match.group("name"))
        if pattern is _BLOB:
            return await self._blob(request, match.group("name"), match.group("digest"))
        return await self._manifest(request, match.group("name"), match.group("reference"))

    async def _blob(self, request: web.Request, name: str, digest: str) -> web.Response:
        if not self.has_blob(name, digest):
            return web.Response(status=404)
        data = self.blobs[digest]
        if request.method == "HEAD":
            return web.Response(status=200, headers={"Docker-Content-Digest": digest})
        if self.blob_failures > 0:
            self.blob_failures -= 1
            return web.Response(status=500)
        return web.Response(body=data, content_type="application/octet-stream")

    async def _start_upload(self, request: web.Request, name: str) -> web.Response:
        if request.method != "POST":
            return web.Response(status=405)
        mount = request.query.get("mount")
        if mount is not None:
            source = request.query.get("from", "")
            self.mounts.append((name, source, mount))
            if self.has_blob(source, mount):
                self.links.add((name, mount))
                return web.Response(status=201)

        session = uuid.uuid4().hex
        self.sessions[session] = bytearray()
        headers = {"Location": f"/v2/{name}/blobs/uploads/{session}", "Range": "0-0"}
        if self.declared_chunk_size is not None:
            headers["OCI-Chunk-Min-Length"] = str(self.declared_chunk_size)
        return web.Response(status=202, headers=headers)

    def _progress_headers(self, name: str, session: str) -> dict[str, str]:
        headers = {"Location": f"/v2/{name}/blobs/uploads/{session}"}
        received = len(self.sessions[session])
        if received:
            headers["Range"] = f"0-{received - 1}"
        return headers

    async def _upload_session(
        self, request: web.Request, name: str, session: str
    ) -> web.Response:
        if session not in self.sessions:
            return web.Response(status=404)

        if request.method == "GET":
            return web.Response(status=204, headers=self._progress_headers(name, session))

        if request.method == "PATCH":
            self.patch_count += 1
            body = await request.read()
            failure = self.patch_failures.get(self.patch_count)
            if failure is not None:
                return web.Response(status=failure, text="injected failure")

            content_range = request.headers.get("Content-Range")
            if content_range is None:
                if self.whole_patch_status is not None:
                    return web.Response(status=self.whole_patch_status, text="whole upload refused")
            else:
                start = int(content_range.split("-", 1)[0])
                if start != len(self.sessions[session]):
                    return web.Response(status=416, text="range not satisfiable")
            self.sessions[session].extend(body)
            headers = self._progress_headers(name, session)
            if content_range is not None:
                if self.chunk_range is not None:
                    headers["Range"] = self.chunk_range
                return web.Response(status=self.chunk_status, headers=headers)
            return web.Response(status=202, headers=headers)

        if request.method == "PUT":
            if self.finalize_status is not None:
                return web.Response(status=self.finalize_status, text="finalize refused")
            await request.read()
            data = bytes(self.sessions.pop(session))
            digest = request.query.get("digest")
            if digest != sha256_digest(data):
                return web.Response(status=400, text="digest mismatch")
            self.blobs[digest] = data
            self.links.add((name, digest))
            return web.Response(status=201, headers={"Docker-Content-Digest": digest})

        return web.Response(status=405)

    async def _manifest(self, request: web.Request, name: str, reference: str) -> web.Response:
        if request.method == "PUT":
            body = await request.read()
            media_type = request.headers.get("Content-Type", "")
            digest = self.add_manifest(name, reference, body, media_type)
            return web.Response(status=201, headers={"Docker-Content-Digest": digest})

        stored = self.manifests.get((name, reference))
        if stored is None:
            return web.Response(status=404, text="manifest unknown")
        body, media_type = stored
        headers = {"Docker-Content-Digest": sha256_digest(body), "Content-Type": media_type}
        if request.method == "HEAD":
            return web.Response(status=200, headers=headers)
        return web.Response(body=body, headers=headers)


def make_layer_blob(files: dict[str, bytes]) -> tuple[bytes, str]:
    """A gzip layer containing ``files``; returns (compressed, uncompressed digest)."""
    raw = io.BytesIO()
    with tarfile.open(fileobj=raw, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    uncompressed = raw.getvalue()
    return gzip.compress(uncompressed, mtime=0), sha256_digest(uncompressed)


def seed_base_image(
    registry: FakeRegistry,
    repository: str,
    tag: str,
    architecture: str = "amd64",
    os_name: str = "linux",
    env: Optional[list[str]] = None,
    entrypoint: Optional[list[str]] = None,
    manifest_media_type: str = media_types.DOCKER_MANIFEST_V2,
) -> dict:
    """Store a one-layer base image in the fake registry under ``repository:tag``."""
    layer, diff_id = make_layer_blob({"etc/os-release": f"{os_name}-{architecture}".encode()})
    layer_digest = registry.add_blob(layer, repository)

    container_config: dict = {"Env": env or ["PATH=/usr/bin"], "WorkingDir": "/"}
    if entrypoint is not None:
        container_config["Entrypoint"] = entrypoint
    config = {
        "architecture": architecture,
        "os": os_name,
        "rootfs": {"type": "layers", "diff_ids": [diff_id]},
        "config": container_config,
        "history": [{"created_by": "base"}],
    }
    config_bytes = json.dumps(config).encode()
    config_digest = registry.add_blob(config_bytes, repository)

    kind = media_types.ManifestKind.from_media_type(manifest_media_type)
    manifest = {
        "schemaVersion": 2,
        "mediaType": manifest_media_type,
        "config": {
            "mediaType": kind.config_media_type,
            "digest": config_digest,
            "size": len(config_bytes),
        },
        "layers": [
            {"mediaType": kind.layer_media_type, "digest": layer_digest, "size": len(layer)}
        ],
    }
    body = json.dumps(manifest).encode()
    digest = registry.add_manifest(repository, tag, body, manifest_media_type)
    return {
        "manifest_digest": digest,
        "manifest_size": len(body),
        "layer_digest": layer_digest,
        "config_digest": config_digest,
    }


def seed_manifest_list(
    registry: FakeRegistry,
    repository: str,
    tag: str,
    platforms: list[tuple[str, str, Optional[str]]],
) -> str:
    """Store per-platform images and a manifest list over them under ``repository:tag``."""
    entries = []
    for os_name, architecture, variant in platforms:
        image_tag = f"{tag}-{os_name}-{architecture}{variant or ''}"
        seeded = seed_base_image(registry, repository, image_tag, architecture, os_name)
        platform = {"architecture": architecture, "os": os_name}
        if variant:
            platform["variant"] = variant
        entries.append(
            {
                "mediaType": media_types.DOCKER_MANIFEST_V2,
                "digest": seeded["manifest_digest"],
                "size": seeded["manifest_size"],
                "platform": platform,
            }
        )
    body = json.dumps(
        {
            "schemaVersion": 2,
            "mediaType": media_types.DOCKER_MANIFEST_LIST_V2,
            "manifests": entries,
        }
    ).encode()
    return registry.add_manifest(repository, tag, body, media_types.DOCKER_MANIFEST_LIST_V2)
