"""Example: build an application image on a .NET base image and push it."""

import asyncio
import logging
import sys
import tempfile
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, "src")

from container_builder import (
    ContentStore,
    DestinationImageReference,
    Layer,
    Registry,
    RegistryError,
    SourceImageReference,
    check_registry_connectivity,
    create_image_index,
    push_image,
    push_manifest_list,
)

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_REGISTRY = "mcr.microsoft.com"
BASE_IMAGE = "dotnet/runtime:8.0"
TARGET_REGISTRY = "http://localhost:15000"


async def build(source: SourceImageReference, store: ContentStore, publish_dir: Path, rid: str):
    """Layer the publish directory onto the base image for one RID."""
    builder = await source.registry.get_image_manifest(source.repository, source.reference, rid)

    inputs = [
        (str(path), str(path.relative_to(publish_dir)))
        for path in publish_dir.rglob("*")
        if path.is_file()
    ]
    layer = await Layer.from_files(
        inputs, "/app", builder.is_windows, builder.manifest_media_type, store
    )
    builder.add_layer(layer)
    builder.set_working_directory("/app")
    builder.set_entrypoint_and_cmd(app_command=["dotnet", "app.dll"])
    builder.add_base_image_digest_label()
    return builder.build().unwrap()


async def main():
    """Build for linux-x64 and push one tag."""
    store = ContentStore()
    with tempfile.TemporaryDirectory() as publish:
        publish_dir = Path(publish)
        (publish_dir / "app.dll").write_bytes(b"demo assembly")

        try:
            if not await check_registry_connectivity(TARGET_REGISTRY):
                logger.error(f"{TARGET_REGISTRY} does not speak the registry v2 API")
                return

            async with Registry(BASE_REGISTRY, store=store) as base, Registry(
                TARGET_REGISTRY, store=store
            ) as target:
                source = SourceImageReference.parse(base, BASE_IMAGE)
                built = await build(source, store, publish_dir, "linux-x64")
                destination = DestinationImageReference.remote(target, "demo-app", ["1.0", "latest"])
                digest = await push_image(built, source, destination)
                logger.info(f"✓ Pushed demo-app@{digest}")

        except RegistryError as e:
            logger.error(f"Registry error: {e}")


async def multi_arch():
    """Build for two RIDs and push an image index over both."""
    store = ContentStore()
    with tempfile.TemporaryDirectory() as publish:
        publish_dir = Path(publish)
        (publish_dir / "app.dll").write_bytes(b"demo assembly")

        try:
            async with Registry(BASE_REGISTRY, store=store) as base, Registry(
                TARGET_REGISTRY, store=store
            ) as target:
                source = SourceImageReference.parse(base, BASE_IMAGE)
                images = [
                    await build(source, store, publish_dir, rid)
                    for rid in ("linux-x64", "linux-arm64")
                ]
                destination = DestinationImageReference.remote(target, "demo-app", ["multi"])
                digest = await push_manifest_list(create_image_index(images), destination, source)
                logger.info(f"✓ Pushed image index demo-app@{digest}")

        except RegistryError as e:
            logger.error(f"Registry error: {e}")


if __name__ == "__main__":
    print("=== Single Image ===")
    asyncio.run(main())

    print("\n=== Multi-Architecture Image ===")
    asyncio.run(multi_arch())
