"""Image tarball output."""

from .writer import (
    write_docker_image_to_stream,
    write_image_to_stream,
    write_oci_image_to_stream,
)

__all__ = [
    "write_image_to_stream",
    "write_docker_image_to_stream",
    "write_oci_image_to_stream",
]
