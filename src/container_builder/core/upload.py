"""Chunked blob upload state machine and chunk sizing policy.

The state is a small immutable value; each registry response moves it to a
new state through a named transition, so the retry rules can be exercised
without any I/O.
"""

from dataclasses import dataclass, replace
from typing import Optional

DEFAULT_CHUNK_SIZE = 1024 * 64
# Amazon ECR rejects every chunk but the last one when it is smaller than this.
ECR_MINIMUM_CHUNK_SIZE = 5 * 1024 * 1024
MAX_CHUNK_RETRIES = 10


def effective_chunk_size(
    registry_declared: Optional[int],
    user_override: Optional[int],
    is_amazon_ecr: bool = False,
) -> int:
    """Chunk size to use for a chunked upload.

    The smaller of the registry's declared size and the user override wins; a
    zero on either side counts as unset. With neither, the default applies.
    Amazon ECR raises the result to its minimum.
    """
    if registry_declared == 0:
        registry_declared = None
    if user_override == 0:
        user_override = None

    if registry_declared is not None and user_override is not None:
        result = min(registry_declared, user_override)
    elif registry_declared is not None:
        result = registry_declared
    elif user_override is not None:
        result = user_override
    else:
        result = DEFAULT_CHUNK_SIZE

    if is_amazon_ecr:
        return max(result, ECR_MINIMUM_CHUNK_SIZE)
    return result


@dataclass(frozen=True)
class ChunkedUploadState:
    """Progress of one chunked upload.

    Attributes:
        uri: Where the next chunk is sent
        chunk_start: Offset of the next chunk in the blob
        retry_count: Retries currently charged against the budget
        chunk_count: Chunks the registry has accepted
        max_retries: Retry budget shared by the whole blob
    """

    uri: str
    chunk_start: int = 0
    retry_count: int = 0
    chunk_count: int = 0
    max_retries: int = MAX_CHUNK_RETRIES

    @property
    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def on_chunk_accepted(
        self,
        bytes_sent: int,
        next_uri: str,
        range_end: Optional[int] = None,
    ) -> "ChunkedUploadState":
        """A chunk was accepted; a success reclaims one retry.

        Args:
            bytes_sent: Size of the chunk just sent
            next_uri: Location returned by the registry
            range_end: Last byte offset the registry reports as received, or
                None to assume the whole chunk landed
        """
        return replace(
            self,
            uri=next_uri,
            chunk_start=range_end + 1 if range_end is not None else self.chunk_start + bytes_sent,
            retry_count=max(self.retry_count - 1, 0),
            chunk_count=self.chunk_count + 1,
        )

    def on_chunk_failed(self) -> "ChunkedUploadState":
        """A chunk was rejected; charge one retry. The chunk is resent from chunk_start."""
        return replace(self, retry_count=self.retry_count + 1)

    def on_status_reported(
        self, next_uri: Optional[str], range_end: Optional[int]
    ) -> "ChunkedUploadState":
        """The registry reported upload progress after a failure.

        Resume right after the reported range. Without a range the failed chunk
        is resent.
        """
        return replace(
            self,
            uri=next_uri or self.uri,
            chunk_start=range_end + 1 if range_end is not None else self.chunk_start,
        )
