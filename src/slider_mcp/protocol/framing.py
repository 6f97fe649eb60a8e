"""Inbound chunk classification.

The firmware writes log text and raw binary records to the same USB
endpoint with no header or length prefix, so every chunk read from the
device has to be classified by inspection:

- Current firmware (strict detection): a chunk is binary only if it is
  longer than 20 bytes, starts with a plausible program count (0-10), and
  either at least 30% of its first 20 bytes are non-printable or it is
  longer than 100 bytes.
- Legacy firmware (simple detection): a chunk is binary if its first byte
  is below 32 or it is longer than 50 bytes.

Binary chunks longer than 50 bytes are bulk transfers; shorter ones must
match the single-record size of the wire generation or they are dropped.
Everything else is text, split into trimmed non-empty lines.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from .wire import (
    BULK_THRESHOLD,
    LARGE_CHUNK_LENGTH,
    LINE_BREAKS,
    MAX_PROGRAMS,
    MIN_BINARY_LENGTH,
    MIN_COMPLEX_RECORD_LENGTH,
    NON_PRINTABLE_RATIO,
    PRINTABLE_MAX,
    PRINTABLE_MIN,
    SAMPLE_SIZE,
    SIMPLE_BINARY_FIRST_BYTE,
    STRICT_MIN_LENGTH,
    WireGeneration,
)

logger = logging.getLogger(__name__)


class FrameKind(Enum):
    TEXT = "text"
    SINGLE_RECORD = "single_record"
    BULK_TRANSFER = "bulk_transfer"


@dataclass
class Frame:
    """A classified inbound chunk."""

    kind: FrameKind
    data: bytes
    lines: list[str] = field(default_factory=list)

    def __repr__(self) -> str:
        if self.kind is FrameKind.TEXT:
            return f"Frame(kind=text, lines={self.lines!r})"
        return f"Frame(kind={self.kind.value}, data={self.data.hex(' ')})"


def _is_non_printable(byte: int) -> bool:
    if byte in LINE_BREAKS:
        return False
    return byte < PRINTABLE_MIN or byte > PRINTABLE_MAX


def looks_binary_strict(chunk: bytes) -> bool:
    """Binary test used by current firmware."""
    if len(chunk) <= STRICT_MIN_LENGTH:
        return False
    if not 0 <= chunk[0] <= MAX_PROGRAMS:
        return False
    sample = chunk[:SAMPLE_SIZE]
    non_printable = sum(1 for b in sample if _is_non_printable(b))
    return (
        non_printable / len(sample) >= NON_PRINTABLE_RATIO
        or len(chunk) > LARGE_CHUNK_LENGTH
    )


def looks_binary_simple(chunk: bytes) -> bool:
    """Binary test used by legacy firmware."""
    return chunk[0] < SIMPLE_BINARY_FIRST_BYTE or len(chunk) > BULK_THRESHOLD


def split_lines(chunk: bytes) -> list[str]:
    """Decode a text chunk into trimmed, non-empty lines."""
    text = chunk.decode("utf-8", errors="replace")
    return [line.strip() for line in text.split("\n") if line.strip()]


def classify_chunk(
    chunk: bytes,
    generation: WireGeneration = WireGeneration.CURRENT,
) -> Frame | None:
    """Classify one chunk read from the device.

    Returns:
        A ``Frame``, or ``None`` if the chunk is empty or is binary of a
        length no known record has.
    """
    chunk = bytes(chunk)
    if not chunk:
        return None

    layout = generation.layout
    if layout.strict_detection:
        binary = looks_binary_strict(chunk)
    else:
        binary = looks_binary_simple(chunk)

    if not binary:
        return Frame(kind=FrameKind.TEXT, data=chunk, lines=split_lines(chunk))

    if len(chunk) > BULK_THRESHOLD:
        return Frame(kind=FrameKind.BULK_TRANSFER, data=chunk)

    if len(chunk) < MIN_BINARY_LENGTH:
        logger.debug("Dropping %d-byte binary chunk", len(chunk))
        return None

    if len(chunk) == layout.single_record_size:
        return Frame(kind=FrameKind.SINGLE_RECORD, data=chunk)

    if layout.supports_complex and len(chunk) >= MIN_COMPLEX_RECORD_LENGTH:
        return Frame(kind=FrameKind.SINGLE_RECORD, data=chunk)

    logger.debug(
        "Dropping binary chunk of unexpected length %d: %s", len(chunk), chunk.hex(" ")
    )
    return None
