"""Program record codec: single records, bulk transfers, save payloads.

Bulk transfer layout::

    +-------+------+------+----------+----------------------+------
    | Count | Slot | Type |   Name   |  Body                | next
    | u8    | u8   | u8   | 8 bytes  |  depends on Type     | record
    +-------+------+------+----------+----------------------+------

    Type 0 (loop):    steps u16, delay_ms u32 [, cycles u8 on legacy]
    Type 1 (complex): step count u8, then count x (position u16,
                      speed u32, pause u16)   -- legacy only

Record sizes are only known after their header has been read, so a single
bad field desynchronises everything after it. Decoding therefore stops at
the first problem and returns nothing from that transfer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..errors import MalformedBulkTransferError
from ..models.program import (
    ComplexProgram,
    LoopProgram,
    ProgramRecord,
    Step,
    decode_name,
)
from .wire import (
    BULK_HEADER,
    CANDIDATE_GENERATIONS,
    COMPLEX_HEADER,
    LINE_BREAKS,
    MAX_PROGRAMS,
    MIN_COMPLEX_RECORD_LENGTH,
    STEP,
    ProgramType,
    WireGeneration,
)

logger = logging.getLogger(__name__)


@dataclass
class BulkTransfer:
    """All programs decoded from one bulk chunk."""

    count: int
    records: list[ProgramRecord] = field(default_factory=list)
    generation: WireGeneration = WireGeneration.CURRENT


def decode_single_record(
    data: bytes,
    generation: WireGeneration = WireGeneration.CURRENT,
) -> ProgramRecord | None:
    """Decode a single program record.

    Returns:
        The decoded record, or ``None`` if the length matches no record
        layout of ``generation``.
    """
    layout = generation.layout
    if len(data) == layout.single_record_size:
        return LoopProgram.from_bytes(data, generation)

    if layout.supports_complex and len(data) >= MIN_COMPLEX_RECORD_LENGTH:
        body = data[:-1] if data[-1] in LINE_BREAKS else data
        count = body[COMPLEX_HEADER.size - 1]
        if len(body) == COMPLEX_HEADER.size + count * STEP.size:
            return ComplexProgram.from_bytes(body)

    logger.debug(
        "Ignoring %d-byte record (no %s layout matches)", len(data), generation.value
    )
    return None


def read_bulk_count(data: bytes) -> int:
    """Read and validate the program count at the start of a bulk transfer.

    Raises:
        MalformedBulkTransferError: If the chunk is empty or the count
            exceeds the device's slot table.
    """
    if len(data) < 1:
        raise MalformedBulkTransferError("Bulk data too small", offset=0)
    count = data[0]
    if count > MAX_PROGRAMS:
        raise MalformedBulkTransferError(
            f"Invalid program count {count}, aborting parse", offset=0
        )
    return count


def _require(data: bytes, offset: int, size: int, what: str) -> None:
    if offset + size > len(data):
        raise MalformedBulkTransferError(
            f"Not enough data for {what}: need {size} bytes at offset {offset}, "
            f"have {max(len(data) - offset, 0)}",
            offset=offset,
        )


def _decode_bulk(data: bytes, generation: WireGeneration) -> tuple[BulkTransfer, int]:
    layout = generation.layout
    count = read_bulk_count(data)
    records: list[ProgramRecord] = []
    offset = 1

    for index in range(count):
        _require(data, offset, BULK_HEADER.size, f"program {index}")
        slot, program_type, raw_name = BULK_HEADER.unpack_from(data, offset)
        name = decode_name(raw_name, slot)
        offset += BULK_HEADER.size

        if program_type == ProgramType.LOOP:
            body = layout.loop_body
            _require(data, offset, body.size, f"loop program {slot}")
            fields = body.unpack_from(data, offset)
            records.append(
                LoopProgram(
                    slot=slot,
                    name=name,
                    step_count=fields[0],
                    delay_ms=fields[1],
                    cycles=fields[2] if layout.has_cycles else None,
                )
            )
            offset += body.size
        elif program_type == ProgramType.COMPLEX and layout.supports_complex:
            _require(data, offset, 1, f"step count of complex program {slot}")
            step_count = data[offset]
            offset += 1
            _require(data, offset, step_count * STEP.size, f"steps of complex program {slot}")
            steps = [
                Step.from_bytes(data, offset + i * STEP.size) for i in range(step_count)
            ]
            records.append(ComplexProgram(slot=slot, name=name, steps=steps))
            offset += step_count * STEP.size
        else:
            raise MalformedBulkTransferError(
                f"Unsupported program type {program_type} for {name!r}; "
                f"cannot continue parsing",
                offset=offset - BULK_HEADER.size,
            )

    return BulkTransfer(count=count, records=records, generation=generation), offset


def _only_line_breaks(tail: bytes) -> bool:
    return all(b in LINE_BREAKS for b in tail)


def decode_bulk_transfer(
    data: bytes,
    generation: WireGeneration | None = None,
) -> BulkTransfer:
    """Decode a bulk transfer of program records.

    Args:
        data: The whole bulk chunk, starting with the count byte.
        generation: Wire generation to decode with. If ``None``, each known
            generation is tried and the first one that consumes the whole
            chunk (apart from a trailing line break) is used.

    Raises:
        MalformedBulkTransferError: If the count is out of range, a field is
            truncated, or a program type is unknown. No records are returned
            from a transfer that fails part way.
    """
    data = bytes(data)
    if generation is not None:
        transfer, _ = _decode_bulk(data, generation)
        return transfer

    read_bulk_count(data)
    first_error: MalformedBulkTransferError | None = None
    for candidate in CANDIDATE_GENERATIONS:
        try:
            transfer, end = _decode_bulk(data, candidate)
        except MalformedBulkTransferError as e:
            logger.debug("Bulk data is not %s: %s", candidate.value, e)
            first_error = first_error or e
            continue
        if _only_line_breaks(data[end:]):
            return transfer
        logger.debug(
            "Bulk data is not %s: %d unread bytes", candidate.value, len(data) - end
        )

    if first_error is not None:
        raise first_error
    raise MalformedBulkTransferError(
        "Bulk data matches no known wire generation", offset=0
    )


def encode_record(
    record: ProgramRecord,
    generation: WireGeneration = WireGeneration.CURRENT,
) -> bytes:
    """Encode a record into its save-command payload.

    Raises:
        ValueError: If the record cannot be represented in ``generation``.
    """
    return record.to_bytes(generation)
