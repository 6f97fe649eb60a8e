"""Wire format tables: fixed binary layouts, sizes and detection thresholds.

All numeric fields are little-endian. Record layouts::

    Single loop record / save payload (current generation, 15 bytes)
    +------+----------+------------+----------+
    | Slot |   Name   | Step count | Delay ms |
    | u8   | 8 bytes  | u16        | u32      |
    +------+----------+------------+----------+

    Bulk transfer
    +-------+----------------------------------------------+-----
    | Count | Slot u8 | Type u8 | Name 8 B | body (by type) | ...
    +-------+----------------------------------------------+-----

The legacy generation appends a one-byte cycle count to every loop record and
also carries complex (multi-step) programs.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum, IntEnum

NAME_LENGTH = 8
MAX_PROGRAMS = 10
MAX_SLOT = MAX_PROGRAMS - 1

# Frame detection thresholds. The peer sends no header, so these numbers are
# part of the protocol.
BULK_THRESHOLD = 50
STRICT_MIN_LENGTH = 20
SAMPLE_SIZE = 20
NON_PRINTABLE_RATIO = 0.3
LARGE_CHUNK_LENGTH = 100
SIMPLE_BINARY_FIRST_BYTE = 32
MIN_BINARY_LENGTH = 2
MIN_COMPLEX_RECORD_LENGTH = 11

PRINTABLE_MIN = 32
PRINTABLE_MAX = 126
LINE_BREAKS = (0x0A, 0x0D)

LOOP_RECORD = struct.Struct("<B8sHI")          # slot, name, steps, delay
LOOP_RECORD_CYCLES = struct.Struct("<B8sHIB")  # + cycles
BULK_HEADER = struct.Struct("<BB8s")           # slot, type, name
LOOP_BODY = struct.Struct("<HI")
LOOP_BODY_CYCLES = struct.Struct("<HIB")
COMPLEX_HEADER = struct.Struct("<B8sB")        # slot, name, step count
STEP = struct.Struct("<HIH")                   # position, speed, pause
MOVE_PAYLOAD = struct.Struct("<HI")            # position, speed ms/step
SLOT_PAYLOAD = struct.Struct("<B")

U16_MAX = 0xFFFF
U32_MAX = 0xFFFFFFFF


class ProgramType(IntEnum):
    """Program type byte in bulk transfers."""

    LOOP = 0
    COMPLEX = 1


@dataclass(frozen=True)
class WireLayout:
    """Field sizes and detection rules of one wire generation."""

    strict_detection: bool
    single_record_size: int
    loop_body: struct.Struct
    has_cycles: bool
    supports_complex: bool


class WireGeneration(Enum):
    """Known generations of the binary record layout."""

    CURRENT = "current"
    LEGACY = "legacy"

    @property
    def layout(self) -> WireLayout:
        return _LAYOUTS[self]


_LAYOUTS: dict[WireGeneration, WireLayout] = {
    WireGeneration.CURRENT: WireLayout(
        strict_detection=True,
        single_record_size=LOOP_RECORD.size,
        loop_body=LOOP_BODY,
        has_cycles=False,
        supports_complex=False,
    ),
    # Single records were sent with Serial.println, hence the extra byte.
    WireGeneration.LEGACY: WireLayout(
        strict_detection=False,
        single_record_size=LOOP_RECORD_CYCLES.size + 1,
        loop_body=LOOP_BODY_CYCLES,
        has_cycles=True,
        supports_complex=True,
    ),
}

# Order in which generations are tried when none is configured.
CANDIDATE_GENERATIONS = (WireGeneration.CURRENT, WireGeneration.LEGACY)
