"""Opcode constants and command builders.

A command is one opcode byte, optionally followed by a fixed-layout payload.
Builders only pack; range checks live in the ``check_*`` helpers, which
callers run before building a command.
"""

from __future__ import annotations

import struct
from enum import IntEnum

from ..models.program import LoopProgram
from .wire import (
    MAX_SLOT,
    MOVE_PAYLOAD,
    SLOT_PAYLOAD,
    U16_MAX,
    U32_MAX,
    WireGeneration,
)

HOME_POSITION = 0
LARGE_DELAY_MS = 10_000


class Opcode(IntEnum):
    """Command opcodes understood by the slider firmware."""

    RUN = 3
    START = 4
    STOP = 5
    SET_HOME = 8
    SAVE_LOOP_PROGRAM = 9
    GET_ALL_DATA = 13  # legacy firmware only
    DEBUG_INFO = 14
    MOVE_WITH_SPEED = 15


def build_command(opcode: Opcode, payload: bytes = b"") -> bytes:
    """Build the raw bytes for a command."""
    return bytes([int(opcode)]) + bytes(payload)


def _pack(layout: struct.Struct, *values: int) -> bytes:
    try:
        return layout.pack(*values)
    except struct.error as e:
        raise ValueError(f"Value does not fit field width: {e}") from e


# ─── RANGE CHECKS ────────────────────────────────────────────────────


def check_slot(slot: int) -> int:
    if not 0 <= slot <= MAX_SLOT:
        raise ValueError(f"Program slot must be 0-{MAX_SLOT}, got {slot}")
    return slot


def check_position(position: int) -> int:
    if not 0 <= position <= U16_MAX:
        raise ValueError(f"Position must be 0-{U16_MAX}, got {position}")
    return position


def check_speed(speed_ms: int) -> int:
    if not 1 <= speed_ms <= U32_MAX:
        raise ValueError(
            f"Speed must be between 1 and {U32_MAX:,} milliseconds, got {speed_ms}"
        )
    return speed_ms


def check_loop_program(program: LoopProgram) -> LoopProgram:
    """Validate the numeric fields of a loop program before saving it.

    Names are not checked: the encoder truncates them to 8 characters.
    """
    check_slot(program.slot)
    if not 0 <= program.step_count <= U16_MAX:
        raise ValueError(f"Step count must be 0-{U16_MAX}, got {program.step_count}")
    if not 0 <= program.delay_ms <= U32_MAX:
        raise ValueError(f"Delay must be 0-{U32_MAX} ms, got {program.delay_ms}")
    return program


def estimated_seconds_per_direction(program: LoopProgram) -> int:
    """Approximate time for one pass of a loop program."""
    return round(program.step_count * program.delay_ms / 1000)


# ─── BUILDERS ────────────────────────────────────────────────────────


def build_run(slot: int) -> bytes:
    """Build a RUN command for the program in ``slot``."""
    return build_command(Opcode.RUN, _pack(SLOT_PAYLOAD, slot))


def build_start() -> bytes:
    return build_command(Opcode.START)


def build_stop() -> bytes:
    return build_command(Opcode.STOP)


def build_set_home() -> bytes:
    """Make the current carriage position the new zero."""
    return build_command(Opcode.SET_HOME)


def build_debug_info() -> bytes:
    """Build a DEBUG_INFO request, also used as the liveness probe."""
    return build_command(Opcode.DEBUG_INFO)


def build_request_all_data() -> bytes:
    """Ask legacy firmware to send every stored program as one bulk transfer."""
    return build_command(Opcode.GET_ALL_DATA)


def build_move(position: int, speed_ms: int) -> bytes:
    """Build a MOVE_WITH_SPEED command.

    Args:
        position: Target position in steps (0 is home).
        speed_ms: Milliseconds per step.
    """
    return build_command(Opcode.MOVE_WITH_SPEED, _pack(MOVE_PAYLOAD, position, speed_ms))


def build_home(speed_ms: int) -> bytes:
    """Move back to position 0 at the given speed."""
    return build_move(HOME_POSITION, speed_ms)


def build_save_loop_program(
    program: LoopProgram,
    generation: WireGeneration = WireGeneration.CURRENT,
) -> bytes:
    """Build a SAVE_LOOP_PROGRAM command storing ``program`` in its slot."""
    return build_command(Opcode.SAVE_LOOP_PROGRAM, program.to_bytes(generation))
