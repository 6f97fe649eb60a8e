"""Parsing of text lines sent by the firmware."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..models.program import LoopProgram, normalize_name
from .wire import MAX_SLOT

logger = logging.getLogger(__name__)

PROGRAM_COUNT_PREFIX = "PROGRAMS:"
PROGRAM_PREFIX = "PROG:"

# Substrings the firmware prints while running programs.
EVENT_MARKERS = (
    "Starting loop program",
    "Cycle",
    "Loop program completed",
    "RUN command received",
    "Program type",
    "Running loop program",
    "ERROR",
    "WARNING",
    "Total time per direction",
)


@dataclass
class ProgramCount:
    """``PROGRAMS:<count>`` announcement preceding text program records."""

    count: int


@dataclass
class DeviceMessage:
    """Any other line printed by the firmware."""

    text: str
    is_event: bool = False


def parse_program_count(line: str) -> ProgramCount | None:
    try:
        return ProgramCount(count=int(line[len(PROGRAM_COUNT_PREFIX):].strip()))
    except ValueError:
        logger.debug("Malformed program count line: %r", line)
        return None


def parse_program_line(line: str) -> LoopProgram | None:
    """Parse ``PROG:<id>,<name>,<steps>,<delayMs>``.

    Extra fields after the delay are ignored. The name is cleaned the same
    way as the binary name field; lines for slots outside 0-9 are dropped.
    """
    parts = line[len(PROGRAM_PREFIX):].split(",")
    if len(parts) < 4:
        logger.debug("Malformed program line: %r", line)
        return None
    try:
        slot = int(parts[0])
        steps = int(parts[2])
        delay_ms = int(parts[3])
    except ValueError:
        logger.debug("Malformed program line: %r", line)
        return None
    if not 0 <= slot <= MAX_SLOT:
        logger.debug("Program line for unknown slot %d: %r", slot, line)
        return None
    name = normalize_name(parts[1], slot)
    return LoopProgram(slot=slot, name=name, step_count=steps, delay_ms=delay_ms)


def parse_line(line: str):
    """Parse one trimmed text line.

    Returns a ``ProgramCount``, a ``LoopProgram``, a ``DeviceMessage``, or
    ``None`` for a structured line that could not be parsed.
    """
    if line.startswith(PROGRAM_COUNT_PREFIX):
        return parse_program_count(line)
    if line.startswith(PROGRAM_PREFIX):
        return parse_program_line(line)
    is_event = any(marker in line for marker in EVENT_MARKERS)
    return DeviceMessage(text=line, is_event=is_event)
