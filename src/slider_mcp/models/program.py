"""Program data models and their single-record byte layouts.

A slot on the controller holds either a loop program (move ``step_count``
steps forward and back, ``delay_ms`` between steps, until stopped) or, on
legacy firmware, a complex program made of positioned steps.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Union

from ..protocol.wire import (
    COMPLEX_HEADER,
    LOOP_RECORD,
    LOOP_RECORD_CYCLES,
    NAME_LENGTH,
    STEP,
    WireGeneration,
)


def default_name(slot: int) -> str:
    """Name shown for a slot whose stored name is blank."""
    return f"PGM{slot + 1}"


def decode_name(raw: bytes, slot: int) -> str:
    """Decode an 8-byte name field.

    NUL and space bytes are dropped, the rest is trimmed and upper-cased.
    """
    chars = bytes(b for b in raw[:NAME_LENGTH] if b not in (0x00, 0x20))
    name = chars.decode("latin-1").strip().upper()
    return name or default_name(slot)


def normalize_name(name: str, slot: int) -> str:
    """Apply the encode-then-decode name rules to a user-entered name."""
    return decode_name(encode_name(name, slot), slot)


def encode_name(name: str, slot: int) -> bytes:
    """Encode a name into the fixed 8-byte, space-padded field."""
    name = name.strip() or default_name(slot)
    limited = name[:NAME_LENGTH].upper()
    raw = limited.encode("ascii", errors="replace")[:NAME_LENGTH]
    return raw.ljust(NAME_LENGTH, b" ")


@dataclass
class Step:
    """One positioned move of a complex program."""

    position: int
    speed: int
    pause_ms: int = 0

    def to_bytes(self) -> bytes:
        return STEP.pack(self.position, self.speed, self.pause_ms)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> Step:
        position, speed, pause_ms = STEP.unpack_from(data, offset)
        return cls(position=position, speed=speed, pause_ms=pause_ms)

    def to_dict(self) -> dict:
        return {"position": self.position, "speed": self.speed, "pause": self.pause_ms}


@dataclass
class LoopProgram:
    """A loop program stored in one device slot.

    ``cycles`` is only present on legacy firmware; current firmware loops
    until stopped.
    """

    slot: int
    name: str
    step_count: int
    delay_ms: int
    cycles: int | None = None

    def to_bytes(self, generation: WireGeneration = WireGeneration.CURRENT) -> bytes:
        """Serialize to the SAVE_LOOP_PROGRAM payload of ``generation``."""
        name = encode_name(self.name, self.slot)
        try:
            if generation.layout.has_cycles:
                return LOOP_RECORD_CYCLES.pack(
                    self.slot, name, self.step_count, self.delay_ms, self.cycles or 0
                )
            return LOOP_RECORD.pack(self.slot, name, self.step_count, self.delay_ms)
        except struct.error as e:
            raise ValueError(f"Loop program does not fit its wire layout: {e}") from e

    @classmethod
    def from_bytes(
        cls, data: bytes, generation: WireGeneration = WireGeneration.CURRENT
    ) -> LoopProgram:
        """Parse a single loop record as sent by the device."""
        if generation.layout.has_cycles:
            slot, name, steps, delay, cycles = LOOP_RECORD_CYCLES.unpack_from(data)
        else:
            slot, name, steps, delay = LOOP_RECORD.unpack_from(data)
            cycles = None
        return cls(
            slot=slot,
            name=decode_name(name, slot),
            step_count=steps,
            delay_ms=delay,
            cycles=cycles,
        )

    def to_dict(self) -> dict:
        d = {"steps": self.step_count, "delay": self.delay_ms}
        if self.cycles is not None:
            d["cycles"] = self.cycles
        return d

    @classmethod
    def from_dict(cls, slot: int, name: str, data: dict) -> LoopProgram:
        return cls(
            slot=slot,
            name=name,
            step_count=int(data["steps"]),
            delay_ms=int(data["delay"]),
            cycles=data.get("cycles"),
        )


@dataclass
class ComplexProgram:
    """A multi-step program (legacy firmware only)."""

    slot: int
    name: str
    steps: list[Step] = field(default_factory=list)

    def to_bytes(self, generation: WireGeneration = WireGeneration.LEGACY) -> bytes:
        if not generation.layout.supports_complex:
            raise ValueError(
                f"Complex programs are not supported by the {generation.value} wire generation"
            )
        try:
            header = COMPLEX_HEADER.pack(
                self.slot, encode_name(self.name, self.slot), len(self.steps)
            )
            return header + b"".join(step.to_bytes() for step in self.steps)
        except struct.error as e:
            raise ValueError(f"Complex program does not fit its wire layout: {e}") from e

    @classmethod
    def from_bytes(cls, data: bytes) -> ComplexProgram:
        """Parse a single complex record.

        Raises:
            ValueError: If fewer bytes are present than the step count needs.
        """
        slot, name, count = COMPLEX_HEADER.unpack_from(data)
        needed = COMPLEX_HEADER.size + count * STEP.size
        if len(data) < needed:
            raise ValueError(
                f"Complex record declares {count} steps but has {len(data)} bytes "
                f"(need {needed})"
            )
        steps = [
            Step.from_bytes(data, COMPLEX_HEADER.size + i * STEP.size)
            for i in range(count)
        ]
        return cls(slot=slot, name=decode_name(name, slot), steps=steps)

    def to_dict(self) -> dict:
        return {"steps": [step.to_dict() for step in self.steps]}

    @classmethod
    def from_dict(cls, slot: int, name: str, data: dict) -> ComplexProgram:
        steps = [
            Step(position=int(s["position"]), speed=int(s["speed"]), pause_ms=int(s.get("pause", 0)))
            for s in data.get("steps", [])
        ]
        return cls(slot=slot, name=name, steps=steps)


ProgramRecord = Union[LoopProgram, ComplexProgram]
