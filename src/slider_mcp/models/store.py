"""Host-side program cache, persisted as a JSON file.

File layout::

    {
      "names": {"0": "PAN", "3": "TIMELAPS"},
      "loopPrograms": {"0": {"steps": 1000, "delay": 2500}},
      "complexPrograms": {"3": {"steps": [{"position": 10, "speed": 5, "pause": 0}]}},
      "manualSpeed": 1000
    }
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from .program import ComplexProgram, LoopProgram, ProgramRecord, default_name

logger = logging.getLogger(__name__)


class ProgramStore:
    """Programs known to be stored on the device, keyed by slot."""

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path).expanduser() if path is not None else None
        self.names: dict[int, str] = {}
        self.loop_programs: dict[int, LoopProgram] = {}
        self.complex_programs: dict[int, ComplexProgram] = {}
        self.manual_speed: int | None = None

    @property
    def path(self) -> Path | None:
        return self._path

    def __len__(self) -> int:
        return len(self.loop_programs) + len(self.complex_programs)

    def clear(self) -> None:
        """Forget every program and name (the manual speed is kept)."""
        self.names.clear()
        self.loop_programs.clear()
        self.complex_programs.clear()

    def put(self, record: ProgramRecord) -> None:
        """Store a record, replacing whatever the slot held before."""
        self.names[record.slot] = record.name
        if isinstance(record, LoopProgram):
            self.complex_programs.pop(record.slot, None)
            self.loop_programs[record.slot] = record
        else:
            self.loop_programs.pop(record.slot, None)
            self.complex_programs[record.slot] = record

    def replace(self, records: Iterable[ProgramRecord]) -> None:
        """Replace the whole cache with ``records``."""
        self.clear()
        for record in records:
            self.put(record)

    def get(self, slot: int) -> ProgramRecord | None:
        return self.loop_programs.get(slot) or self.complex_programs.get(slot)

    def name_for(self, slot: int) -> str:
        return self.names.get(slot) or default_name(slot)

    def records(self) -> list[ProgramRecord]:
        """All stored records ordered by slot."""
        slots = sorted(set(self.loop_programs) | set(self.complex_programs))
        return [self.get(slot) for slot in slots]

    def to_dict(self) -> dict:
        data: dict = {
            "names": {str(slot): name for slot, name in sorted(self.names.items())},
            "loopPrograms": {
                str(slot): p.to_dict() for slot, p in sorted(self.loop_programs.items())
            },
            "complexPrograms": {
                str(slot): p.to_dict() for slot, p in sorted(self.complex_programs.items())
            },
        }
        if self.manual_speed is not None:
            data["manualSpeed"] = self.manual_speed
        return data

    def load_dict(self, data: dict) -> None:
        self.clear()
        names = {int(slot): str(name) for slot, name in data.get("names", {}).items()}
        self.names.update(names)
        for slot, entry in data.get("loopPrograms", {}).items():
            slot = int(slot)
            self.loop_programs[slot] = LoopProgram.from_dict(slot, self.name_for(slot), entry)
        for slot, entry in data.get("complexPrograms", {}).items():
            slot = int(slot)
            self.complex_programs[slot] = ComplexProgram.from_dict(
                slot, self.name_for(slot), entry
            )
        speed = data.get("manualSpeed")
        self.manual_speed = int(speed) if speed is not None else None

    def load(self) -> None:
        """Read the cache file, starting empty if it is missing or corrupt."""
        if self._path is None or not self._path.exists():
            return
        try:
            self.load_dict(json.loads(self._path.read_text()))
        except (OSError, ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning("Ignoring unreadable program cache %s: %s", self._path, e)
            self.clear()
            return
        logger.info("Loaded %d cached programs from %s", len(self), self._path)

    def save(self) -> None:
        """Write the cache file. Failures are logged, not raised."""
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(self.to_dict(), indent=2))
        except OSError as e:
            logger.warning("Could not write program cache %s: %s", self._path, e)
