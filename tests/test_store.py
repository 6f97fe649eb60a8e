"""Tests for the host-side program cache."""

import json

from slider_mcp.models.program import ComplexProgram, LoopProgram, Step
from slider_mcp.models.store import ProgramStore


def _loop(slot, name="PAN"):
    return LoopProgram(slot=slot, name=name, step_count=100, delay_ms=50)


def test_put_replaces_other_program_kind():
    store = ProgramStore()
    store.put(ComplexProgram(slot=2, name="ARC", steps=[Step(1, 2, 3)]))
    store.put(_loop(2, "PAN"))
    assert len(store) == 1
    assert isinstance(store.get(2), LoopProgram)
    assert store.name_for(2) == "PAN"


def test_name_for_unknown_slot_is_default():
    assert ProgramStore().name_for(7) == "PGM8"


def test_records_are_sorted_by_slot():
    store = ProgramStore()
    store.replace([_loop(5), _loop(1), ComplexProgram(slot=3, name="ARC")])
    assert [r.slot for r in store.records()] == [1, 3, 5]


def test_clear_keeps_manual_speed():
    store = ProgramStore()
    store.put(_loop(0))
    store.manual_speed = 1200
    store.clear()
    assert len(store) == 0
    assert store.names == {}
    assert store.manual_speed == 1200


def test_save_and_load(tmp_path):
    path = tmp_path / "cache" / "programs.json"
    store = ProgramStore(path)
    store.put(_loop(0, "PAN"))
    store.put(ComplexProgram(slot=4, name="ARC", steps=[Step(10, 5, 0)]))
    store.manual_speed = 800
    store.save()

    data = json.loads(path.read_text())
    assert data["names"] == {"0": "PAN", "4": "ARC"}
    assert data["loopPrograms"]["0"] == {"steps": 100, "delay": 50}
    assert data["manualSpeed"] == 800

    loaded = ProgramStore(path)
    loaded.load()
    assert loaded.get(0) == _loop(0, "PAN")
    assert loaded.get(4) == ComplexProgram(slot=4, name="ARC", steps=[Step(10, 5, 0)])
    assert loaded.manual_speed == 800


def test_load_missing_file_is_empty(tmp_path):
    store = ProgramStore(tmp_path / "missing.json")
    store.load()
    assert len(store) == 0


def test_load_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "programs.json"
    path.write_text("{not json")
    store = ProgramStore(path)
    store.put(_loop(1))
    store.load()
    assert len(store) == 0


def test_store_without_path_does_not_save():
    store = ProgramStore()
    store.put(_loop(0))
    store.save()
    assert store.path is None
