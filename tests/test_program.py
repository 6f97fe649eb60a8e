"""Tests for program name rules and dict conversion."""

from slider_mcp.models.program import (
    ComplexProgram,
    LoopProgram,
    Step,
    decode_name,
    default_name,
    encode_name,
    normalize_name,
)


def test_default_name_is_one_based():
    assert default_name(0) == "PGM1"
    assert default_name(9) == "PGM10"


def test_decode_name_drops_nul_and_space():
    assert decode_name(b"pan\x00\x00\x00\x00\x00", 0) == "PAN"
    assert decode_name(b"A B C   ", 0) == "ABC"


def test_decode_blank_name_falls_back_to_default():
    assert decode_name(b"        ", 2) == "PGM3"
    assert decode_name(bytes(8), 5) == "PGM6"


def test_encode_name_pads_with_spaces():
    assert encode_name("pan", 0) == b"PAN     "


def test_encode_name_truncates_to_eight():
    assert encode_name("timelapse", 0) == b"TIMELAPS"


def test_encode_blank_name_uses_default():
    assert encode_name("   ", 4) == b"PGM5    "


def test_normalize_name_matches_device_rules():
    """The name the device echoes back has its inner spaces removed."""
    assert normalize_name(" my pan ", 0) == "MYPAN"
    assert normalize_name("", 1) == "PGM2"


def test_loop_program_dict():
    program = LoopProgram(slot=1, name="PAN", step_count=10, delay_ms=20)
    assert program.to_dict() == {"steps": 10, "delay": 20}
    assert LoopProgram.from_dict(1, "PAN", program.to_dict()) == program


def test_loop_program_dict_keeps_cycles():
    program = LoopProgram(slot=1, name="PAN", step_count=10, delay_ms=20, cycles=4)
    assert program.to_dict()["cycles"] == 4
    assert LoopProgram.from_dict(1, "PAN", program.to_dict()).cycles == 4


def test_complex_program_dict():
    program = ComplexProgram(slot=3, name="ARC", steps=[Step(10, 5, 250)])
    data = program.to_dict()
    assert data == {"steps": [{"position": 10, "speed": 5, "pause": 250}]}
    assert ComplexProgram.from_dict(3, "ARC", data) == program
