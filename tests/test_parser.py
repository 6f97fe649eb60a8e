"""Tests for text line parsing."""

from slider_mcp.models.program import LoopProgram
from slider_mcp.protocol.parser import DeviceMessage, ProgramCount, parse_line


def test_program_count_line():
    assert parse_line("PROGRAMS:3") == ProgramCount(count=3)
    assert parse_line("PROGRAMS: 0") == ProgramCount(count=0)


def test_malformed_program_count_is_ignored():
    assert parse_line("PROGRAMS:x") is None


def test_program_line():
    assert parse_line("PROG:2,pan,1000,250") == LoopProgram(
        slot=2, name="PAN", step_count=1000, delay_ms=250
    )


def test_program_line_extra_fields_ignored():
    assert parse_line("PROG:2,PAN,1000,250,9").delay_ms == 250


def test_program_line_name_cleaned_like_binary_field():
    assert parse_line("PROG:0,my pan,1,2").name == "MYPAN"
    assert parse_line("PROG:0,timelapse1,1,2").name == "TIMELAPS"


def test_program_line_for_unknown_slot_is_ignored():
    assert parse_line("PROG:42,PAN,1,2") is None
    assert parse_line("PROG:-1,PAN,1,2") is None


def test_program_line_blank_name_uses_default():
    assert parse_line("PROG:1,,10,20").name == "PGM2"


def test_malformed_program_lines_are_ignored():
    assert parse_line("PROG:1,PAN") is None
    assert parse_line("PROG:1,PAN,abc,2") is None


def test_event_lines():
    message = parse_line("Starting loop program 1")
    assert message == DeviceMessage(text="Starting loop program 1", is_event=True)
    assert parse_line("ERROR: limit switch").is_event


def test_plain_log_line():
    assert parse_line("Debug: free RAM 1024") == DeviceMessage(
        text="Debug: free RAM 1024", is_event=False
    )
