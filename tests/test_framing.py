"""Tests for inbound chunk classification."""

import struct

from slider_mcp.protocol.framing import (
    FrameKind,
    classify_chunk,
    looks_binary_simple,
    looks_binary_strict,
    split_lines,
)
from slider_mcp.protocol.wire import WireGeneration


def _loop_record(slot, name, steps, delay):
    return bytes([slot]) + name.ljust(8, b"\x00") + struct.pack("<HI", steps, delay)


def test_empty_chunk_is_ignored():
    assert classify_chunk(b"") is None
    assert classify_chunk(b"", WireGeneration.LEGACY) is None


def test_short_printable_chunk_is_text():
    """Ten printable bytes are text."""
    frame = classify_chunk(b"Hello Ardu")
    assert frame.kind is FrameKind.TEXT
    assert frame.lines == ["Hello Ardu"]


def test_large_chunk_with_count_byte_is_bulk():
    """200 bytes starting with a count of 2 are a bulk transfer."""
    chunk = bytes([2]) + bytes(199)
    frame = classify_chunk(chunk)
    assert frame.kind is FrameKind.BULK_TRANSFER
    assert frame.data == chunk


def test_text_lines_are_trimmed_and_split():
    chunk = b"PROGRAMS:2\r\nPROG:0,PAN,100,50\r\n\r\n"
    frame = classify_chunk(chunk)
    assert frame.kind is FrameKind.TEXT
    assert frame.lines == ["PROGRAMS:2", "PROG:0,PAN,100,50"]


def test_long_text_starting_with_control_byte_is_text():
    """Strict detection needs mostly non-printable bytes below 100 bytes."""
    chunk = b"\x01" + b"Loop program completed after 3 cycles, ok"
    assert len(chunk) <= 100
    assert not looks_binary_strict(chunk)
    assert classify_chunk(chunk).kind is FrameKind.TEXT


def test_strict_rejects_first_byte_above_max_programs():
    chunk = bytes([11]) + bytes(120)
    assert not looks_binary_strict(chunk)


def test_strict_needs_more_than_twenty_bytes():
    assert not looks_binary_strict(bytes(20))
    assert looks_binary_strict(bytes(21))


def test_strict_lone_loop_record_is_not_binary():
    """A 15-byte record is too short for strict binary detection."""
    record = _loop_record(0, b"TESTPGM", 1000, 2500)
    assert len(record) == 15
    assert classify_chunk(record).kind is FrameKind.TEXT


def test_strict_binary_of_unknown_length_is_dropped():
    chunk = bytes([0]) + bytes(29)
    assert looks_binary_strict(chunk)
    assert classify_chunk(chunk) is None


def test_simple_detection_first_byte():
    assert looks_binary_simple(b"\x00abc")
    assert not looks_binary_simple(b"abc")
    assert looks_binary_simple(b"a" * 51)


def test_legacy_single_record():
    record = bytes([0]) + b"PAN     " + struct.pack("<HIB", 100, 50, 3) + b"\n"
    assert len(record) == 17
    frame = classify_chunk(record, WireGeneration.LEGACY)
    assert frame.kind is FrameKind.SINGLE_RECORD


def test_legacy_complex_record():
    record = bytes([1]) + b"DOLLY   " + bytes([1]) + struct.pack("<HIH", 10, 5, 0) + b"\n"
    assert len(record) == 19
    frame = classify_chunk(record, WireGeneration.LEGACY)
    assert frame.kind is FrameKind.SINGLE_RECORD


def test_legacy_text():
    frame = classify_chunk(b"Ready\r\n", WireGeneration.LEGACY)
    assert frame.kind is FrameKind.TEXT
    assert frame.lines == ["Ready"]


def test_legacy_tiny_binary_is_dropped():
    assert classify_chunk(b"\x05", WireGeneration.LEGACY) is None
    assert classify_chunk(b"\x01abcd", WireGeneration.LEGACY) is None


def test_legacy_bulk():
    chunk = bytes([3]) + b"x" * 60
    frame = classify_chunk(chunk, WireGeneration.LEGACY)
    assert frame.kind is FrameKind.BULK_TRANSFER


def test_split_lines_replaces_invalid_utf8():
    assert split_lines(b"ok\xff\n") == ["ok\ufffd"]


def test_strict_ratio_boundary_is_inclusive():
    """6 of 20 sampled bytes non-printable is enough for binary; 5 is not."""
    six = bytes([2, 1, 1, 1, 1, 1]) + b"A" * 54
    five = bytes([2, 1, 1, 1, 1]) + b"A" * 55
    assert looks_binary_strict(six)
    assert classify_chunk(six).kind is FrameKind.BULK_TRANSFER
    assert not looks_binary_strict(five)
    assert classify_chunk(five).kind is FrameKind.TEXT


def test_strict_counts_high_bytes_as_non_printable():
    chunk = bytes([1]) + bytes([0xC8] * 5) + b"A" * 54
    assert looks_binary_strict(chunk)


def test_strict_line_breaks_are_printable():
    chunk = bytes([1]) + b"\r\n" * 5 + b"A" * 49
    assert not looks_binary_strict(chunk)
