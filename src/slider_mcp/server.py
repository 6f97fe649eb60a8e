"""MCP server entry point for the motorized slider controller.

Exposes tools and resources via the Model Context Protocol using the
official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import SliderConfig
from .errors import TransportError
from .models.program import LoopProgram, normalize_name
from .models.store import ProgramStore
from .protocol.commands import (
    LARGE_DELAY_MS,
    build_debug_info,
    build_home,
    build_move,
    build_request_all_data,
    build_run,
    build_save_loop_program,
    build_set_home,
    build_start,
    build_stop,
    check_loop_program,
    check_position,
    check_slot,
    check_speed,
    estimated_seconds_per_direction,
)
from .session import ConnectionSession

logger = logging.getLogger(__name__)

DEVICE_LOG_LINES = 200

_config = SliderConfig.from_env()
_device_log: deque[str] = deque(maxlen=DEVICE_LOG_LINES)
_store = ProgramStore(_config.store_path)
_session = ConnectionSession(store=_store, config=_config, line_sink=_device_log.append)


@asynccontextmanager
async def _lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Load the program cache and reconnect to a known device on startup."""
    _store.load()
    if _config.auto_connect:
        await _session.auto_connect()
    try:
        yield
    finally:
        await _session.disconnect()


mcp = FastMCP(
    "slider-controller",
    instructions="MCP server for a WebUSB motorized camera slider",
    lifespan=_lifespan,
)


def _not_connected() -> dict[str, Any]:
    return {"error": "Not connected to slider. Use the 'connect' tool first."}


async def _send(data: bytes, **result: Any) -> dict[str, Any]:
    if not _session.connected:
        return _not_connected()
    if not await _session.send(data):
        return {"error": "Send failed", "reason": _session.last_disconnect_reason}
    return {"sent": True, **result}


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
async def connect() -> dict[str, Any]:
    """Open the USB connection to the slider controller.

    Picks the first attached Arduino-compatible board, claims its WebUSB
    (or CDC) interface and starts listening for log lines and program data.
    """
    if _session.connected:
        return {
            "connected": True,
            "message": "Already connected",
            "device": _session.device_info.to_dict(),
        }
    try:
        info = await _session.connect()
    except TransportError as e:
        return {"connected": False, "error": str(e)}
    return {"connected": True, "device": info.to_dict()}


@mcp.tool()
async def disconnect() -> dict[str, bool]:
    """Close the USB connection to the slider."""
    await _session.disconnect()
    return {"disconnected": True}


@mcp.tool()
def get_status() -> dict[str, Any]:
    """Connection state, device identity and cached program count."""
    info = _session.device_info
    return {
        "connected": _session.connected,
        "state": _session.state.value,
        "device": info.to_dict() if info else None,
        "last_disconnect_reason": _session.last_disconnect_reason,
        "program_count": len(_store),
    }


# ─── MOTION TOOLS ─────────────────────────────────────────────────────

@mcp.tool()
async def start() -> dict[str, Any]:
    """Resume program execution on the slider."""
    return await _send(build_start())


@mcp.tool()
async def stop() -> dict[str, Any]:
    """Stop the running program."""
    return await _send(build_stop())


@mcp.tool()
async def set_home() -> dict[str, Any]:
    """Make the carriage's current position the new home (position 0)."""
    return await _send(build_set_home())


@mcp.tool()
async def move_to(position: int, speed_ms: int | None = None) -> dict[str, Any]:
    """Move the carriage to an absolute position.

    Args:
        position: Target position in steps (0-65535, 0 is home).
        speed_ms: Milliseconds per step (defaults to the last manual speed).
    """
    speed_ms = speed_ms if speed_ms is not None else _store.manual_speed
    if speed_ms is None:
        return {"error": "speed_ms is required"}
    try:
        check_position(position)
        check_speed(speed_ms)
    except ValueError as e:
        return {"error": str(e)}
    _remember_speed(speed_ms)
    return await _send(build_move(position, speed_ms), position=position, speed_ms=speed_ms)


@mcp.tool()
async def go_home(speed_ms: int | None = None) -> dict[str, Any]:
    """Move the carriage back to position 0.

    Args:
        speed_ms: Milliseconds per step (defaults to the last manual speed).
    """
    speed_ms = speed_ms if speed_ms is not None else _store.manual_speed
    if speed_ms is None:
        return {"error": "speed_ms is required"}
    try:
        check_speed(speed_ms)
    except ValueError as e:
        return {"error": str(e)}
    _remember_speed(speed_ms)
    return await _send(build_home(speed_ms), position=0, speed_ms=speed_ms)


def _remember_speed(speed_ms: int) -> None:
    if _store.manual_speed != speed_ms:
        _store.manual_speed = speed_ms
        _store.save()


# ─── PROGRAM TOOLS ────────────────────────────────────────────────────

@mcp.tool()
async def run_program(slot: int) -> dict[str, Any]:
    """Run the program stored in a slot.

    Args:
        slot: Program slot (0-9).
    """
    try:
        check_slot(slot)
    except ValueError as e:
        return {"error": str(e)}
    return await _send(build_run(slot), slot=slot, name=_store.name_for(slot))


@mcp.tool()
async def save_loop_program(
    slot: int,
    steps: int,
    delay_ms: int,
    name: str = "",
) -> dict[str, Any]:
    """Store a loop program on the device.

    The slider moves ``steps`` forward and back with ``delay_ms`` between
    steps until stopped.

    Args:
        slot: Program slot (0-9).
        steps: Steps per direction (0-65535).
        delay_ms: Delay between steps in milliseconds.
        name: Up to 8 characters; defaults to PGM<slot+1>.
    """
    program = LoopProgram(slot=slot, name=name, step_count=steps, delay_ms=delay_ms)
    try:
        check_loop_program(program)
    except ValueError as e:
        return {"error": str(e)}
    program.name = normalize_name(name, slot)

    result = await _send(
        build_save_loop_program(program, _config.frame_generation),
        slot=slot,
        name=program.name,
    )
    if "error" in result:
        return result

    _store.put(program)
    _store.save()
    if delay_ms > LARGE_DELAY_MS:
        seconds = estimated_seconds_per_direction(program)
        result["warning"] = (
            f"Large delay: approximately {seconds} seconds "
            f"({round(seconds / 60)} minutes) per direction. "
            "The program runs until manually stopped."
        )
    return result


@mcp.tool()
def list_programs() -> dict[str, Any]:
    """List the programs known to be stored on the device."""
    programs = []
    for record in _store.records():
        entry = {"slot": record.slot, "name": record.name}
        entry.update(record.to_dict())
        programs.append(entry)
    return {"programs": programs}


@mcp.tool()
def get_program(slot: int) -> dict[str, Any]:
    """Read a cached program.

    Args:
        slot: Program slot (0-9).
    """
    try:
        check_slot(slot)
    except ValueError as e:
        return {"error": str(e)}
    record = _store.get(slot)
    if record is None:
        return {"slot": slot, "name": _store.name_for(slot), "empty": True}
    result = {"slot": slot, "name": record.name, "empty": False}
    result.update(record.to_dict())
    return result


@mcp.tool()
async def request_all_programs() -> dict[str, Any]:
    """Ask legacy firmware to send every stored program in one transfer.

    Current firmware sends its programs automatically after connecting.
    """
    return await _send(build_request_all_data())


@mcp.tool()
async def request_debug_info() -> dict[str, Any]:
    """Ask the firmware to print its debug information to the device log."""
    return await _send(build_debug_info())


@mcp.tool()
def get_device_log(limit: int = 50) -> dict[str, Any]:
    """Return the most recent lines printed by the device.

    Args:
        limit: Maximum number of lines (most recent last).
    """
    lines = list(_device_log)[-limit:] if limit > 0 else []
    return {"lines": lines}


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("slider://device/status")
def resource_device_status() -> str:
    """Connection state and device identity."""
    return json.dumps(get_status())


@mcp.resource("slider://programs/list")
def resource_programs_list() -> str:
    """Cached programs by slot."""
    return json.dumps(list_programs())


@mcp.resource("slider://device/log")
def resource_device_log() -> str:
    """Recent device output."""
    return json.dumps({"lines": list(_device_log)})


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=_config.log_level)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
