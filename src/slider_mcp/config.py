"""Runtime settings, read from ``SLIDER_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .protocol.wire import WireGeneration

PROBE_INTERVAL_S = 2.0
READ_SIZE = 64
READ_TIMEOUT_MS = 1000
READ_POLL_INTERVAL_S = 0.01
DEFAULT_STORE_PATH = Path("~/.slider_mcp/programs.json")

_TRUE_VALUES = {"1", "true", "yes", "on"}


def parse_generation(value: str) -> WireGeneration | None:
    """Map a config value to a wire generation; ``auto`` means detect."""
    value = value.strip().lower()
    if value == "auto":
        return None
    try:
        return WireGeneration(value)
    except ValueError:
        valid = [g.value for g in WireGeneration] + ["auto"]
        raise ValueError(f"Unknown wire generation {value!r}. Valid: {valid}") from None


@dataclass
class SliderConfig:
    """Settings for the connection session and the MCP server."""

    probe_interval: float = PROBE_INTERVAL_S
    read_size: int = READ_SIZE
    read_timeout_ms: int = READ_TIMEOUT_MS
    read_poll_interval: float = READ_POLL_INTERVAL_S
    wire_generation: WireGeneration | None = WireGeneration.CURRENT
    store_path: Path = DEFAULT_STORE_PATH
    auto_connect: bool = True
    log_level: str = "INFO"

    @property
    def frame_generation(self) -> WireGeneration:
        """Generation whose detection rules classify inbound chunks."""
        return self.wire_generation or WireGeneration.CURRENT

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> SliderConfig:
        """Build a config from environment variables, using defaults for unset ones."""
        env = os.environ if environ is None else environ
        config = cls()
        if "SLIDER_PROBE_INTERVAL" in env:
            config.probe_interval = float(env["SLIDER_PROBE_INTERVAL"])
        if "SLIDER_READ_SIZE" in env:
            config.read_size = int(env["SLIDER_READ_SIZE"])
        if "SLIDER_READ_TIMEOUT_MS" in env:
            config.read_timeout_ms = int(env["SLIDER_READ_TIMEOUT_MS"])
        if "SLIDER_WIRE_GENERATION" in env:
            config.wire_generation = parse_generation(env["SLIDER_WIRE_GENERATION"])
        if "SLIDER_STORE_PATH" in env:
            config.store_path = Path(env["SLIDER_STORE_PATH"])
        if "SLIDER_AUTO_CONNECT" in env:
            config.auto_connect = env["SLIDER_AUTO_CONNECT"].strip().lower() in _TRUE_VALUES
        if "SLIDER_LOG_LEVEL" in env:
            config.log_level = env["SLIDER_LOG_LEVEL"].strip().upper()
        return config
