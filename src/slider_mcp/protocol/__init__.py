"""Protocol layer: wire tables, chunk classification, command builders, record codec."""

from .wire import ProgramType, WireGeneration
from .framing import Frame, FrameKind, classify_chunk
