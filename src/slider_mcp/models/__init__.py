"""Data models for slider programs and the host-side program cache."""

from .program import ComplexProgram, LoopProgram, ProgramRecord, Step
from .store import ProgramStore
