"""Copier headers that some dumps carry in front of the actual ROM data."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ROMHeader:
    name: str
    header_offset_bytes: int
    header_value: str
    data_offset_bytes: int
    headered_extension: str
    headerless_extension: str = ""

    def __post_init__(self):
        if not self.headerless_extension:
            object.__setattr__(self, "headerless_extension", self.headered_extension)

    @property
    def header_length_bytes(self) -> int:
        return len(self.header_value) // 2

    def matches(self, data: bytes) -> bool:
        """True when ``data`` (read from the start of a file) carries this header."""
        start = self.header_offset_bytes
        end = start + self.header_length_bytes
        if len(data) < end:
            return False
        return data[start:end].hex().upper() == self.header_value.upper()

    @staticmethod
    def header_from_filename(file_path: str) -> Optional["ROMHeader"]:
        ext = os.path.splitext(str(file_path))[1].lower()
        if not ext:
            return None
        for header in HEADERS:
            if ext in (header.headered_extension.lower(), header.headerless_extension.lower()):
                return header
        return None

    @staticmethod
    def header_from_bytes(data: bytes) -> Optional["ROMHeader"]:
        for header in HEADERS:
            if header.matches(data):
                return header
        return None


HEADERS: tuple[ROMHeader, ...] = (
    ROMHeader("A7800", 1, "415441524937383030", 128, ".a78"),
    ROMHeader("LNX", 0, "4C594E58", 64, ".lnx", ".lyx"),
    ROMHeader("NES", 0, "4E4553", 16, ".nes"),
    ROMHeader("FDS", 0, "464453", 16, ".fds"),
    ROMHeader("SMC", 3, "00" * 509, 512, ".smc", ".sfc"),
)

MAX_HEADER_LENGTH_BYTES = max(h.header_offset_bytes + h.header_length_bytes for h in HEADERS)
