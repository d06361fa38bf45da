"""Patch files that turn a known ROM (identified by CRC32) into a new one.

Only the IPS family (``.ips``/``.ips32``) is applied; the name of the patch file
carries the CRC32 of the ROM it applies to, e.g. ``Game (Hack) [1234abcd].ips``.
"""

from __future__ import annotations

import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from romcurator.common.exceptions import FileReadError

_CRC_RE = re.compile(r"(^|[^a-z0-9])([a-f0-9]{8})([^a-z0-9]|$)", re.IGNORECASE)


def crc_from_path(file_path: str) -> Optional[str]:
    stem = os.path.splitext(os.path.basename(file_path))[0]
    match = _CRC_RE.search(stem)
    return match.group(2).lower() if match else None


@dataclass(frozen=True)
class Patch(ABC):
    file_path: str
    crc_before: str
    crc_after: Optional[str] = None
    size_after: Optional[int] = None

    def rom_name(self) -> str:
        """Name of the patched ROM: the patch basename with its CRC tag removed."""
        stem = os.path.splitext(os.path.basename(self.file_path))[0]
        name = _CRC_RE.sub(lambda m: m.group(1) + m.group(3), stem, count=1)
        name = re.sub(r"\s*(\[\s*\]|\(\s*\))\s*", " ", name)
        return re.sub(r"\s{2,}", " ", name).strip(" _-") or stem

    @abstractmethod
    def apply(self, data: bytes) -> bytes:
        """Return ``data`` with this patch applied."""


class IPSPatch(Patch):
    SUPPORTED_EXTENSIONS = (".ips", ".ips32")
    FILE_SIGNATURES = (b"PATCH", b"IPS32")

    def apply(self, data: bytes) -> bytes:
        patch = Path(self.file_path).read_bytes()
        header = patch[:5]
        if header not in self.FILE_SIGNATURES:
            raise FileReadError(self.file_path, f"IPS patch header is invalid: {self.file_path}")

        offset_size, eof = (4, b"EEOF") if header == b"IPS32" else (3, b"EOF")
        out = bytearray(data)
        pos = 5
        while pos < len(patch):
            if patch[pos:pos + len(eof)] == eof:
                break
            offset = int.from_bytes(patch[pos:pos + offset_size], "big")
            pos += offset_size
            size = int.from_bytes(patch[pos:pos + 2], "big")
            pos += 2
            if size == 0:
                # run-length encoded record
                rle_size = int.from_bytes(patch[pos:pos + 2], "big")
                chunk = patch[pos + 2:pos + 3] * rle_size
                pos += 3
            else:
                chunk = patch[pos:pos + size]
                pos += size
            end = offset + len(chunk)
            if end > len(out):
                out.extend(b"\x00" * (end - len(out)))
            out[offset:end] = chunk
        return bytes(out)


def patch_from_path(file_path: str) -> Optional[Patch]:
    """Build a patch for ``file_path`` or None when it is not a usable patch."""
    ext = os.path.splitext(file_path)[1].lower()
    if ext not in IPSPatch.SUPPORTED_EXTENSIONS:
        return None
    crc_before = crc_from_path(file_path)
    if crc_before is None:
        return None
    return IPSPatch(file_path=str(file_path), crc_before=crc_before)
