"""Magic-byte signatures used to guess a file's real extension."""

from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, Optional

_NINTENDO_LOGO_GB = bytes.fromhex(
    "CEED6666CC0D000B03730083000C000D0008111F8889000EDCCC6EE6DDDDD999BBBB67636E0EECCCDDDC999FBBB9333E"
)
_NINTENDO_LOGO_GBA = bytes.fromhex(
    "24FFAE51699AA2213D84820A84E409AD11248B98C0817F21A352BE199309CE2010464A4AF82731EC58C7E83382E3CEBF"
    "85F4DF94CE4B09C194568AC01372A7FC9F844D73A3CA9A615897A327FC039876231DC7610304AE56BF38840040A70EFD"
    "FF52FE036F9530F197FBC08560D68025A963BE03014E38E2F9A234FFBB3E0344780090CB88113A9465C07C6387F03CAF"
    "D625E48B380AAC7221D4F807"
)


@dataclass(frozen=True)
class FileSignature:
    name: str
    extension: str
    pieces: tuple[tuple[int, bytes], ...]

    def matches(self, data: bytes) -> bool:
        return all(data[offset:offset + len(value)] == value for offset, value in self.pieces)

    @property
    def weight(self) -> tuple[int, int]:
        return len(self.pieces), sum(len(value) for _, value in self.pieces)

    @staticmethod
    def signature_from_bytes(data: bytes) -> Optional["FileSignature"]:
        for signature in SIGNATURES_SORTED:
            if signature.matches(data):
                return signature
        return None

    @staticmethod
    def signature_from_stream(stream: BinaryIO) -> Optional["FileSignature"]:
        return FileSignature.signature_from_bytes(stream.read(MAX_SIGNATURE_LENGTH_BYTES))


def _sig(name: str, extension: str, *pieces: tuple[int, bytes]) -> FileSignature:
    return FileSignature(name, extension, tuple(pieces))


SIGNATURES: tuple[FileSignature, ...] = (
    # archives
    _sig("7z", ".7z", (0, bytes.fromhex("377ABCAF271C"))),
    _sig("bz2", ".bz2", (0, b"BZh")),
    _sig("gz", ".gz", (0, bytes.fromhex("1F8B08"))),
    _sig("rar1", ".rar", (0, b"Rar!\x1a\x07\x00")),
    _sig("rar5", ".rar", (0, b"Rar!\x1a\x07\x01\x00")),
    _sig("tar1", ".tar", (257, b"ustar\x0000")),
    _sig("tar2", ".tar", (257, b"ustar\x20\x20\x00")),
    _sig("xz", ".xz", (0, b"\xfd7zXZ\x00")),
    _sig("zip", ".zip", (0, b"PK\x03\x04")),
    _sig("zip_empty", ".zip", (0, b"PK\x05\x06")),
    _sig("zst", ".zst", (0, bytes.fromhex("28B52FFD"))),
    # disc images
    _sig("cso", ".cso", (0, b"CISO")),
    _sig("isz", ".isz", (0, b"IsZ!")),
    _sig("zso", ".zso", (0, b"ZISO")),
    # cartridges
    _sig("a78", ".a78", (1, b"ATARI7800")),
    _sig("lnx", ".lnx", (0, b"LYNX")),
    _sig("3dsx", ".3dsx", (0, b"3DSX")),
    _sig("n64", ".n64", (0, bytes.fromhex("40123780"))),
    _sig("v64", ".v64", (0, bytes.fromhex("37804012"))),
    _sig("z64", ".z64", (0, bytes.fromhex("80371240"))),
    _sig("ndd", ".ndd", (0, bytes.fromhex("E848D31610"))),
    _sig("fds_hvc", ".fds", (0, b"\x01*NINTENDO-HVC*")),
    _sig("fds", ".fds", (0, b"FDS")),
    _sig("gb", ".gb", (0x104, _NINTENDO_LOGO_GB), (0x143, b"\x00")),
    _sig("gb_dx", ".gbc", (0x104, _NINTENDO_LOGO_GB), (0x143, b"\x80")),
    _sig("gbc", ".gbc", (0x104, _NINTENDO_LOGO_GB), (0x143, b"\xc0")),
    _sig("gba", ".gba", (0x04, _NINTENDO_LOGO_GBA)),
    _sig("nes", ".nes", (0, b"NES")),
    _sig("smc", ".smc", (3, b"\x00" * 509)),
    _sig("smc_gd3_1", ".smc", (0, b"\x00\x01ME DOCTOR SF 3")),
    _sig("smc_gd3_2", ".smc", (0, b"GAME DOCTOR SF 3")),
    _sig("32x", ".32x", (0x100, b"SEGA 32X")),
    _sig("gg", ".gg", (0x7FF0, b"TMR SEGA")),
    _sig("md_1", ".md", (0x100, b"SEGA            ")),
    _sig("md_2", ".md", (0x100, b"SEGA IS A REGISTERED")),
    _sig("md_3", ".md", (0x100, b"SEGA IS A TRADEMARK ")),
    _sig("md_4", ".md", (0x100, b"SEGA GENESIS")),
    _sig("md_5", ".md", (0x100, b" SEGA GENESIS")),
    _sig("md_6", ".md", (0x100, b"SEGA_GENESIS")),
    _sig("md_7", ".md", (0x100, b"SEGA MEGADRIVE")),
    _sig("md_8", ".md", (0x100, b"SEGA MEGA DRIVE")),
    _sig("smd_1", ".smd", (0x280, b"EAGNSS  ")),
    _sig("smd_2", ".smd", (0x280, b"EAMG RV")),
    _sig("pico", ".md", (0x100, b"SEGA PICO")),
    _sig("pbp", ".pbp", (0, b"\x00PBP\x00\x00\x01\x00")),
)

# Most specific first: more pieces, then more bytes
SIGNATURES_SORTED: tuple[FileSignature, ...] = tuple(
    sorted(SIGNATURES, key=lambda s: s.weight, reverse=True)
)

MAX_SIGNATURE_LENGTH_BYTES = max(
    offset + len(value) for s in SIGNATURES for offset, value in s.pieces
)
