"""DAT object tree: DAT -> Parent -> Game -> ROM/Disk/Release.

Everything here is immutable once parsed; candidate generation only reads it.
"""

from __future__ import annotations

import dataclasses
import functools
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Optional

from romcurator import config

if TYPE_CHECKING:
    from romcurator.files.file import File


@dataclass(frozen=True)
class Release:
    name: str
    region: str
    language: Optional[str] = None


@dataclass(frozen=True)
class ROM:
    name: str
    size: int
    crc32: Optional[str] = None
    md5: Optional[str] = None
    sha1: Optional[str] = None
    sha256: Optional[str] = None
    status: Optional[str] = None

    def __post_init__(self):
        for alg in ("crc32", "md5", "sha1", "sha256"):
            value = getattr(self, alg)
            if value is not None:
                value = value.lower()
                if alg == "crc32":
                    value = value.zfill(8)
                object.__setattr__(self, alg, value or None)

    def get_checksums(self) -> Dict[str, str]:
        return {
            alg: getattr(self, alg)
            for alg in ("crc32", "md5", "sha1", "sha256")
            if getattr(self, alg)
        }

    def hash_code(self) -> str:
        return f"{self.crc32}|{self.size}"

    def with_name(self, name: str) -> "ROM":
        return dataclasses.replace(self, name=name)

    def with_props(self, **props) -> "ROM":
        return dataclasses.replace(self, **props)

    @staticmethod
    def _checksums_match(
        rom_size: int, rom_checksums: Dict[str, str], size: Optional[int], checksums: Dict[str, str]
    ) -> bool:
        if size != rom_size:
            return False
        for alg, value in rom_checksums.items():
            other = checksums.get(alg)
            if other is not None and other != value:
                return False
        return True

    def matches(self, file: "File") -> bool:
        """Whether ``file`` is this ROM.

        Sizes must be equal and every checksum present on both sides must agree;
        a checksum missing on either side is never a mismatch. Headered files also
        match through their header-less size and checksums.
        """
        rom_checksums = self.get_checksums()
        if self._checksums_match(self.size, rom_checksums, file.size, file.get_checksums()):
            return True
        if file.file_header is not None and file.size_without_header is not None:
            return self._checksums_match(
                self.size,
                rom_checksums,
                file.size_without_header,
                file.get_checksums_without_header(),
            )
        return False


@dataclass(frozen=True)
class Disk(ROM):
    """A disc image (CHD) referenced by a MAME-style DAT."""


class GameType:
    AFTERMARKET = "Aftermarket"
    ALPHA = "Alpha"
    BAD = "Bad"
    BETA = "Beta"
    BIOS = "BIOS"
    DEBUG = "Debug"
    DEMO = "Demo"
    DEVICE = "Device"
    HACKED = "Hacked"
    HOMEBREW = "Homebrew"
    PIRATED = "Pirated"
    PROGRAM = "Program"
    PROTOTYPE = "Prototype"
    RETAIL = "Retail"
    SAMPLE = "Sample"
    UNLICENSED = "Unlicensed"


# Checked in order, first match wins
_GAME_TYPE_PATTERNS = (
    (GameType.AFTERMARKET, re.compile(r"\(Aftermarket[a-z0-9. ]*\)", re.IGNORECASE)),
    (GameType.ALPHA, re.compile(r"\(Alpha[a-z0-9. ]*\)", re.IGNORECASE)),
    (GameType.BAD, re.compile(r"\[b[0-9]*\]")),
    (GameType.BETA, re.compile(r"\(Beta[a-z0-9. ]*\)", re.IGNORECASE)),
    (GameType.DEBUG, re.compile(r"\(Debug[a-z0-9. ]*\)", re.IGNORECASE)),
    (GameType.DEMO, re.compile(r"\(((Tech )?Demo|Demo[a-z0-9. -]+|Kiosk|Preview|Trial)\)", re.IGNORECASE)),
    (GameType.HACKED, re.compile(r"\(Hack\)|\[h[a-zA-Z90-9+]*\]", re.IGNORECASE)),
    (GameType.HOMEBREW, re.compile(r"\(Homebrew[a-z0-9. ]*\)", re.IGNORECASE)),
    (GameType.PIRATED, re.compile(r"\(Pirate[a-z0-9. ]*\)|\[p[0-9]*\]", re.IGNORECASE)),
    (GameType.PROGRAM, re.compile(r"\((Program|Test Program|SDK[a-z0-9. ]*)\)", re.IGNORECASE)),
    (GameType.PROTOTYPE, re.compile(r"\([^)]*Proto[a-z0-9. ]*\)", re.IGNORECASE)),
    (GameType.SAMPLE, re.compile(r"\([^)]*Sample[a-z0-9. ]*\)", re.IGNORECASE)),
    (GameType.UNLICENSED, re.compile(r"\(Unl[a-z0-9. ]*\)", re.IGNORECASE)),
)

_TWO_LETTER_LANGUAGES = re.compile(r"\(([a-zA-Z]{2}([,+-][a-zA-Z]{2})*)\)")
_THREE_LETTER_LANGUAGES = re.compile(r"\(([a-zA-Z]{3}(-[a-zA-Z]{3})*)\)")


def _unique(values):
    seen = []
    for v in values:
        if v not in seen:
            seen.append(v)
    return seen


@dataclass(frozen=True)
class Game:
    name: str
    description: str = ""
    clone_of: Optional[str] = None
    rom_of: Optional[str] = None
    bios: bool = False
    device: bool = False
    roms: tuple[ROM, ...] = ()
    disks: tuple[Disk, ...] = ()
    releases: tuple[Release, ...] = ()
    device_refs: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()

    def __post_init__(self):
        for name in ("roms", "disks", "releases", "device_refs", "categories"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    def is_parent(self) -> bool:
        return not self.is_clone()

    def is_clone(self) -> bool:
        return bool(self.clone_of)

    def is_verified(self) -> bool:
        return "[!]" in self.name

    def game_type(self) -> str:
        if self.bios:
            return GameType.BIOS
        if self.is_verified():
            return GameType.RETAIL
        if self.device:
            return GameType.DEVICE
        for game_type, pattern in _GAME_TYPE_PATTERNS:
            if pattern.search(self.name):
                return game_type
        if any(c.lower() == "demos" for c in self.categories):
            return GameType.DEMO
        return GameType.RETAIL

    def regions(self) -> list[str]:
        release_regions = [r.region.upper() for r in self.releases]
        if release_regions:
            return release_regions
        for option in config.REGION_OPTIONS:
            if option.long and re.search(
                rf"\({re.escape(option.long)}(,[ a-z]+)*\)", self.name, re.IGNORECASE
            ):
                return [option.region.upper()]
            if option.regex and option.regex.search(self.name):
                return [option.region.upper()]
        return []

    def languages(self) -> list[str]:
        match = _TWO_LETTER_LANGUAGES.search(self.name)
        if match:
            langs = re.sub(r"-[a-zA-Z]+$", "", match.group(1))
            parsed = _unique(
                lang.upper() for lang in re.split(r"[,+]", langs)
                if lang.upper() in config.LANGUAGES
            )
            if parsed:
                return parsed

        match = _THREE_LETTER_LANGUAGES.search(self.name)
        if match:
            parsed = _unique(
                config.LANGUAGE_LONG_NAMES[lang.upper()]
                for lang in match.group(1).split("-")
                if lang.upper() in config.LANGUAGE_LONG_NAMES
            )
            if parsed:
                return parsed

        release_languages = [r.language.upper() for r in self.releases if r.language]
        if release_languages:
            return release_languages

        by_region = {o.region: o.language for o in config.REGION_OPTIONS}
        return [by_region[r].upper() for r in self.regions() if by_region.get(r)]

    def all_roms(self, exclude_disks: bool = False) -> list[ROM]:
        if exclude_disks:
            return list(self.roms)
        return [*self.roms, *self.disks]

    def with_props(self, **props) -> "Game":
        return dataclasses.replace(self, **props)


@dataclass(frozen=True)
class Parent:
    """A parent game plus its clones, in DAT order."""

    name: str
    games: tuple[Game, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "games", tuple(self.games))

    @classmethod
    def of(cls, game: Game) -> "Parent":
        return cls(name=game.name, games=(game,))


@dataclass(frozen=True)
class DAT:
    name: str
    description: str = ""
    parents: tuple[Parent, ...] = ()
    header: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "parents", tuple(self.parents))

    @classmethod
    def from_games(cls, name: str, games, description: str = "", header: Optional[str] = None) -> "DAT":
        """Group games into parents by their clone-of reference, keeping DAT order."""
        games = list(games)
        names = {g.name for g in games}
        grouped: Dict[str, list[Game]] = {}
        for game in games:
            key = game.clone_of if game.clone_of in names else game.name
            grouped.setdefault(key, []).append(game)
        parents = []
        for key, members in grouped.items():
            members.sort(key=lambda g: 0 if g.name == key else 1)
            parents.append(Parent(name=key, games=tuple(members)))
        return cls(name=name, description=description, parents=tuple(parents), header=header)

    def games(self) -> list[Game]:
        return [g for p in self.parents for g in p.games]

    def game_by_name(self, name: str) -> Optional[Game]:
        for game in self.games():
            if game.name == name:
                return game
        return None

    def is_headered(self) -> bool:
        return "(headered)" in self.name.lower()

    def is_headerless(self) -> bool:
        return "(headerless)" in self.name.lower() or bool(self.header)

    def rom_names_contain_directories(self) -> bool:
        return self._rom_names_contain_directories

    @functools.cached_property
    def _rom_names_contain_directories(self) -> bool:
        return any(
            "/" in rom.name or "\\" in rom.name
            for game in self.games()
            for rom in game.roms
        )

    def name_short(self) -> str:
        short = re.sub(r"\([^)]*\)", "", self.name)
        short = re.sub(r"\s+", " ", short).strip()
        return short or self.name
