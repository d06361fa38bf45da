import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List, Optional

from romcurator.common.exceptions import DATParseError
from romcurator.core.models import DAT, ROM, Disk, Game, Release

logger = logging.getLogger(__name__)


def parse_dat_file(dat_path: Path) -> DAT:
    """Parse a Logiqx XML or ClrMamePro DAT into a ``DAT`` tree.

    Raises:
        DATParseError: the file can't be read or holds no games.
    """
    dat_path = Path(dat_path)
    try:
        with open(dat_path, "rb") as f:
            head = f.read(512)
    except OSError as e:
        raise DATParseError(str(dat_path), str(e)) from e

    if b"<?xml" in head or b"<datafile" in head or b"<mame" in head:
        dat = _parse_xml_dat(dat_path)
    else:
        dat = _parse_clrmamepro(dat_path)

    if not dat.parents:
        raise DATParseError(str(dat_path), "no games found")
    logger.debug("Parsed DAT %s: %d game(s)", dat.name, len(dat.games()))
    return dat


def _int(value: Optional[str]) -> int:
    if not value:
        return 0
    try:
        return int(value, 16) if value.lower().startswith("0x") else int(value)
    except ValueError:
        return 0


def _yes(value: Optional[str]) -> bool:
    return (value or "").lower() == "yes"


def _parse_xml_dat(dat_path: Path) -> DAT:
    try:
        root = ET.parse(dat_path).getroot()
    except ET.ParseError as e:
        raise DATParseError(str(dat_path), str(e)) from e

    name = dat_path.stem
    description = ""
    header_skipper = None

    # Parse Header
    header = root.find("header")
    if header is not None:
        name = header.findtext("name") or name
        description = header.findtext("description") or ""
        clrmamepro = header.find("clrmamepro")
        if clrmamepro is not None:
            header_skipper = clrmamepro.get("header")

    games: List[Game] = []
    for game in [*root.findall("game"), *root.findall("machine")]:
        roms = [
            ROM(
                name=rom.get("name", ""),
                size=_int(rom.get("size")),
                crc32=rom.get("crc"),
                md5=rom.get("md5"),
                sha1=rom.get("sha1"),
                sha256=rom.get("sha256"),
                status=rom.get("status"),
            )
            for rom in game.findall("rom")
        ]
        disks = [
            Disk(
                name=disk.get("name", ""),
                size=_int(disk.get("size")),
                md5=disk.get("md5"),
                sha1=disk.get("sha1"),
                status=disk.get("status"),
            )
            for disk in game.findall("disk")
        ]
        releases = [
            Release(
                name=release.get("name", ""),
                region=release.get("region", ""),
                language=release.get("language"),
            )
            for release in game.findall("release")
        ]
        games.append(
            Game(
                name=game.get("name", "Unknown"),
                description=game.findtext("description") or "",
                clone_of=game.get("cloneof"),
                rom_of=game.get("romof"),
                bios=_yes(game.get("isbios")),
                device=_yes(game.get("isdevice")),
                roms=roms,
                disks=disks,
                releases=releases,
                device_refs=[ref.get("name", "") for ref in game.findall("device_ref")],
                categories=[c.text for c in game.findall("category") if c.text],
            )
        )

    return DAT.from_games(name, games, description=description, header=header_skipper)


_QUOTED_OR_BARE = r'(?:"([^"]*)"|(\S+))'


def _field(block: str, key: str) -> Optional[str]:
    match = re.search(rf"(?:^|\s){key}\s+{_QUOTED_OR_BARE}", block)
    if not match:
        return None
    return match.group(1) if match.group(1) is not None else match.group(2)


def _blocks(content: str, keyword: str) -> List[str]:
    """Bodies of every ``keyword ( ... )`` block, honouring nested parentheses and quotes."""
    blocks = []
    scanned = 0
    quotes = 0
    for match in re.finditer(rf"(?:^|\s){keyword}\s*\(", content):
        if match.start() < scanned:
            continue
        quotes += content.count('"', scanned, match.start())
        scanned = match.start()
        if quotes % 2:
            # Inside a quoted name
            continue
        start = match.end()
        depth = 1
        end = start
        in_quotes = False
        while depth > 0 and end < len(content):
            char = content[end]
            if char == '"':
                in_quotes = not in_quotes
            elif not in_quotes and char == "(":
                depth += 1
            elif not in_quotes and char == ")":
                depth -= 1
            end += 1
        if depth == 0:
            blocks.append(content[start:end - 1])
        quotes += content.count('"', scanned, end)
        scanned = end
    return blocks


def _strip_nested(block: str) -> str:
    """The block with its nested ``( ... )`` children removed."""
    out = []
    depth = 0
    in_quotes = False
    for char in block:
        if char == '"':
            in_quotes = not in_quotes
        if not in_quotes and char == "(":
            depth += 1
            continue
        if not in_quotes and char == ")":
            depth -= 1
            continue
        if depth == 0:
            out.append(char)
    return "".join(out)


def _parse_clrmamepro(dat_path: Path) -> DAT:
    try:
        content = dat_path.read_text(encoding="utf-8", errors="ignore")
    except OSError as e:
        raise DATParseError(str(dat_path), str(e)) from e

    name = dat_path.stem
    description = ""
    header_skipper = None

    # Extract header info (clrmamepro block)
    headers = _blocks(content, "clrmamepro")
    if headers:
        name = _field(headers[0], "name") or name
        description = _field(headers[0], "description") or ""
        header_skipper = _field(headers[0], "header")

    games = [
        _parse_game_block(block)
        for keyword in ("game", "machine", "resource")
        for block in _blocks(content, keyword)
    ]
    return DAT.from_games(name, games, description=description, header=header_skipper)


def _parse_game_block(block: str) -> Game:
    own_fields = _strip_nested(block)
    roms = [
        ROM(
            name=_field(rom, "name") or "",
            size=_int(_field(rom, "size")),
            crc32=_field(rom, "crc"),
            md5=_field(rom, "md5"),
            sha1=_field(rom, "sha1"),
            sha256=_field(rom, "sha256"),
            status=_field(rom, "status") or _field(rom, "flags"),
        )
        for rom in _blocks(block, "rom")
    ]
    disks = [
        Disk(
            name=_field(disk, "name") or "",
            size=_int(_field(disk, "size")),
            md5=_field(disk, "md5"),
            sha1=_field(disk, "sha1"),
        )
        for disk in _blocks(block, "disk")
    ]
    releases = [
        Release(
            name=_field(release, "name") or "",
            region=_field(release, "region") or "",
            language=_field(release, "language"),
        )
        for release in _blocks(block, "release")
    ]
    return Game(
        name=_field(own_fields, "name") or "Unknown",
        description=_field(own_fields, "description") or "",
        clone_of=_field(own_fields, "cloneof"),
        rom_of=_field(own_fields, "romof"),
        roms=roms,
        disks=disks,
        releases=releases,
    )
