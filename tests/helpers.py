import zipfile
import zlib
from pathlib import Path
from typing import Dict, Iterable, Optional

from romcurator.core.models import DAT, ROM, Game
from romcurator.core.options import Options
from romcurator.files.file import File


def crc(data: bytes) -> str:
    return f"{zlib.crc32(data) & 0xFFFFFFFF:08x}"


def rom_for(name: str, data: bytes, **props) -> ROM:
    return ROM(name=name, size=len(data), crc32=crc(data), **props)


def write_file(path: Path, data: bytes) -> File:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return File.file_of(path)


def write_zip(path: Path, entries: Dict[str, bytes]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return path


def make_dat(games: Iterable[Game], name: str = "Test DAT") -> DAT:
    return DAT.from_games(name, list(games))


def make_options(tmp_path: Optional[Path] = None, *commands: str, **props) -> Options:
    if tmp_path is not None:
        props.setdefault("output", str(tmp_path / "out"))
    return Options(commands=commands, **props)
