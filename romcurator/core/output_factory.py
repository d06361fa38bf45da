"""Output path resolution for a ROM of a game.

Every function here is pure: the same options, DAT, game, release, ROM and
input file always give the same path. Letter bucketing is the one feature that
depends on other ROMs, and it only looks at the ``rom_basenames`` passed in.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence

from romcurator import config
from romcurator.common.exceptions import TokenReplacementError
from romcurator.files.file import ArchiveEntry

if TYPE_CHECKING:
    from romcurator.core.models import DAT, ROM, Game, Release
    from romcurator.core.options import Options
    from romcurator.files.file import File

_TOKEN_RE = re.compile(r"\{[a-zA-Z]+\}")
_ARCHIVE_EXT_RE = re.compile(r"[^.]+((\.[a-zA-Z0-9]+)+)$")
_ILLEGAL_CHARS_RE = re.compile(r'[<>:"|?*]')
_SEP_RE = re.compile(r"[\\/]")


def make_legal(file_path: str) -> str:
    """Replace characters that are illegal in file names on common filesystems."""
    replaced = file_path.replace(":", ";")
    replaced = _ILLEGAL_CHARS_RE.sub("_", replaced)
    replaced = _SEP_RE.sub(os.sep.replace("\\", "\\\\"), replaced)
    # Windows drive letter
    return re.sub(r"^([a-zA-Z]);([\\/])", r"\1:\2", replaced)


def _normalize_seps(value: str) -> str:
    return _SEP_RE.sub(os.sep.replace("\\", "\\\\"), value)


@dataclass(frozen=True)
class OutputPath:
    """A parsed output path.

    ``name`` may itself contain separators (game subdirectories, ROM names with
    directories); ``format()`` joins everything back together.
    """

    dir: str
    name: str
    ext: str
    entry_path: str

    def __post_init__(self):
        for attr in ("dir", "name", "ext", "entry_path"):
            object.__setattr__(self, attr, _normalize_seps(getattr(self, attr)))

    def format(self) -> str:
        formatted = os.path.join(self.dir, self.name + self.ext) if self.dir else self.name + self.ext
        formatted = re.sub(r"/{2,}", "/", formatted)
        return re.sub(r"[\\/]+$", "", formatted)


def get_path(
    options: "Options",
    dat: "DAT",
    game: "Game",
    release: Optional["Release"],
    rom: "ROM",
    input_file: "File",
    rom_basenames: Optional[Sequence[str]] = None,
) -> OutputPath:
    """Compute the output path of ``rom`` when it is written from ``input_file``.

    Raises:
        TokenReplacementError: the output template has tokens that cannot be
            resolved for this game/ROM.
    """
    name, ext = _get_name_and_ext(options, dat, game, rom, input_file)
    return OutputPath(
        dir=get_dir(options, dat, game, release, input_file, name + ext, rom_basenames),
        name=name,
        ext=ext,
        entry_path=get_entry_path(options, dat, game, rom, input_file),
    )


# File directory


def get_dir(
    options: "Options",
    dat: "DAT",
    game: Optional["Game"] = None,
    release: Optional["Release"] = None,
    input_file: Optional["File"] = None,
    rom_basename: Optional[str] = None,
    rom_basenames: Optional[Sequence[str]] = None,
) -> str:
    output = make_legal(
        replace_tokens(
            options.output,
            dat,
            input_file.file_path if input_file is not None else None,
            game,
            release,
            rom_basename,
        )
    )

    if options.dir_mirror and input_file is not None:
        mirrored = _SEP_RE.split(os.path.dirname(input_file.file_path))[1:]
        if mirrored:
            output = os.path.join(output, *mirrored)

    if options.dir_dat_name and dat.name_short():
        output = os.path.join(output, dat.name_short())
    if options.dir_dat_description and dat.description:
        output = os.path.join(output, dat.description)

    letter = get_dir_letter(options, rom_basename, rom_basenames)
    if letter:
        output = os.path.join(output, letter)

    return make_legal(output)


def replace_tokens(
    output_path: str,
    dat: "DAT",
    input_rom_path: Optional[str] = None,
    game: Optional["Game"] = None,
    release: Optional["Release"] = None,
    output_rom_filename: Optional[str] = None,
) -> str:
    # Most specific first
    result = _replace_release_tokens(output_path, release)
    result = _replace_game_tokens(result, game)
    result = _replace_dat_tokens(result, dat)
    result = _replace_input_tokens(result, input_rom_path)
    result = _replace_output_tokens(result, output_rom_filename)
    result = _replace_console_tokens(result, dat, output_rom_filename)

    leftover = _TOKEN_RE.findall(result)
    if leftover:
        raise TokenReplacementError(leftover, template=output_path)
    return result


def _replace_release_tokens(value: str, release: Optional["Release"]) -> str:
    if release is None:
        return value
    value = value.replace("{gameRegion}", release.region)
    if release.language:
        value = value.replace("{gameLanguage}", release.language)
    return value


def _replace_game_tokens(value: str, game: Optional["Game"]) -> str:
    if game is None:
        return value
    value = value.replace("{gameType}", game.game_type())
    regions = game.regions()
    if regions:
        value = value.replace("{gameRegion}", regions[0])
    languages = game.languages()
    if languages:
        value = value.replace("{gameLanguage}", languages[0])
    return value


def _replace_dat_tokens(value: str, dat: "DAT") -> str:
    value = value.replace("{datName}", _SEP_RE.sub("_", dat.name))
    if dat.description:
        value = value.replace("{datDescription}", _SEP_RE.sub("_", dat.description))
    return value


def _replace_input_tokens(value: str, input_rom_path: Optional[str]) -> str:
    if not input_rom_path:
        return value
    return value.replace("{inputDirname}", os.path.dirname(input_rom_path))


def _replace_output_tokens(value: str, output_rom_filename: Optional[str]) -> str:
    if not output_rom_filename:
        return value
    base = os.path.basename(output_rom_filename)
    name, ext = os.path.splitext(base)
    return (
        value.replace("{outputBasename}", base)
        .replace("{outputName}", name)
        .replace("{outputExt}", ext.lstrip("."))
    )


def _replace_console_tokens(value: str, dat: "DAT", output_rom_filename: Optional[str]) -> str:
    if not output_rom_filename:
        return value
    console = config.console_for_dat_name(dat.name) or config.console_for_filename(
        output_rom_filename
    )
    if console is None:
        return value
    for token in ("pocket", "mister", "onion", "batocera"):
        replacement = getattr(console, token)
        if replacement:
            value = value.replace("{" + token + "}", replacement)
    return value


def get_dir_letter(
    options: "Options",
    rom_basename: Optional[str],
    rom_basenames: Optional[Sequence[str]] = None,
) -> Optional[str]:
    """Letter bucket for ``rom_basename``, splitting over-full buckets into ``A1``, ``A2``..."""
    if not rom_basename or not options.dir_letter:
        return None

    letters: dict[str, set[str]] = {}
    for filename in rom_basenames or [rom_basename]:
        letter = filename[0].upper() if filename else "#"
        if not re.match(r"[A-Z]", letter):
            letter = "#"
        letters.setdefault(letter, set()).add(filename)

    limit = options.dir_letter_limit
    if limit:
        split: dict[str, set[str]] = {}
        for letter, filenames in letters.items():
            if len(filenames) <= limit:
                split[letter] = set(filenames)
                continue

            # Multi-ROM games are grouped under their game directory, chunk on that
            sub_paths: dict[str, list[str]] = {}
            for filename in filenames:
                sub_path = re.sub(r"[\\/].+$", "", filename)
                sub_paths.setdefault(sub_path, []).append(filename)

            ordered = sorted(sub_paths)
            for i in range(0, len(ordered), limit):
                chunk = {f for sub_path in ordered[i:i + limit] for f in sub_paths[sub_path]}
                split[f"{letter}{i // limit + 1}"] = chunk
        letters = split

    for letter, filenames in letters.items():
        if rom_basename in filenames:
            return letter
    return None


# File name and extension


def _get_name_and_ext(
    options: "Options", dat: "DAT", game: "Game", rom: "ROM", input_file: "File"
) -> tuple[str, str]:
    basename = get_output_file_basename(options, dat, game, rom, input_file)
    dirname, base = os.path.split(_normalize_seps(basename))
    name, ext = os.path.splitext(base)

    output = os.path.join(dirname, name) if dirname.strip() else name

    subdir = options.dir_game_subdir.value
    if (
        subdir == "multiple" and len(game.roms) > 1 and not config.is_archive(ext)
    ) or subdir == "always":
        output = os.path.join(game.name, output)

    return output, ext


def get_output_file_basename(
    options: "Options", dat: "DAT", game: "Game", rom: "ROM", input_file: "File"
) -> str:
    if options.should_zip_rom(rom):
        return f"{game.name}.zip"

    rom_basename = get_rom_basename(options, dat, rom, input_file)
    if (
        not (isinstance(input_file, ArchiveEntry) or config.is_archive(input_file.file_path))
        or options.should_extract()
    ):
        return rom_basename

    # Left archived: the game name plus the input archive's extension
    match = _ARCHIVE_EXT_RE.search(input_file.file_path)
    ext = match.group(1) if match else ""
    return game.name + ext


def get_entry_path(
    options: "Options", dat: "DAT", game: "Game", rom: "ROM", input_file: "File"
) -> str:
    rom_basename = get_rom_basename(options, dat, rom, input_file)
    if not options.should_zip_rom(rom):
        return rom_basename

    # The game name already becomes the zip name, don't repeat its directories
    game_dir = os.path.dirname(_normalize_seps(game.name))
    entry_path = _normalize_seps(rom_basename)
    return entry_path.replace(f"{game_dir}{os.sep}", "", 1) if game_dir else entry_path


def get_rom_basename(options: "Options", dat: "DAT", rom: "ROM", input_file: "File") -> str:
    rom_name = rom.name
    if not dat.rom_names_contain_directories():
        rom_name = _SEP_RE.sub("_", rom_name)

    root, ext = os.path.splitext(rom_name)
    header = input_file.file_header
    if ext and header is not None:
        # A headered file's extension comes from the header, not the DAT
        if options.can_remove_header(dat, ext):
            ext = header.headerless_extension
        else:
            ext = header.headered_extension
    return root + ext
