"""Run options for a romcurator invocation.

``Options`` is a plain immutable value; every decision the candidate pipeline
makes about commands (copy/move/link/extract/zip/test) goes through one of its
``should_*`` predicates so the rules live in one place.
"""

from __future__ import annotations

import dataclasses
import fnmatch
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional

from romcurator import config
from romcurator.common.exceptions import ConfigurationError

if TYPE_CHECKING:
    from romcurator.core.models import DAT, ROM


class LinkMode(str, Enum):
    HARDLINK = "hardlink"
    SYMLINK = "symlink"
    REFLINK = "reflink"


class GameSubdirMode(str, Enum):
    NEVER = "never"
    MULTIPLE = "multiple"
    ALWAYS = "always"


class FixExtension(str, Enum):
    NEVER = "never"
    AUTO = "auto"
    ALWAYS = "always"


class MergeMode(str, Enum):
    FULLNONMERGED = "fullnonmerged"
    NONMERGED = "nonmerged"
    SPLIT = "split"
    MERGED = "merged"


COMMANDS = ("copy", "move", "link", "extract", "zip", "test")

# Commands that put files in the output directory, in precedence order
_WRITE_COMMANDS = ("copy", "move", "link")


@dataclass(frozen=True)
class Options:
    commands: tuple[str, ...] = ()
    output: str = config.OUTPUT_DEFAULT

    dir_mirror: bool = False
    dir_dat_name: bool = False
    dir_dat_description: bool = False
    dir_letter: bool = False
    dir_letter_limit: int = 0
    dir_game_subdir: GameSubdirMode = GameSubdirMode.MULTIPLE
    input_paths: tuple[str, ...] = ()

    zip_exclude: str = ""
    zip_dat_name: bool = False

    # None: never remove; [""]: remove from every file; otherwise extensions
    remove_headers: Optional[tuple[str, ...]] = None

    overwrite: bool = False
    overwrite_invalid: bool = False

    allow_excess_sets: bool = False
    allow_incomplete_sets: bool = False
    exclude_disks: bool = False
    patch_file_count: int = 0
    using_dat_files: bool = True
    strict_validation: bool = False

    link_mode: LinkMode = LinkMode.HARDLINK
    symlink_relative: bool = False

    merge_roms: MergeMode = MergeMode.FULLNONMERGED
    fix_extension: FixExtension = FixExtension.AUTO

    write_retry: int = config.DEFAULT_WRITE_RETRY
    reader_threads: int = config.DEFAULT_READER_THREADS
    writer_threads: int = config.DEFAULT_WRITER_THREADS

    extra: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        commands = tuple(c.lower() for c in self.commands)
        unknown = [c for c in commands if c not in COMMANDS]
        if unknown:
            raise ConfigurationError(
                f"unknown command(s): {', '.join(unknown)}",
                details={"valid": ", ".join(COMMANDS)},
            )
        object.__setattr__(self, "commands", commands)
        if self.remove_headers is not None:
            object.__setattr__(self, "remove_headers", tuple(self.remove_headers))
        if self.write_retry < 0:
            raise ConfigurationError("write_retry must not be negative")
        if self.reader_threads < 1 or self.writer_threads < 1:
            raise ConfigurationError("thread counts must be at least 1")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "Options":
        """Build options from a loose mapping (settings file, CLI overrides).

        Unknown keys are kept in ``extra``; enum fields accept their string values.
        """
        known = {f.name: f for f in dataclasses.fields(cls)}
        kwargs: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in values.items():
            if key not in known or key == "extra":
                extra[key] = value
                continue
            if value is None and key != "remove_headers":
                continue
            kwargs[key] = value

        enum_fields = {
            "link_mode": LinkMode,
            "dir_game_subdir": GameSubdirMode,
            "fix_extension": FixExtension,
            "merge_roms": MergeMode,
        }
        for key, enum_cls in enum_fields.items():
            if key in kwargs and not isinstance(kwargs[key], enum_cls):
                try:
                    kwargs[key] = enum_cls(str(kwargs[key]).lower())
                except ValueError as e:
                    raise ConfigurationError(
                        f"invalid value for {key}: {kwargs[key]!r}",
                        details={"valid": ", ".join(m.value for m in enum_cls)},
                    ) from e

        for key in ("commands", "input_paths"):
            if key in kwargs and isinstance(kwargs[key], str):
                kwargs[key] = (kwargs[key],)
            if key in kwargs:
                kwargs[key] = tuple(kwargs[key])

        return cls(extra=extra, **kwargs)

    def with_props(self, **props: Any) -> "Options":
        return dataclasses.replace(self, **props)

    # Commands

    def write_string(self) -> Optional[str]:
        for command in _WRITE_COMMANDS:
            if command in self.commands:
                return command
        return None

    def should_write(self) -> bool:
        return self.write_string() is not None

    def should_copy(self) -> bool:
        return "copy" in self.commands

    def should_move(self) -> bool:
        return "move" in self.commands

    def should_link(self) -> bool:
        return "link" in self.commands

    def should_extract(self) -> bool:
        return "extract" in self.commands

    def should_zip(self) -> bool:
        return "zip" in self.commands

    def should_test(self) -> bool:
        return "test" in self.commands

    def using_dats(self) -> bool:
        return self.using_dat_files

    def should_zip_rom(self, rom: "ROM") -> bool:
        from romcurator.core.models import Disk

        if isinstance(rom, Disk) or not self.should_zip():
            return False
        if not self.zip_exclude:
            return True
        name = rom.name.replace("\\", "/")
        return not (
            fnmatch.fnmatch(name, self.zip_exclude)
            or fnmatch.fnmatch(os.path.basename(name), self.zip_exclude)
        )

    def should_extract_rom(self, rom: "ROM") -> bool:
        from romcurator.core.models import Disk

        if isinstance(rom, Disk):
            return False
        return self.should_extract()

    def can_remove_header(self, dat: "DAT", extension: str) -> bool:
        # Headered DATs keep headers, headerless DATs always strip them
        if dat.is_headered():
            return False
        if dat.is_headerless():
            return True

        if self.remove_headers is None:
            return False
        if len(self.remove_headers) == 1 and self.remove_headers[0] == "":
            return True
        return any(ext.lower() == extension.lower() for ext in self.remove_headers)
