"""Configuration and constants for the romcurator package."""
from __future__ import annotations

import math
import re
from typing import Dict, List, NamedTuple, Optional, Tuple

# Default output directory for written collections
OUTPUT_DEFAULT = "./output"

# Default settings file consumed by ConfigManager
SETTINGS_FILE = "romcurator.json"

DEFAULT_READER_THREADS = 8
DEFAULT_WRITER_THREADS = 4
DEFAULT_WRITE_RETRY = 2

# Upper bound on the kilobytes of input data being written at the same time
MAX_READ_WRITE_CONCURRENT_KILOBYTES = math.ceil(734_003_200 / 1024)

# Archive formats the scanner can list entries for
ARCHIVE_EXTENSIONS: Tuple[str, ...] = (
    ".zip",
    ".7z",
    ".chd",
)


def is_archive(file_path: str) -> bool:
    """Return True when ``file_path`` has a known archive extension."""
    lower = str(file_path).lower()
    return any(lower.endswith(ext) for ext in ARCHIVE_EXTENSIONS)


class GameConsole(NamedTuple):
    """Console metadata used to resolve frontend-specific output tokens."""

    dat_regex: "re.Pattern[str]"
    extensions: Tuple[str, ...]
    pocket: Optional[str]
    mister: Optional[str]
    onion: Optional[str]
    batocera: Optional[str]
    jelos: Optional[str]


def _console(
    pattern: str,
    extensions: Tuple[str, ...],
    pocket: Optional[str],
    mister: Optional[str],
    onion: Optional[str],
    batocera: Optional[str],
    jelos: Optional[str],
    flags: int = re.IGNORECASE,
) -> GameConsole:
    return GameConsole(
        re.compile(pattern, flags), extensions, pocket, mister, onion, batocera, jelos
    )


# Ordered from generic to specific; DAT name lookups scan it backwards so
# "Game Boy Color" wins over "Game Boy".
GAME_CONSOLES: List[GameConsole] = [
    _console(r"CPC", (), None, "Amstrad", "CPC", "amstradcpc", "amstradcpc"),
    _console(r"2600", (".a26", ".act", ".pb", ".tv", ".tvr", ".mn", ".cv", ".eb", ".ef", ".efr", ".ua", ".x07", ".sb"),
             "2600", "Atari2600", "ATARI", "atari2600", "atari2600", flags=0),
    _console(r"5200", (".a52",), None, "Atari5200", "FIFTYTWOHUNDRED", "atari5200", "atari5200", flags=0),
    _console(r"7800", (".a78",), "7800", "Atari7800", "SEVENTYEIGHTHUNDRED", "atari7800", "atari7800", flags=0),
    _console(r"Jaguar", (".j64",), None, None, "JAGUAR", "jaguar", "atarijaguar"),
    _console(r"Lynx", (".lnx", ".lyx"), None, "AtariLynx", "LYNX", "lynx", "atarilynx"),
    _console(r"WonderSwan", (".ws",), "wonderswan", "WonderSwan", "WS", "wswan", "wonderswan"),
    _console(r"WonderSwan Color", (".wsc",), "wonderswan", "WonderSwan", "WS", "wswanc", "wonderswancolor"),
    _console(r"Commodore 64", (".crt", ".d64", ".t64"), None, "C64", "COMMODORE", "c64", "c64"),
    _console(r"ColecoVision", (".col",), "coleco", "Coleco", "COLECO", "colecovision", "coleco"),
    _console(r"Vectrex", (".vec",), None, "Vectrex", "VECTREX", "vectrex", "vectrex"),
    _console(r"Intellivision", (".int",), "intv", "Intellivision", "INTELLIVISION", "intellivision", "intellivision"),
    _console(r"PC Engine|TurboGrafx", (".pce",), "pce", "TGFX16", "PCE", "pcengine", "tg16"),
    _console(r"SuperGrafx", (".sgx",), "pce", "TGFX16", "SGFX", "supergrafx", "sgfx"),
    _console(r"FDS|Famicom Computer Disk System", (".fds",), "nes", "NES", "FDS", "fds", "fds"),
    _console(r"Game (and|&) Watch", (".mgw",), None, "GameNWatch", "GW", "gameandwatch", "gameandwatch"),
    _console(r"GB|Game ?Boy", (".gb", ".sgb"), "gb", "Gameboy", "GB", "gb", "gb"),
    _console(r"GBA|Game ?Boy Advance", (".gba", ".srl"), "gba", "GBA", "GBA", "gba", "gba"),
    _console(r"GBC|Game ?Boy Color", (".gbc",), "gbc", "Gameboy", "GBC", "gbc", "gbc"),
    _console(r"Nintendo 64|N64", (".n64", ".v64", ".z64"), None, None, None, "n64", "n64"),
    _console(r"(\W|^)3DS(\W|$)|Nintendo 3DS", (".3ds",), None, None, None, "3ds", "3ds"),
    _console(r"(\W|^)NDS(\W|$)|Nintendo DS", (".nds",), None, None, None, "nds", "nds"),
    _console(r"(\W|^)NES(\W|$)|Nintendo Entertainment System", (".nes", ".nez"), "nes", "NES", "FC", "nes", "nes"),
    _console(r"Pokemon Mini", (".min",), "poke_mini", "PokemonMini", "POKE", "pokemini", "pokemini"),
    _console(r"(\W|^)SNES(\W|$)|Super Nintendo Entertainment System", (".sfc", ".smc"), "snes", "SNES", "SFC", "snes", "snes"),
    _console(r"Virtual Boy", (".vb", ".vboy"), None, None, "VB", "virtualboy", "virtualboy"),
    _console(r"32X", (".32x",), None, "S32X", "THIRTYTWOX", "sega32x", "sega32x"),
    _console(r"Game Gear", (".gg",), "gg", "SMS", "GG", "gamegear", "gamegear"),
    _console(r"Master System", (".sms",), "sms", "SMS", "MS", "mastersystem", "mastersystem"),
    _console(r"(Mega|Sega) CD", (), None, "MegaCD", "SEGACD", "segacd", "segacd"),
    _console(r"Mega Drive|Genesis", (".gen", ".md", ".mdx", ".sgd", ".smd"), "genesis", "Genesis", "MD", "megadrive", "genesis"),
    _console(r"SG-?1000", (".sc", ".sg"), "sg1000", "SG1000", "SEGASGONE", "sg1000", "sg-1000"),
    _console(r"Neo ?Geo Pocket", (".ngp",), None, None, "NGP", "ngp", "ngp"),
    _console(r"Neo ?Geo Pocket Color", (".ngc",), None, None, "NGP", "ngpc", "ngpc"),
    _console(r"PlayStation|psx", (), None, "PSX", "PS", "psx", "psx"),
    _console(r"PlayStation 2|ps2", (), None, None, None, "ps2", "ps2"),
    _console(r"Supervision", (".sv",), "supervision", "SuperVision", "SUPERVISION", "supervision", "supervision"),
]


def console_for_dat_name(dat_name: str) -> Optional[GameConsole]:
    for console in reversed(GAME_CONSOLES):
        if console.dat_regex.search(dat_name):
            return console
    return None


def console_for_filename(file_path: str) -> Optional[GameConsole]:
    lower = str(file_path).lower()
    dot = lower.rfind(".")
    if dot < 0:
        return None
    ext = lower[dot:]
    for console in GAME_CONSOLES:
        if ext in console.extensions:
            return console
    return None


class RegionOption(NamedTuple):
    region: str
    long: str
    language: str
    regex: Optional["re.Pattern[str]"]


def _region(region: str, long: str, language: str, pattern: Optional[str] = None) -> RegionOption:
    return RegionOption(
        region, long, language, re.compile(pattern, re.IGNORECASE) if pattern else None
    )


REGION_OPTIONS: List[RegionOption] = [
    _region("ARG", "Argentina", "ES"),
    _region("AUS", "Australia", "EN", r"\((A|AU)\)"),
    _region("BEL", "Belgium", "FR", r"\(BE\)"),
    _region("BRA", "Brazil", "PT", r"\((B|BR)\)"),
    _region("CAN", "Canada", "EN", r"\(CA\)"),
    _region("CHN", "China", "ZH", r"\((C|CH|CN)\)"),
    _region("DAN", "Denmark", "DA", r"\(DK\)"),
    _region("FRA", "France", "FR", r"\((F|FR)\)"),
    _region("FYN", "Finland", "FI", r"\((FI|FN)\)"),
    _region("GER", "Germany", "DE", r"\((DE|G)\)"),
    _region("GRE", "Greece", "EL", r"\(Gr\)"),
    _region("HK", "Hong Kong", "ZH", r"\(HK\)"),
    _region("HOL", "Netherlands", "NL", r"\((D|H|NL)\)"),
    _region("ITA", "Italy", "IT", r"\((I|IT)\)"),
    _region("JPN", "Japan", "JA", r"\((1|J|JP)\)"),
    _region("KOR", "Korea", "KO", r"\((K|KR)\)"),
    _region("MEX", "Mexico", "ES", r"\(MX\)"),
    _region("NOR", "Norway", "NO", r"\(No\)"),
    _region("NZ", "New Zealand", "EN"),
    _region("POR", "Portugal", "PT"),
    _region("RUS", "Russia", "RU", r"\((R|RU)\)"),
    _region("SPA", "Spain", "ES", r"\((ES|S)\)"),
    _region("SWE", "Sweden", "SV", r"\((SE|SW)\)"),
    _region("TAI", "Taiwan", "ZH", r"\(TW\)"),
    _region("UK", "United Kingdom", "EN", r"\((GB|UK)\)"),
    _region("UNK", "Unknown", "EN", r"\(Unk\)"),
    _region("USA", "USA", "EN", r"\((4|U|US)\)"),
    _region("ASI", "Asia", "ZH", r"\(As\)"),
    _region("EUR", "Europe", "EN", r"\((E|EU|PAL)\)"),
    _region("", "Scandinavia", ""),
    _region("WORLD", "World", "EN", r"\(W\)"),
]

# Three-letter language names that appear in some DAT game names
LANGUAGE_LONG_NAMES: Dict[str, str] = {
    "DAN": "DA",
    "GER": "DE",
    "ENG": "EN",
    "SPA": "ES",
    "FRE": "FR",
    "ITA": "IT",
    "DUT": "NL",
    "NOR": "NO",
    "SWE": "SV",
    "CHI": "ZH",
}

LANGUAGES: List[str] = sorted({r.language for r in REGION_OPTIONS if r.language})
