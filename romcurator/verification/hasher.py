import hashlib
import logging
import zlib
from enum import IntFlag
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class ChecksumBitmask(IntFlag):
    NONE = 0
    CRC32 = 1
    MD5 = 2
    SHA1 = 4
    SHA256 = 8


_BITMASK_NAMES = {
    ChecksumBitmask.CRC32: "crc32",
    ChecksumBitmask.MD5: "md5",
    ChecksumBitmask.SHA1: "sha1",
    ChecksumBitmask.SHA256: "sha256",
}


def algorithms_for(bitmask: int) -> Tuple[str, ...]:
    """Algorithm names enabled in ``bitmask``; crc32 is always included."""
    algs = ["crc32"]
    for flag, name in _BITMASK_NAMES.items():
        if flag != ChecksumBitmask.CRC32 and bitmask & flag:
            algs.append(name)
    return tuple(algs)


def calculate_hashes(
    file_path: Path,
    algorithms: Tuple[str, ...] = ("crc32", "md5", "sha1"),
    block_size: int = 65536,
    progress_cb: Optional[Callable[[float], None]] = None,
    skip_bytes: int = 0,
) -> Dict[str, str]:
    """
    Calculate hashes for a file, optionally ignoring its first ``skip_bytes``.
    Supported algorithms: 'crc32', 'md5', 'sha1', 'sha256'.
    Returns a dictionary with algorithm names as keys and hex strings as values,
    or an empty dictionary when the file cannot be read.
    """
    file_path = Path(file_path)
    try:
        total_size = max(0, file_path.stat().st_size - skip_bytes)
        with open(file_path, "rb") as f:
            if skip_bytes:
                f.seek(skip_bytes)
            return hash_stream(f, algorithms, block_size, progress_cb, total_size)
    except OSError as e:
        logger.debug("Could not hash %s: %s", file_path, e)
        return {}


def hash_stream(
    stream: BinaryIO,
    algorithms: Tuple[str, ...] = ("crc32", "md5", "sha1"),
    block_size: int = 65536,
    progress_cb: Optional[Callable[[float], None]] = None,
    total_size: int = 0,
) -> Dict[str, str]:
    hash_objs = _init_hash_objects(algorithms)
    processed = 0
    while True:
        chunk = stream.read(block_size)
        if not chunk:
            break
        _update_hashes(hash_objs, chunk)

        if progress_cb and total_size > 0:
            processed += len(chunk)
            progress_cb(processed / total_size)

    return _finalize_hashes(hash_objs)


def hash_bytes(data: bytes, algorithms: Tuple[str, ...] = ("crc32", "md5", "sha1")) -> Dict[str, str]:
    objs = _init_hash_objects(algorithms)
    _update_hashes(objs, data)
    return _finalize_hashes(objs)


def _init_hash_objects(algorithms: Tuple[str, ...]) -> Dict:
    objs = {}
    for alg in algorithms:
        if alg == "crc32":
            objs["crc32"] = 0
        elif alg == "md5":
            objs["md5"] = hashlib.md5()
        elif alg == "sha1":
            objs["sha1"] = hashlib.sha1()
        elif alg == "sha256":
            objs["sha256"] = hashlib.sha256()
    return objs


def _update_hashes(objs: Dict, chunk: bytes):
    for alg, obj in objs.items():
        if alg == "crc32":
            objs["crc32"] = zlib.crc32(chunk, objs["crc32"])
        else:
            obj.update(chunk)


def _finalize_hashes(objs: Dict) -> Dict[str, str]:
    res = {}
    for alg, obj in objs.items():
        if alg == "crc32":
            res["crc32"] = f"{obj & 0xFFFFFFFF:08x}"
        else:
            res[alg] = obj.hexdigest()
    return res
