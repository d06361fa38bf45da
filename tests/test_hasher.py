import io

from romcurator.verification.hasher import (ChecksumBitmask, _finalize_hashes,
                                            _init_hash_objects, _update_hashes,
                                            algorithms_for, calculate_hashes,
                                            hash_bytes, hash_stream)


def test_update_hashes():
    objs = _init_hash_objects(("crc32", "md5"))
    _update_hashes(objs, b"123456789")

    # CRC32 of "123456789" is 0xcbf43926
    assert objs["crc32"] == 0xCBF43926
    assert objs["md5"].hexdigest() == "25f9e794323b453885f5181f1b624d0b"


def test_finalize_hashes():
    objs = _init_hash_objects(("crc32",))
    _update_hashes(objs, b"123456789")
    assert _finalize_hashes(objs) == {"crc32": "cbf43926"}


def test_calculate_hashes_file(tmp_path):
    f = tmp_path / "test.bin"
    f.write_bytes(b"123456789")

    hashes = calculate_hashes(f, algorithms=("crc32", "md5", "sha1"))

    assert hashes["crc32"] == "cbf43926"
    assert hashes["md5"] == "25f9e794323b453885f5181f1b624d0b"
    assert hashes["sha1"] == "f7c3bc1d808e04732adf679965ccc34ca7ae3441"


def test_calculate_hashes_empty_file(tmp_path):
    f = tmp_path / "empty.bin"
    f.write_bytes(b"")

    assert calculate_hashes(f, algorithms=("crc32",)) == {"crc32": "00000000"}


def test_skip_bytes_hashes_the_remainder(tmp_path):
    f = tmp_path / "headered.nes"
    f.write_bytes(b"H" * 16 + b"123456789")

    hashes = calculate_hashes(f, algorithms=("crc32",), skip_bytes=16)
    assert hashes["crc32"] == "cbf43926"


def test_missing_file_returns_empty(tmp_path):
    assert calculate_hashes(tmp_path / "nope.bin") == {}


def test_progress_callback(tmp_path):
    f = tmp_path / "data.bin"
    f.write_bytes(b"x" * 10)
    seen = []

    calculate_hashes(f, algorithms=("crc32",), block_size=4, progress_cb=seen.append)
    assert seen[-1] == 1.0
    assert len(seen) == 3


def test_stream_and_bytes_agree():
    data = b"romcurator" * 100
    assert hash_stream(io.BytesIO(data), ("crc32", "sha256"), block_size=7) == hash_bytes(
        data, ("crc32", "sha256")
    )


class TestAlgorithmsFor:
    def test_crc_is_always_present(self):
        assert algorithms_for(ChecksumBitmask.NONE) == ("crc32",)

    def test_combined_mask(self):
        mask = ChecksumBitmask.CRC32 | ChecksumBitmask.SHA1 | ChecksumBitmask.SHA256
        assert algorithms_for(mask) == ("crc32", "sha1", "sha256")
