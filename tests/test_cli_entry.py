"""Small CLI smoke tests.

This file exists to ensure CLI entrypoints don't regress. It's intentionally
lightweight: tiny DATs and inputs under tmp_path, checking that help and the
two commands run end to end.
"""

import pytest
from typer.testing import CliRunner

from romcurator import cli
from tests.helpers import crc

DAT_TEMPLATE = """<?xml version="1.0"?>
<datafile>
    <header><name>Test</name></header>
    <game name="Game">
        <rom name="Game.bin" size="{size}" crc="{crc}"/>
    </game>
</datafile>
"""

ROM_DATA = b"rom data for the cli"

runner = CliRunner()


@pytest.fixture
def layout(tmp_path, monkeypatch):
    # Keep the root logger untouched by the CLI callback
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
    dat = tmp_path / "test.dat"
    dat.write_text(DAT_TEMPLATE.format(size=len(ROM_DATA), crc=crc(ROM_DATA)), encoding="utf-8")
    inputs = tmp_path / "in"
    inputs.mkdir()
    (inputs / "renamed.bin").write_bytes(ROM_DATA)
    return {
        "dat": dat,
        "input": inputs,
        "output": tmp_path / "out",
        "settings": tmp_path / "settings.json",
    }


def _args(layout, *extra):
    return [
        "--dat", str(layout["dat"]),
        "--input", str(layout["input"]),
        "--output", str(layout["output"]),
        "--settings", str(layout["settings"]),
        *extra,
    ]


def test_help_smoke():
    res = runner.invoke(cli.app, ["--help"])
    assert res.exit_code == 0
    assert "plan" in res.stdout
    assert "write" in res.stdout


def test_plan_writes_nothing(layout):
    res = runner.invoke(cli.app, ["plan", *_args(layout)])
    assert res.exit_code == 0, res.stdout
    assert "1 candidate(s)" in res.stdout
    assert not layout["output"].exists()


def test_write_copies_and_verifies(layout):
    res = runner.invoke(cli.app, ["write", *_args(layout)])
    assert res.exit_code == 0, res.stdout
    assert (layout["output"] / "Game.bin").read_bytes() == ROM_DATA
    assert (layout["input"] / "renamed.bin").exists()


def test_write_move_deletes_inputs(layout):
    res = runner.invoke(cli.app, ["write", *_args(layout, "--command", "move")])
    assert res.exit_code == 0, res.stdout
    assert (layout["output"] / "Game.bin").read_bytes() == ROM_DATA
    assert not (layout["input"] / "renamed.bin").exists()


def test_bad_dat_exits_with_error(layout):
    layout["dat"].write_text("clrmamepro ( name \"Empty\" )", encoding="utf-8")
    res = runner.invoke(cli.app, ["plan", *_args(layout)])
    assert res.exit_code == 1
