# tests/cli/test_cli_commands.py
import inspect
import json

import pytest
from click.testing import CliRunner

from dss_core import __version__
from dss_core.cli import main as cli_main
from dss_core.cli.main import dsscore
from dss_core.crypto.bls import BlsKeyPair


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "block_number.json"


def _invoke(runner, *args, **kwargs):
    return runner.invoke(dsscore, list(args), obj={}, **kwargs)


def test_version(runner):
    result = _invoke(runner, "--version")
    assert result.exit_code == 0
    assert __version__ in result.output


def test_checkpoint_show_missing_file(runner, store_path):
    result = _invoke(runner, "checkpoint", "show", "--store", str(store_path))
    assert result.exit_code == 0
    assert "0" in result.output


def test_checkpoint_set_then_show(runner, store_path):
    result = _invoke(runner, "checkpoint", "set", "16", "--store", str(store_path))
    assert result.exit_code == 0
    assert json.loads(store_path.read_text()) == {"block_number": 16}

    result = _invoke(runner, "checkpoint", "show", "--store", str(store_path))
    assert result.exit_code == 0
    assert "16" in result.output


def test_checkpoint_backwards_needs_confirmation(runner, store_path):
    store_path.write_text(json.dumps({"block_number": 100}))

    result = _invoke(runner, "checkpoint", "set", "40", "--store", str(store_path), input="n\n")
    assert result.exit_code == 1
    assert json.loads(store_path.read_text()) == {"block_number": 100}

    result = _invoke(runner, "checkpoint", "set", "40", "--store", str(store_path), "--yes")
    assert result.exit_code == 0
    assert json.loads(store_path.read_text()) == {"block_number": 40}


def test_checkpoint_set_overwrites_unreadable_file(runner, store_path):
    store_path.write_text("garbage")
    result = _invoke(runner, "checkpoint", "set", "5", "--store", str(store_path))
    assert result.exit_code == 0
    assert json.loads(store_path.read_text()) == {"block_number": 5}


def test_checkpoint_show_unreadable_file_fails(runner, store_path):
    store_path.write_text("garbage")
    result = _invoke(runner, "checkpoint", "show", "--store", str(store_path))
    assert result.exit_code == 1


def test_checkpoint_set_rejects_negative(runner, store_path):
    result = _invoke(runner, "checkpoint", "set", "--store", str(store_path), "--", "-1")
    assert result.exit_code == 2
    assert not store_path.exists()


def test_generate_bls_key(runner, monkeypatch):
    monkeypatch.setattr(BlsKeyPair, "generate", classmethod(lambda cls: cls(secret_key=12345)))
    result = _invoke(runner, "keys", "generate-bls")
    assert result.exit_code == 0
    assert "BLS_KEYPAIR" in result.output
    assert BlsKeyPair(secret_key=12345).to_base64() in result.output


def test_entry_script_starts_with_shebang():
    with open(inspect.getsourcefile(cli_main), encoding="utf-8") as f:
        assert f.readline().startswith("#!/usr/bin/env python3")
