"""
CLI tests: compile, disasm, get and config commands.

Run with: pytest tests/test_cli.py -v
"""

import json
import sys

import pytest
import yaml

from rift.cell import Address
from rift.cli import CLIError, RiftCLI, _parse_arg

from contracts import CounterData, StorageData


OWNER = Address(0, b"\x01" * 32)

CWD_MODULE = """
from rift.contract import ContractBuilder
from rift.model import Schema, uint8

CounterData = Schema("CounterData", [("count", uint8)])
counter = ContractBuilder("CwdCounter", data=CounterData)
counter.expose_fields("count")
"""


def _run(capsys, *argv):
    code = RiftCLI().run(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


@pytest.fixture
def storage_boc(tmp_path, capsys):
    out = tmp_path / "storage.boc"
    code, _, _ = _run(capsys, "compile", "contracts:storage", "--out", str(out))
    assert code == 0
    return out


@pytest.fixture
def storage_data(tmp_path):
    path = tmp_path / "data.boc"
    path.write_bytes(StorageData.new(admin=OWNER, value=9).as_cell().to_boc())
    return path


class TestCompile:
    """Tests for the compile command."""

    def test_compile_builder(self, tmp_path, capsys):
        """A ContractBuilder target is compiled and written as a BOC."""
        out = tmp_path / "storage.boc"
        code, stdout, _ = _run(capsys, "compile", "contracts:storage", "--out", str(out))

        assert code == 0
        report = json.loads(stdout)
        assert report["contract"] == "Storage"
        assert report["out"] == str(out)
        assert out.read_bytes()[:4] == bytes.fromhex("b5ee9c72")
        names = [e["name"] for e in report["entries"]]
        assert names == ["recv_internal", "value", "admin"]
        assert report["entries"][0]["kind"] == "internal"
        assert report["bodies"] == [{"name": "ChangeBody", "fields": ["new_value"]}]

    def test_default_output_path(self, tmp_path, capsys, monkeypatch):
        """Without --out the BOC is named after the contract."""
        monkeypatch.chdir(tmp_path)
        code, _, _ = _run(capsys, "compile", "contracts:echo")
        assert code == 0
        assert (tmp_path / "Echo.boc").exists()

    def test_target_in_working_directory(self, tmp_path, capsys, monkeypatch):
        """Modules in the current directory are importable as targets."""
        (tmp_path / "cwd_counter.py").write_text(CWD_MODULE)
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(sys, "path", [p for p in sys.path if p not in ("", str(tmp_path))])
        monkeypatch.delitem(sys.modules, "cwd_counter", raising=False)
        code, stdout, _ = _run(capsys, "compile", "cwd_counter:counter")

        assert code == 0
        report = json.loads(stdout)
        assert report["contract"] == "CwdCounter"
        assert report["bodies"] == []
        assert (tmp_path / "CwdCounter.boc").exists()

    @pytest.mark.parametrize(
        "target",
        ["contracts", "contracts:missing", "contracts:StorageData", "no_such_module_xyz:thing"],
    )
    def test_bad_targets(self, capsys, target):
        """Targets that do not name a contract exit with 1."""
        code, stdout, stderr = _run(capsys, "compile", target)
        assert code == 1
        assert stdout == ""
        assert stderr.startswith("Error:")

    def test_quiet(self, capsys):
        """--quiet suppresses the error message."""
        code, _, stderr = _run(capsys, "--quiet", "compile", "contracts:missing")
        assert code == 1
        assert stderr == ""


class TestDisasm:
    """Tests for the disasm command."""

    def test_text_listing(self, storage_boc, capsys):
        """Text output is the raw listing."""
        code, stdout, _ = _run(capsys, "--format", "text", "disasm", str(storage_boc))
        assert code == 0
        assert stdout.startswith("recv_internal (id=0, internal")
        assert "THROWIFNOT 1001" in stdout

    def test_json_listing(self, storage_boc, capsys):
        """JSON output wraps the listing lines."""
        code, stdout, _ = _run(capsys, "disasm", str(storage_boc))
        assert code == 0
        listing = json.loads(stdout)["listing"]
        assert any(line.startswith("value (id=") for line in listing)

    def test_missing_file(self, tmp_path, capsys):
        """Unreadable files exit with 1."""
        code, _, stderr = _run(capsys, "disasm", str(tmp_path / "absent.boc"))
        assert code == 1
        assert "Cannot read" in stderr

    def test_not_a_boc(self, tmp_path, capsys):
        """Malformed BOCs exit with 2."""
        path = tmp_path / "junk.boc"
        path.write_bytes(b"junk")
        code, _, _ = _run(capsys, "disasm", str(path))
        assert code == 2


class TestGet:
    """Tests for the get command."""

    def test_field_getter(self, storage_boc, storage_data, capsys):
        """Get methods run against the given data BOC."""
        code, stdout, _ = _run(
            capsys, "get", str(storage_boc), "value", "--data", str(storage_data)
        )
        assert code == 0
        result = json.loads(stdout)
        assert result["status"] == "ok"
        assert result["stack"] == [9]

    def test_arguments(self, tmp_path, capsys):
        """Positional arguments are passed to the method."""
        code_path = tmp_path / "echo.boc"
        _run(capsys, "compile", "contracts:echo", "--out", str(code_path))
        data_path = tmp_path / "data.boc"
        data_path.write_bytes(CounterData.new(count=0).as_cell().to_boc())

        code, stdout, _ = _run(
            capsys, "get", str(code_path), "sum_and_diff", "7", "3", "--data", str(data_path)
        )
        assert code == 0
        assert json.loads(stdout)["stack"] == [10, 4]

    def test_unknown_method(self, storage_boc, storage_data, capsys):
        """A missing method is reported as a fault result, not a CLI error."""
        code, stdout, _ = _run(
            capsys, "get", str(storage_boc), "nope", "--data", str(storage_data)
        )
        assert code == 0
        result = json.loads(stdout)
        assert result["status"] == "fault"
        assert result["exit_code"] == 11

    def test_bad_argument(self, storage_boc, storage_data, capsys):
        """Unparseable arguments exit with 1."""
        code, _, stderr = _run(
            capsys, "get", str(storage_boc), "value", "abc", "--data", str(storage_data)
        )
        assert code == 1
        assert "Cannot parse argument" in stderr


class TestArguments:
    """Tests for get-method argument parsing."""

    def test_parse(self):
        """Integers, booleans and raw addresses are recognized."""
        assert _parse_arg("42") == 42
        assert _parse_arg("-5") == -5
        assert _parse_arg("0x10") == 16
        assert _parse_arg("true") is True
        assert _parse_arg("False") is False
        assert _parse_arg(OWNER.to_raw()) == OWNER

    def test_parse_rejects(self):
        """Anything else is a CLIError."""
        with pytest.raises(CLIError):
            _parse_arg("seventeen")


class TestConfigCommands:
    """Tests for the config command group."""

    def test_show_yaml(self, capsys):
        """config show prints effective values."""
        code, stdout, _ = _run(capsys, "--format", "yaml", "config", "show")
        assert code == 0
        assert yaml.safe_load(stdout)["vm"]["gas_limit"] == 1_000_000

    def test_validate(self, capsys):
        """config validate reports a clean configuration."""
        code, stdout, _ = _run(capsys, "config", "validate")
        assert json.loads(stdout) == {"valid": True, "errors": []}

    def test_schema(self, capsys):
        """config schema prints the JSON Schema."""
        code, stdout, _ = _run(capsys, "config", "schema")
        assert json.loads(stdout)["title"] == "Rift configuration"

    def test_config_file(self, tmp_path, capsys):
        """--config loads a file before running the command."""
        path = tmp_path / "rift.yaml"
        path.write_text("vm:\n  gas_limit: 1234\n")
        code, stdout, _ = _run(capsys, "--config", str(path), "config", "show")
        assert code == 0
        assert json.loads(stdout)["vm"]["gas_limit"] == 1234

    def test_default_config_file(self, tmp_path, capsys, monkeypatch):
        """./rift.yaml is picked up without --config."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        (tmp_path / "rift.yaml").write_text("vm:\n  gas_limit: 4321\n")
        code, stdout, _ = _run(capsys, "config", "show")
        assert code == 0
        assert json.loads(stdout)["vm"]["gas_limit"] == 4321

    def test_config_flag_overrides_default_file(self, tmp_path, capsys, monkeypatch):
        """--config is loaded after the default files and wins."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        (tmp_path / "rift.yaml").write_text("vm:\n  gas_limit: 4321\n  gas_credit: 50\n")
        other = tmp_path / "other.yaml"
        other.write_text("vm:\n  gas_limit: 1234\n")
        code, stdout, _ = _run(capsys, "--config", str(other), "config", "show")
        vm = json.loads(stdout)["vm"]
        assert vm["gas_limit"] == 1234
        assert vm["gas_credit"] == 50

    def test_bad_config_file(self, tmp_path, capsys):
        """An invalid config file exits with 2."""
        path = tmp_path / "rift.yaml"
        path.write_text("vm:\n  turbo: 1\n")
        code, _, stderr = _run(capsys, "--config", str(path), "config", "show")
        assert code == 2
        assert "turbo" in stderr

    def test_no_command(self, capsys):
        """No command prints help."""
        code, stdout, _ = _run(capsys)
        assert code == 0
        assert "usage: rift" in stdout
