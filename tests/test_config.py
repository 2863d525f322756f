"""
Configuration and logging tests: defaults, environment precedence, file
loading with schema validation, and structured log output.

Run with: pytest tests/test_config.py -v
"""

import json

import pytest
import yaml
from jsonschema import Draft202012Validator

from rift.config import ConfigError, ConfigManager, get_config, get_config_manager
from rift.observability import (
    LogEvent,
    RiftLayer,
    get_logger,
    new_operation_id,
    operation_id_var,
    operation_scope,
    timed_operation,
)


# =============================================================================
# CONFIGURATION
# =============================================================================

class TestConfigValues:
    """Tests for defaults, overrides and validation."""

    def test_defaults(self):
        """Defaults apply when nothing is set."""
        config = get_config()
        assert config.vm.gas_limit.get() == 1_000_000
        assert config.vm.gas_credit.get() == 10_000
        assert config.tracer.max_paths.get() == 256
        assert config.tracer.prune_dead_code.get() is True
        assert config.observability.log_level.get() == "warning"

    def test_singleton(self):
        """The manager is shared process-wide."""
        assert get_config_manager() is ConfigManager()
        assert get_config() is ConfigManager().config

    def test_set_and_get_by_path(self):
        """Dotted paths address individual values."""
        mgr = get_config_manager()
        mgr.set("vm.gas_limit", 5000)
        assert mgr.get("vm.gas_limit") == 5000
        assert get_config().vm.gas_limit.get() == 5000

    def test_env_wins(self, monkeypatch):
        """Environment variables take precedence over runtime values."""
        mgr = get_config_manager()
        mgr.set("vm.gas_limit", 7)
        monkeypatch.setenv("RIFT_VM_GAS_LIMIT", "5000")
        assert mgr.get("vm.gas_limit") == 5000

    def test_env_bool(self, monkeypatch):
        """Boolean env values accept the usual spellings."""
        monkeypatch.setenv("RIFT_TRACER_PRUNE_DEAD_CODE", "off")
        assert get_config().tracer.prune_dead_code.get() is False

    def test_bad_env_reported(self, monkeypatch):
        """Unparseable env values show up in validate()."""
        monkeypatch.setenv("RIFT_VM_GAS_LIMIT", "lots")
        errors = get_config_manager().validate()
        assert len(errors) == 1
        assert errors[0].startswith("vm.gas_limit")

    @pytest.mark.parametrize(
        "path,value",
        [
            ("vm.max_stack_depth", 0),
            ("vm.gas_limit", "many"),
            ("tracer.prune_dead_code", 1),
            ("observability.log_level", "verbose"),
            ("vm.workchain", 200),
        ],
    )
    def test_invalid_values(self, path, value):
        """Wrong types, failed validators and bad choices are refused."""
        with pytest.raises(ConfigError):
            get_config_manager().set(path, value)

    def test_invalid_paths(self):
        """Unknown paths and sections are refused."""
        mgr = get_config_manager()
        with pytest.raises(ConfigError):
            mgr.set("vm.turbo", 1)
        with pytest.raises(ConfigError):
            mgr.set("vm", 1)
        with pytest.raises(ConfigError):
            mgr.get("nope.value")

    def test_reset(self):
        """reset() drops overrides."""
        mgr = get_config_manager()
        mgr.set("tracer.max_paths", 3)
        mgr.reset()
        assert mgr.get("tracer.max_paths") == 256

    def test_runtime_beats_file(self):
        """A file loaded after set() does not replace the runtime value."""
        mgr = get_config_manager()
        mgr.set("vm.gas_limit", 5000)
        mgr.load_dict({"vm": {"gas_limit": 7000, "gas_credit": 300}})
        assert mgr.get("vm.gas_limit") == 5000
        assert mgr.get("vm.gas_credit") == 300

    def test_layer_order(self, monkeypatch):
        """Environment beats runtime, runtime beats file, file beats default."""
        value = get_config().vm.gas_credit
        value.set_file(20_000)
        assert value.get() == 20_000
        value.set(30_000)
        assert value.get() == 30_000
        monkeypatch.setenv("RIFT_VM_GAS_CREDIT", "40000")
        assert value.get() == 40_000
        monkeypatch.delenv("RIFT_VM_GAS_CREDIT")
        value.reset()
        assert value.get() == 10_000

    def test_yaml_dump(self):
        """to_yaml() emits the effective values."""
        get_config_manager().set("vm.workchain", -1)
        dumped = yaml.safe_load(get_config().to_yaml())
        assert dumped["vm"]["workchain"] == -1
        assert dumped["observability"]["log_format"] == "json"


class TestConfigFiles:
    """Tests for YAML loading and schema validation."""

    def test_load_file(self, tmp_path):
        """Values from a YAML file are applied."""
        path = tmp_path / "rift.yaml"
        path.write_text("vm:\n  gas_limit: 2000\ntracer:\n  max_paths: 8\n")
        mgr = get_config_manager()
        mgr.load_from_file(path)
        assert mgr.get("vm.gas_limit") == 2000
        assert mgr.get("tracer.max_paths") == 8

    def test_empty_file(self, tmp_path):
        """An empty file changes nothing."""
        path = tmp_path / "rift.yaml"
        path.write_text("")
        get_config_manager().load_from_file(path)
        assert get_config().vm.gas_limit.get() == 1_000_000

    def test_missing_file(self, tmp_path):
        """Missing files raise ConfigError."""
        with pytest.raises(ConfigError, match="not found"):
            get_config_manager().load_from_file(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path):
        """Malformed YAML raises ConfigError."""
        path = tmp_path / "rift.yaml"
        path.write_text("vm: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            get_config_manager().load_from_file(path)

    def test_unknown_key_rejected(self, tmp_path):
        """Keys outside the schema are rejected."""
        path = tmp_path / "rift.yaml"
        path.write_text("vm:\n  turbo: true\n")
        with pytest.raises(ConfigError, match="turbo"):
            get_config_manager().load_from_file(path)

    def test_bad_file_applies_nothing(self, tmp_path):
        """A file with one bad value leaves every value untouched."""
        path = tmp_path / "rift.yaml"
        path.write_text("tracer:\n  max_paths: 8\nvm:\n  gas_limit: lots\n")
        with pytest.raises(ConfigError, match="gas_limit"):
            get_config_manager().load_from_file(path)
        assert get_config().tracer.max_paths.get() == 256

    def test_top_level_must_be_mapping(self):
        """Non-mapping documents are rejected."""
        with pytest.raises(ConfigError):
            get_config_manager().load_dict(["vm"])

    def test_load_defaults(self, tmp_path, monkeypatch):
        """load_defaults() picks up ./rift.yaml."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        (tmp_path / "rift.yaml").write_text("vm:\n  default_now: 42\n")
        get_config_manager().load_defaults()
        assert get_config().vm.default_now.get() == 42

    def test_exported_schema(self):
        """The exported schema is a valid Draft 2020-12 schema."""
        schema = get_config_manager().export_schema()
        Draft202012Validator.check_schema(schema)
        vm = schema["properties"]["vm"]
        assert vm["additionalProperties"] is False
        assert vm["properties"]["gas_limit"]["type"] == "integer"
        log_level = schema["properties"]["observability"]["properties"]["log_level"]
        assert "debug" in log_level["enum"]


# =============================================================================
# LOGGING
# =============================================================================

class TestLogging:
    """Tests for structured log output."""

    def test_json_lines(self, capsys):
        """Events are JSON objects with layer and context."""
        get_config_manager().set("observability.log_level", "info")
        logger = get_logger("config-test", RiftLayer.CONFIG)
        logger.info("Loaded", source="test", entries=3)

        line = capsys.readouterr().err.strip().splitlines()[-1]
        event = json.loads(line)
        assert event["level"] == "info"
        assert event["layer"] == "config"
        assert event["message"] == "Loaded"
        assert event["context"] == {"source": "test", "entries": 3}

    def test_level_filtering(self, capsys):
        """Events below the configured level are dropped."""
        logger = get_logger("config-test", RiftLayer.CONFIG)
        logger.info("hidden")
        assert capsys.readouterr().err == ""

    def test_text_format(self, capsys):
        """The text format is a single readable line."""
        mgr = get_config_manager()
        mgr.set("observability.log_level", "info")
        mgr.set("observability.log_format", "text")
        get_logger("config-test", RiftLayer.VM).info("Executed", gas=7)
        line = capsys.readouterr().err.strip()
        assert "INFO" in line
        assert "[vm] Executed gas=7" in line

    def test_operation_id(self, capsys):
        """The active operation id is attached to events."""
        get_config_manager().set("observability.log_level", "info")
        token = new_operation_id("compile")
        try:
            get_logger("config-test", RiftLayer.LOWERING).info("step")
            expected = operation_id_var.get()
        finally:
            operation_id_var.reset(token)
        event = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert event["operation_id"] == expected
        assert expected.startswith("compile-")

    def test_compile_has_operation_id(self, capsys):
        """Every event of one compile carries the same compile id."""
        from rift.contract import compile_contract
        from contracts import storage

        get_config_manager().set("observability.log_level", "info")
        compile_contract(storage.build())
        events = [json.loads(line) for line in capsys.readouterr().err.strip().splitlines()]
        ids = {event.get("operation_id") for event in events}
        assert len(events) > 1
        assert len(ids) == 1
        assert ids.pop().startswith("compile-")
        assert operation_id_var.get() == ""

    def test_execution_has_operation_id(self, capsys):
        """Entry point runs log under their own exec id."""
        from rift.contract import compile_contract
        from contracts import CounterData, echo

        get_config_manager().set("observability.log_level", "debug")
        box = compile_contract(echo.build()).instantiate(CounterData.new(count=0))
        capsys.readouterr()
        box.run_get_method("count")
        box.run_get_method("count")
        events = [json.loads(line) for line in capsys.readouterr().err.strip().splitlines()]
        executed = [e for e in events if e["message"] == "Executed entry point"]
        assert len(executed) == 2
        assert all(e["operation_id"].startswith("exec-") for e in executed)
        assert executed[0]["operation_id"] != executed[1]["operation_id"]

    def test_scope_keeps_outer_id(self):
        """Nested scopes reuse the active id and restore nothing early."""
        with operation_scope("outer") as outer:
            with operation_scope("inner") as inner:
                assert inner == outer
            assert operation_id_var.get() == outer
        assert operation_id_var.get() == ""

    def test_timed_operation(self, capsys):
        """timed_operation logs duration and success."""
        get_config_manager().set("observability.log_level", "info")
        logger = get_logger("config-test", RiftLayer.HARNESS)

        @timed_operation(logger, "work")
        def work():
            return 5

        assert work() == 5
        event = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert event["operation"] == "work"
        assert event["message"] == "Operation work completed"
        assert event["duration_ms"] >= 0

    def test_timed_operation_failure(self, capsys):
        """Failures are logged as warnings and re-raised."""
        logger = get_logger("config-test", RiftLayer.HARNESS)

        @timed_operation(logger, "boom")
        def boom():
            raise RuntimeError("x")

        with pytest.raises(RuntimeError):
            boom()
        event = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert event["level"] == "warning"
        assert event["message"] == "Operation boom failed"

    def test_event_drops_empty_fields(self):
        """to_dict omits empty values."""
        event = LogEvent(timestamp="t", level="info", logger="l", message="m")
        assert set(event.to_dict()) == {"timestamp", "level", "logger", "message"}
