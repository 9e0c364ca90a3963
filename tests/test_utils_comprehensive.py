#!/usr/bin/env python3
"""Test suite for the shared utils modules.

This suite covers:
- Filesystem helpers (atomic writes, YAML loading, directory creation)
- Machine profile validation (schema version, units, feed bounds)
- G-code VM (word parsing, modal state, constant-velocity time estimation,
  timer reset between chunks)
- Logging (idempotent setup, file output, context fields, excepthook)

Run with: pytest tests/test_utils_comprehensive.py -v
"""

import logging
import sys
from pathlib import Path

import pytest
import yaml

from src.utils import (
    fs,
    gcode_vm,
    logging_config,
    validators,
)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture(scope="module")
def project_root():
    """Project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="module")
def machine_cfg(project_root):
    """Load machine profile (shared across module)."""
    return validators.load_machine_profile(
        project_root / "cooling_control/configs/machine.yaml"
    )


@pytest.fixture()
def vm(machine_cfg):
    """Fresh VM per test."""
    return gcode_vm.GCodeVM(machine_cfg)


@pytest.fixture()
def restore_logging():
    """Undo root logger changes made by setup_logging()."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    logging_config.pop_context()


# ============================================================================
# BASIC IMPORT TESTS
# ============================================================================

def test_imports():
    """Test all utils modules import successfully."""
    assert fs is not None
    assert gcode_vm is not None
    assert logging_config is not None
    assert validators is not None


# ============================================================================
# FILESYSTEM (FS) TESTS
# ============================================================================

def test_ensure_dir_creates_directory(tmp_path):
    """Test ensure_dir creates directory."""
    new_dir = tmp_path / "new" / "nested" / "dir"
    result = fs.ensure_dir(new_dir)
    assert new_dir.is_dir()
    assert result == new_dir


def test_ensure_dir_idempotent(tmp_path):
    """Test ensure_dir is idempotent."""
    new_dir = tmp_path / "test_dir"
    fs.ensure_dir(new_dir)
    fs.ensure_dir(str(new_dir))
    assert new_dir.exists()


def test_atomic_write_text_creates_parents(tmp_path):
    """Test atomic text write into a missing directory."""
    target = tmp_path / "out" / "part.gcode"
    fs.atomic_write_text(target, "G28\n")
    assert target.read_text() == "G28\n"
    assert not (tmp_path / "out" / "part.gcode.tmp").exists()


def test_atomic_write_text_overwrites(tmp_path):
    """Test atomic write replaces an existing file."""
    target = tmp_path / "part.gcode"
    fs.atomic_write_text(target, "old\n")
    fs.atomic_write_text(target, "new\n")
    assert target.read_text() == "new\n"


def test_atomic_write_keeps_line_endings(tmp_path):
    """Test CRLF line endings are written untranslated."""
    target = tmp_path / "part.gcode"
    fs.atomic_write_text(target, "G1 X1\r\nG1 X2\r\n")
    assert target.read_bytes() == b"G1 X1\r\nG1 X2\r\n"


def test_atomic_write_failure_cleans_tmp(tmp_path):
    """Test a failed rename raises RuntimeError and leaves no tmp file."""
    target = tmp_path / "occupied"
    target.mkdir()
    with pytest.raises(RuntimeError, match="atomically"):
        fs.atomic_write_bytes(target, b"data")
    assert not (tmp_path / "occupied.tmp").exists()


def test_load_yaml(tmp_path):
    """Test YAML loading."""
    yaml_content = """
    name: test
    value: 42
    """
    yaml_file = tmp_path / "test.yaml"
    yaml_file.write_text(yaml_content)

    data = fs.load_yaml(yaml_file)
    assert data['name'] == 'test'
    assert data['value'] == 42


def test_load_yaml_empty_file(tmp_path):
    """Test an empty YAML file loads as None."""
    yaml_file = tmp_path / "empty.yaml"
    yaml_file.write_text("")
    assert fs.load_yaml(yaml_file) is None


def test_load_yaml_missing(tmp_path):
    """Test missing YAML file raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        fs.load_yaml(tmp_path / "missing.yaml")


def test_load_yaml_malformed(tmp_path):
    """Test malformed YAML names the offending file."""
    yaml_file = tmp_path / "bad.yaml"
    yaml_file.write_text("key: [unclosed\n")
    with pytest.raises(yaml.YAMLError, match="bad.yaml"):
        fs.load_yaml(yaml_file)


# ============================================================================
# VALIDATORS TESTS
# ============================================================================

def test_validators_machine_profile(machine_cfg):
    """Test shipped machine profile loads."""
    assert machine_cfg.schema_version == "machine.v1"
    assert machine_cfg.units == "mm"
    assert machine_cfg.feeds.rapid_mm_s > 0
    assert machine_cfg.feeds.default_feed_mm_s > 0


def test_validators_default_feed():
    """Test default feed is filled in when omitted."""
    profile = validators.MachineProfileV1(**{"schema": "machine.v1", "feeds": {"rapid_mm_s": 100}})
    assert profile.feeds.default_feed_mm_s == 50.0
    assert profile.name == "generic"


@pytest.mark.parametrize(
    "data, match",
    [
        ({"schema": "machine.v2", "feeds": {"rapid_mm_s": 100}}, "machine.v1"),
        ({"units": "furlong", "feeds": {"rapid_mm_s": 100}}, "Units"),
        ({"feeds": {"rapid_mm_s": 0}}, "rapid_mm_s"),
        ({"feeds": {"rapid_mm_s": 100, "default_feed_mm_s": -1}}, "default_feed_mm_s"),
        ({"name": "no feeds"}, "feeds"),
    ],
)
def test_validators_invalid_profile(tmp_path, data, match):
    """Test invalid machine profiles are rejected with the offending key."""
    path = tmp_path / "machine.yaml"
    path.write_text(yaml.safe_dump(data))
    with pytest.raises(ValueError, match=match):
        validators.load_machine_profile(path)


def test_validators_profile_not_mapping(tmp_path):
    """Test a YAML list is rejected."""
    path = tmp_path / "machine.yaml"
    path.write_text("- 1\n- 2\n")
    with pytest.raises(ValueError, match="mapping"):
        validators.load_machine_profile(path)


def test_validators_profile_missing(tmp_path):
    """Test missing profile raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        validators.load_machine_profile(tmp_path / "missing.yaml")


# ============================================================================
# G-CODE VM TESTS
# ============================================================================

def test_gcode_vm_parse_words():
    """Test word parsing with leading decimals, signs and first-wins."""
    words = gcode_vm.GCodeVM.parse_words("G1 X.5 Y-2 F1200 X9")
    assert words == {'G': 1.0, 'X': 0.5, 'Y': -2.0, 'F': 1200.0}


def test_gcode_vm_parse_words_lowercase():
    """Test lowercase words are normalized."""
    assert gcode_vm.GCodeVM.parse_words("g1 x3 f600") == {'G': 1.0, 'X': 3.0, 'F': 600.0}


def test_gcode_vm_simple_execution(vm):
    """Test VM executes simple G-code and tracks position."""
    test_gcode = """
; Test G-code
G21
G90
G1 X10 Y0 F600
G1 X10 Y20
G1 X30 Y20 Z0
"""
    seconds = vm.execute(test_gcode)

    assert vm.move_count == 3
    # 10 + 20 + 20 mm at 10 mm/s
    assert seconds == pytest.approx(5.0)
    assert vm.pos == (30.0, 20.0, 0.0)


def test_gcode_vm_default_feed(vm, machine_cfg):
    """Test moves before the first F word use the profile default feed."""
    seconds = vm.execute("G1 X50")
    assert seconds == pytest.approx(50.0 / machine_cfg.feeds.default_feed_mm_s)


def test_gcode_vm_rapid_uses_profile_speed(vm, machine_cfg):
    """Test G0 ignores the modal feed and uses the rapid speed."""
    seconds = vm.execute("G1 F60\nG0 X150")
    assert seconds == pytest.approx(150.0 / machine_cfg.feeds.rapid_mm_s)
    assert vm.feed == 60.0


def test_gcode_vm_relative_mode(vm):
    """Test G91 relative positioning."""
    vm.execute("G91\nG1 X5 F600\nG1 X5")
    assert vm.pos[0] == pytest.approx(10.0)
    assert vm.elapsed_time == pytest.approx(1.0)


def test_gcode_vm_extruder_only_move(vm):
    """Test retract time comes from the extruder distance."""
    seconds = vm.execute("G1 E-2 F2400")
    assert seconds == pytest.approx(2.0 / 40.0)
    assert vm.e == pytest.approx(-2.0)


def test_gcode_vm_relative_extrusion(vm):
    """Test M83 accumulates E and G92 E0 resets it."""
    vm.execute("M83\nG1 X1 E0.5 F600\nG1 X2 E0.5")
    assert vm.e == pytest.approx(1.0)
    vm.execute("G92 E0")
    assert vm.e == 0.0


def test_gcode_vm_set_position(vm):
    """Test G92 with axes and bare G92."""
    vm.execute("G1 X10 Y10 Z1 F600\nG92 X0")
    assert vm.pos == (0.0, 10.0, 1.0)
    vm.execute("G92")
    assert vm.pos == (0.0, 0.0, 0.0)


def test_gcode_vm_dwell(vm):
    """Test G4 with P (ms) and S (s)."""
    assert vm.execute("G4 P500") == pytest.approx(0.5)
    assert vm.execute("G4 S2") == pytest.approx(2.0)


def test_gcode_vm_inches(vm):
    """Test G20 scales distances and feeds."""
    seconds = vm.execute("G20\nG1 X1 F60")
    assert vm.pos[0] == pytest.approx(25.4)
    assert seconds == pytest.approx(1.0)


def test_gcode_vm_ignores_comments_and_non_moves(vm):
    """Test comments, G10/G11 and M codes add no time."""
    seconds = vm.execute("G1 X10 F600 ; X100\nG10\nG11\nM106 S255\nG28")
    assert seconds == pytest.approx(1.0)
    assert vm.move_count == 1


def test_gcode_vm_reset_elapsed_keeps_state(vm):
    """Test the timer resets while position and feed carry over."""
    vm.execute("G1 X10 F600")
    assert vm.get_reset_elapsed_time() == pytest.approx(1.0)
    assert vm.get_reset_elapsed_time() == 0.0

    vm.execute("G1 X20")
    assert vm.get_reset_elapsed_time() == pytest.approx(1.0)
    assert vm.pos[0] == 20.0


def test_gcode_vm_full_reset(vm, machine_cfg):
    """Test reset() restores initial state."""
    vm.execute("G91\nG1 X10 F600")
    vm.reset()
    assert vm.pos == (0.0, 0.0, 0.0)
    assert vm.absolute_mode is True
    assert vm.feed == machine_cfg.feeds.default_feed_mm_s * 60.0
    assert vm.elapsed_time == 0.0


def test_estimate_move_time_edge_cases():
    """Test zero distance and zero feed."""
    assert gcode_vm.GCodeVM.estimate_move_time(0.0, 600.0) == 0.0
    assert gcode_vm.GCodeVM.estimate_move_time(10.0, 0.0) == 0.0
    assert gcode_vm.GCodeVM.estimate_move_time(10.0, 600.0) == pytest.approx(1.0)


def test_estimate_gcode_time(machine_cfg):
    """Test the standalone convenience function."""
    assert gcode_vm.estimate_gcode_time("G1 X10 F600\nG4 P250", machine_cfg) == pytest.approx(1.25)


# ============================================================================
# LOGGING TESTS
# ============================================================================

def test_logging_idempotency(tmp_path, restore_logging):
    """Test logging file output and idempotency."""
    log_path = tmp_path / "test.log"
    logging_config.pop_context()

    logging_config.setup_logging(
        log_level="INFO",
        log_file=str(log_path),
        to_stderr=False,
        context={"app": "test"}
    )
    logger = logging_config.get_logger("utils_test")
    logger.info("hello")

    logging_config.setup_logging(
        log_level="INFO",
        log_file=str(log_path),
        to_stderr=False,
        context={"app": "test"}
    )
    logger.info("world")

    lines = log_path.read_text().strip().splitlines()
    assert len(lines) == 2
    assert lines[0].endswith("| INFO     | app=test | hello")
    assert lines[1].endswith("| INFO     | app=test | world")


def test_logging_human_format_context(tmp_path, restore_logging):
    """Test human format carries context fields."""
    log_path = tmp_path / "human.log"
    logging_config.pop_context()
    logging_config.setup_logging(log_file=str(log_path), to_stderr=False)
    logging_config.push_context(job="benchy.gcode")

    logging_config.get_logger("utils_test").warning("layer done")

    line = log_path.read_text().strip()
    assert "| WARNING  |" in line
    assert "job=benchy.gcode" in line
    assert line.endswith("layer done")


def test_logging_timestamp_is_utc_millis(tmp_path, restore_logging):
    """Test timestamps are ISO UTC with millisecond precision."""
    log_path = tmp_path / "ts.log"
    logging_config.pop_context()
    logging_config.setup_logging(log_file=str(log_path), to_stderr=False)
    logging_config.get_logger("utils_test").info("tick")

    stamp, level, message = log_path.read_text().strip().split(" | ")
    assert len(stamp) == len("2025-10-28T13:45:12.345Z")
    assert stamp[10] == "T" and stamp.endswith("Z")
    assert level.strip() == "INFO"
    assert message == "tick"


def test_logging_keeps_foreign_handlers(tmp_path, restore_logging):
    """Test reconfiguring only replaces handlers installed by setup_logging()."""
    foreign = logging.NullHandler()
    logging.getLogger().addHandler(foreign)

    first = logging_config.setup_logging(log_file=str(tmp_path / "a.log"), to_stderr=False)
    second = logging_config.setup_logging(log_file=str(tmp_path / "b.log"), to_stderr=False)

    root_handlers = logging.getLogger().handlers
    assert foreign in root_handlers
    assert first[0] not in root_handlers
    assert second[0] in root_handlers
    assert isinstance(second[0], logging.FileHandler)


def test_logging_level_filter(tmp_path, restore_logging):
    """Test records below the configured level are dropped."""
    log_path = tmp_path / "level.log"
    logging_config.setup_logging("WARNING", log_file=str(log_path), to_stderr=False)
    logger = logging_config.get_logger("utils_test")
    logger.info("hidden")
    logging_config.set_level("INFO")
    logger.info("shown")
    assert log_path.read_text().count("hidden") == 0
    assert "shown" in log_path.read_text()


def test_logging_context_push_pop(restore_logging):
    """Test context fields can be pushed and popped by key."""
    logging_config.pop_context()
    logging_config.push_context(app="cooling", job="a.gcode")
    logging_config.push_context(job="b.gcode")
    assert logging_config.get_context() == {"app": "cooling", "job": "b.gcode"}

    logging_config.pop_context(["job"])
    assert logging_config.get_context() == {"app": "cooling"}


def test_logging_rejects_unknown_level(restore_logging):
    """Test unknown level names raise ValueError."""
    with pytest.raises(ValueError, match="Unknown log level"):
        logging_config.setup_logging("LOUD")
    with pytest.raises(ValueError, match="Unknown log level"):
        logging_config.set_level("LOUD")


def test_excepthook_logs_uncaught(tmp_path, restore_logging, monkeypatch):
    """Test the installed hook logs uncaught exceptions with traceback."""
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    logging_config.pop_context()
    log_path = tmp_path / "crash.log"
    logging_config.setup_logging(log_file=str(log_path), to_stderr=False)
    logging_config.install_excepthook()

    try:
        raise RuntimeError("layer buffer exploded")
    except RuntimeError:
        sys.excepthook(*sys.exc_info())

    text = log_path.read_text()
    assert "| CRITICAL | Uncaught exception" in text
    assert "RuntimeError: layer buffer exploded" in text
