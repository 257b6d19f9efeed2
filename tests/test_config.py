from __future__ import annotations

from pathlib import Path

import pytest

from battmon.core.config import MonitorConfig, load_config
from battmon.core.errors import ConfigLoadError, ConfigValidationError
from battmon.core.model import BATTERY_LEVEL_CHAR_UUID, BATTERY_SERVICE_UUID


def _write_config(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def test_defaults_without_config_file() -> None:
    config = load_config()
    assert config == MonitorConfig()
    assert config.service_uuid == BATTERY_SERVICE_UUID
    assert config.characteristic_uuid == BATTERY_LEVEL_CHAR_UUID


def test_user_config_is_loaded_and_short_uuids_expanded(isolated_config_home: Path) -> None:
    _write_config(
        isolated_config_home / "battmon" / "config.yaml",
        """
service_uuid: "180F"
characteristic_uuid: "2A19"
request_timeout_s: 2.5
rescan_interval_s: 10
""",
    )

    config = load_config()
    assert config.service_uuid == BATTERY_SERVICE_UUID
    assert config.characteristic_uuid == BATTERY_LEVEL_CHAR_UUID
    assert config.request_timeout_s == 2.5
    assert config.rescan_interval_s == 10.0
    assert config.scan_timeout_s == 5.0


def test_empty_config_file_yields_defaults(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "empty.yaml", "")
    assert load_config(path) == MonitorConfig()


def test_invalid_uuid_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "bad.yaml", 'service_uuid: "battery"\n')
    with pytest.raises(ConfigValidationError):
        load_config(path)


def test_unknown_key_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "extra.yaml", "history_size: 10\n")
    with pytest.raises(ConfigValidationError) as exc:
        load_config(path)
    assert "Schema validation failed" in str(exc.value)


def test_non_positive_timeout_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "timeout.yaml", "request_timeout_s: 0\n")
    with pytest.raises(ConfigValidationError) as exc:
        load_config(path)
    assert "request_timeout_s" in str(exc.value)


def test_duplicate_yaml_keys_rejected(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path / "dup.yaml",
        """
scan_timeout_s: 3
scan_timeout_s: 4
""",
    )
    with pytest.raises(ConfigValidationError):
        load_config(path)


def test_non_mapping_root_rejected(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "list.yaml", "- 180f\n- 2a19\n")
    with pytest.raises(ConfigValidationError):
        load_config(path)


def test_missing_explicit_path_is_a_load_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError):
        load_config(tmp_path / "nope.yaml")
