from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from battmon import cli
from battmon.core.model import AdapterState, Service

from fakes import FakeAdapter

runner = CliRunner()


@pytest.fixture
def patched(monkeypatch: pytest.MonkeyPatch, adapter: FakeAdapter) -> FakeAdapter:
    monkeypatch.setattr(cli, "_build_transport", lambda config: adapter)
    return adapter


def test_devices_command(patched: FakeAdapter) -> None:
    patched.add_battery_device("AA:00:00:00:00:01", "Trail Headphones")
    patched.add_battery_device("BB:00:00:00:00:02", None)
    result = runner.invoke(cli.app, ["devices"])
    assert result.exit_code == 0
    assert "AA:00:00:00:00:01 Trail Headphones" in result.stdout
    assert "BB:00:00:00:00:02 BB:00:00:00:00:02" in result.stdout


def test_devices_command_without_devices(patched: FakeAdapter) -> None:
    result = runner.invoke(cli.app, ["devices"])
    assert result.exit_code == 0
    assert "No connected devices" in result.stdout


def test_adapter_command(patched: FakeAdapter) -> None:
    result = runner.invoke(cli.app, ["adapter"])
    assert result.exit_code == 0
    assert "hci0 (00:1A:7D:DA:71:13)" in result.stdout


def test_adapter_command_without_adapter(patched: FakeAdapter) -> None:
    patched.state = AdapterState(available=False, powered=False)
    result = runner.invoke(cli.app, ["adapter"])
    assert result.exit_code == 0
    assert "No adapter" in result.stdout


def test_watch_single_device(patched: FakeAdapter) -> None:
    patched.add_battery_device("AA:00:00:00:00:01", "Trail Headphones", level=41)
    result = runner.invoke(cli.app, ["watch", "--count", "1"])
    assert result.exit_code == 0
    assert "Watching AA:00:00:00:00:01 (Trail Headphones)" in result.stdout
    assert "AA:00:00:00:00:01 (Trail Headphones): 41 % [medium]" in result.stdout
    assert patched.notifying == set()


def test_watch_explicit_address(patched: FakeAdapter) -> None:
    patched.add_battery_device("AA:00:00:00:00:01", "Trail Headphones", level=41)
    patched.add_battery_device("BB:00:00:00:00:02", "Mouse", level=5)
    result = runner.invoke(cli.app, ["watch", "BB:00:00:00:00:02", "--count", "1"])
    assert result.exit_code == 0
    assert "BB:00:00:00:00:02 (Mouse): 5 % [low]" in result.stdout


def test_watch_requires_address_with_multiple_devices(patched: FakeAdapter) -> None:
    patched.add_battery_device("AA:00:00:00:00:01", "Trail Headphones", level=41)
    patched.add_battery_device("BB:00:00:00:00:02", "Mouse", level=5)
    result = runner.invoke(cli.app, ["watch"])
    assert result.exit_code == 1
    assert "Multiple candidate devices found" in result.stderr
    assert "Traceback" not in result.stdout
    assert "Traceback" not in result.stderr


def test_watch_unknown_address_is_clean_error(patched: FakeAdapter) -> None:
    result = runner.invoke(cli.app, ["watch", "CC:00:00:00:00:03"])
    assert result.exit_code == 1
    assert "Error: No tracked device with address 'CC:00:00:00:00:03'" in result.stderr


class _ServiceGoneAdapter(FakeAdapter):
    """Lists the Battery service at startup only."""

    async def get_services(self, address: str) -> list[Service]:
        services = await super().get_services(address)
        if len(self.called("get_services", address)) > 1:
            return []
        return services


def test_watch_stops_when_service_is_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    adapter = _ServiceGoneAdapter()
    adapter.add_battery_device("AA:00:00:00:00:01", "Trail Headphones", level=41)
    monkeypatch.setattr(cli, "_build_transport", lambda config: adapter)
    result = runner.invoke(cli.app, ["watch", "--count", "1"])
    assert result.exit_code == 0
    assert "No Battery service selected on AA:00:00:00:00:01" in result.stdout


def test_invalid_config_is_clean_error(patched: FakeAdapter, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("service_uuid: nope\n", encoding="utf-8")
    result = runner.invoke(cli.app, ["devices", "--config", str(config_path)])
    assert result.exit_code == 1
    assert "Error: service_uuid must be" in result.stderr
