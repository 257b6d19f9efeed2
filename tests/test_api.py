from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from battmon import api
from battmon.core.model import ServiceRemoved

from fakes import FakeAdapter


def test_api_exports_stable_symbols() -> None:
    for name in api.__all__:
        assert hasattr(api, name)


def test_client_tracks_selected_device(adapter: FakeAdapter) -> None:
    service, _ = adapter.add_battery_device("AA:00:00:00:00:01", "Trail Headphones", level=72)
    adapter.add_battery_device("BB:00:00:00:00:02", "Mouse", level=12)
    updates: list[api.ViewUpdate] = []

    async def scenario() -> None:
        async with api.Client(adapter=adapter, config=api.MonitorConfig()) as client:
            assert client.ready
            assert client.adapter_state is not None
            assert client.registry_snapshot() == (
                ("AA:00:00:00:00:01", "Trail Headphones"),
                ("BB:00:00:00:00:02", "Mouse"),
            )
            client.add_listener(updates.append)

            client.on_user_select("AA:00:00:00:00:01")
            await client.wait_idle()
            value = client.current_display_value()
            assert value is not None
            assert (value.percentage, value.tier, value.label) == (72, "high", "72 %")
            assert client.selection.phase is api.SelectionPhase.ACTIVE

            adapter.remove_service(service)
            adapter.emit(ServiceRemoved(service))
            await client.wait_idle()
            assert client.selection.phase is api.SelectionPhase.UNSELECTED
            assert client.registry_snapshot() == (("BB:00:00:00:00:02", "Mouse"),)

        assert not client.ready
        assert adapter.notifying == set()

    asyncio.run(scenario())
    assert api.ViewUpdate.VALUE in updates
    assert api.ViewUpdate.REGISTRY in updates


def test_client_rejects_unknown_device(adapter: FakeAdapter) -> None:
    async def scenario() -> None:
        async with api.Client(adapter=adapter, config=api.MonitorConfig()) as client:
            with pytest.raises(api.DeviceSelectionError):
                client.on_user_select("CC:00:00:00:00:03")

    asyncio.run(scenario())


def test_client_loads_config_file(adapter: FakeAdapter, tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("request_timeout_s: 1.5\n", encoding="utf-8")
    client = api.Client(adapter=adapter, config_path=config_path)
    assert client.config.request_timeout_s == 1.5
