"""Tests for assetsweep.probe.ProbeEngine with the network patched out."""
from __future__ import annotations

from contextlib import ExitStack
from unittest.mock import MagicMock, patch

import pytest

from assetsweep.config import ScanSettings
from assetsweep.errors import ResolutionError
from assetsweep.models import UNKNOWN, AssetType
from assetsweep.probe import ProbeEngine
from assetsweep.reconcile import AssetReconciler


def _engine(db, cascade_result=None, oui_map=None):
    cascade = MagicMock()
    cascade.run.return_value = cascade_result or {}
    engine = ProbeEngine(db, AssetReconciler(db), cascade, ScanSettings(), oui_map=oui_map)
    return engine, cascade


@pytest.fixture
def network():
    """Patch every network helper; tests tweak the returned mocks."""
    state = {"open": set(), "hostname": "host-1", "latency": 12.0}
    with ExitStack() as stack:
        mocks = {
            "resolve": stack.enter_context(patch("assetsweep.utils.resolve_address", side_effect=lambda a: a)),
            "reverse": stack.enter_context(
                patch("assetsweep.utils.reverse_lookup", side_effect=lambda ip: (state["hostname"], state["hostname"]))
            ),
            "reachable": stack.enter_context(patch("assetsweep.utils.check_reachable", return_value=True)),
            "port": stack.enter_context(
                patch("assetsweep.utils.is_port_open", side_effect=lambda ip, port, timeout=1.0: port in state["open"])
            ),
            "connect": stack.enter_context(
                patch("assetsweep.utils.connect_ms", side_effect=lambda ip, port, timeout=1.0: state["latency"])
            ),
            "mac": stack.enter_context(patch("assetsweep.neighbors.lookup_mac", return_value=None)),
        }
        yield state, mocks


class TestUnreachable:
    def test_unreachable_records_failure_without_asset(self, tmp_db, network):
        state, mocks = network
        mocks["reachable"].return_value = False
        engine, cascade = _engine(tmp_db)

        result = engine.probe("job-1", "10.0.0.50")

        assert result.successful is False
        assert result.error
        assert result.asset_id is None
        assert tmp_db.find_asset_by_address("10.0.0.50") is None
        assert [r.id for r in tmp_db.list_results(job_id="job-1")] == [result.id]
        cascade.run.assert_not_called()

    def test_resolution_failure(self, tmp_db, network):
        state, mocks = network
        mocks["resolve"].side_effect = ResolutionError("Cannot resolve nosuchhost")
        engine, _ = _engine(tmp_db)
        result = engine.probe("job-1", "nosuchhost")
        assert result.successful is False
        assert "nosuchhost" in result.error
        assert tmp_db.list_assets() == []


class TestReachable:
    def test_linux_host(self, tmp_db, network):
        state, _ = network
        state["hostname"] = "ubuntu-web"
        state["open"] = {22, 80}
        engine, cascade = _engine(tmp_db)

        result = engine.probe("job-1", "10.0.0.7")

        assert result.successful is True
        asset = tmp_db.get_asset(result.asset_id)
        assert asset.asset_type == AssetType.LINUX
        assert asset.operating_system == "Ubuntu Linux"
        assert asset.online is True
        assert asset.attributes["distribution"] == "Ubuntu"
        assert result.data["open_ports"]["SSH"] is True
        assert result.data["open_ports"]["SMB"] is False
        cascade.run.assert_not_called()

    def test_windows_host_uses_cascade(self, tmp_db, network, sample_windows_info):
        state, _ = network
        state["hostname"] = "host-22"
        state["open"] = {3389, 445}
        engine, cascade = _engine(tmp_db, cascade_result=dict(sample_windows_info))

        result = engine.probe("job-1", "10.0.0.22")

        cascade.run.assert_called_once_with("10.0.0.22")
        asset = tmp_db.get_asset(result.asset_id)
        assert asset.asset_type == AssetType.WINDOWS
        assert asset.operating_system == "Microsoft Windows 11 Pro"
        assert asset.os_version == "10.0.22631"
        assert asset.cpu_model == "Intel(R) Core(TM) i7-1185G7"
        assert asset.attributes["processor"] == "Intel(R) Core(TM) i7-1185G7"
        assert asset.attributes["graphics_card"] == "Intel(R) Iris(R) Xe Graphics"

    def test_smb_only_host_promoted_to_windows_by_cascade(self, tmp_db, network):
        state, _ = network
        state["hostname"] = "10.0.0.23"
        state["open"] = {445}
        engine, cascade = _engine(tmp_db, cascade_result={"likely_windows": True, "smb_enabled": True})
        result = engine.probe("job-1", "10.0.0.23")
        asset = tmp_db.get_asset(result.asset_id)
        assert asset.asset_type == AssetType.WINDOWS
        assert asset.os_version == UNKNOWN

    def test_mac_estimate_never_lands_in_os_version(self, tmp_db, network):
        state, _ = network
        state["hostname"] = "alices-macbook"
        state["open"] = {22, 7000}
        state["latency"] = 8.0
        engine, _ = _engine(tmp_db)

        result = engine.probe("job-1", "10.0.0.30")

        asset = tmp_db.get_asset(result.asset_id)
        assert asset.asset_type == AssetType.MAC
        assert asset.operating_system == "macOS"
        assert asset.os_version == UNKNOWN
        assert asset.manufacturer == "Apple Inc."
        assert asset.model == "MacBook"
        assert asset.attributes["os_version_estimate"] == "macOS 14 (Sonoma) - Estimated"
        assert result.data["open_ports"]["AirPlay"] is True
        assert result.data["open_ports"]["Bonjour"] is False

    def test_mac_bonjour_port(self, tmp_db, network):
        state, _ = network
        state["hostname"] = "studio-imac"
        state["open"] = {5353}
        engine, _ = _engine(tmp_db)

        result = engine.probe("job-1", "10.0.0.31")

        assert result.data["open_ports"]["Bonjour"] is True
        assert result.data["open_ports"]["AirPlay"] is False
        assert "Bonjour" not in engine.probe_ports("10.0.0.31")

    def test_rescan_preserves_undetected_fields(self, tmp_db, network, sample_windows_info):
        state, _ = network
        state["hostname"] = "win-desk"
        state["open"] = {3389}
        engine, cascade = _engine(tmp_db, cascade_result=dict(sample_windows_info))
        first = engine.probe("job-1", "10.0.0.40")

        cascade.run.return_value = {}
        second = engine.probe("job-2", "10.0.0.40")

        assert second.asset_id == first.asset_id
        asset = tmp_db.get_asset(first.asset_id)
        assert asset.manufacturer == "Dell Inc."
        assert asset.os_version == "10.0.22631"
        assert asset.last_scan_id == "job-2"

    def test_mac_address_and_vendor(self, tmp_db, network):
        state, mocks = network
        mocks["mac"].return_value = "aa:bb:cc:00:11:22"
        engine, _ = _engine(tmp_db, oui_map={"AABBCC": "Ubiquiti Inc."})
        state["hostname"] = "core-switch"
        state["open"] = {22, 443}

        result = engine.probe("job-1", "10.0.0.1")

        asset = tmp_db.get_asset(result.asset_id)
        assert asset.mac_address == "aa:bb:cc:00:11:22"
        assert asset.manufacturer == "Ubiquiti Inc."
        assert asset.asset_type == AssetType.NETWORK_DEVICE
        assert asset.attributes["has_web_interface"] is True

    def test_unexpected_error_is_isolated(self, tmp_db, network):
        state, mocks = network
        mocks["port"].side_effect = RuntimeError("socket exploded")
        engine, _ = _engine(tmp_db)

        result = engine.probe("job-1", "10.0.0.60")

        assert result.successful is False
        assert "socket exploded" in result.error
        assert tmp_db.list_results(job_id="job-1")[0].id == result.id
