"""Tests for assetsweep.windows (introspection cascade and strategies)."""
from __future__ import annotations

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from assetsweep.config import WindowsSettings
from assetsweep.errors import IntrospectionError
from assetsweep.windows import (
    ENV_PASSWORD,
    ENV_USER,
    AdminShareStrategy,
    IntrospectionCascade,
    LocalCommandStrategy,
    PortSignatureStrategy,
    RemoteScriptStrategy,
    WmiQueryStrategy,
    default_cascade,
    extract_value,
    parse_systeminfo,
)


def _completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def _strategy(name, result):
    strategy = MagicMock()
    strategy.name = name
    strategy.probe.return_value = result
    return strategy


class TestCascade:
    def test_stops_at_first_success(self):
        first = _strategy("wmi", {"os_name": "Windows 11"})
        rest = [_strategy(f"s{i}", {"x": i}) for i in range(4)]
        cascade = IntrospectionCascade([first, *rest])

        info = cascade.run("10.0.0.5")

        assert info["os_name"] == "Windows 11"
        assert info["introspection_method"] == "wmi"
        first.probe.assert_called_once_with("10.0.0.5")
        for strategy in rest:
            strategy.probe.assert_not_called()

    def test_falls_through_empty_results(self):
        strategies = [_strategy("a", {}), _strategy("b", {}), _strategy("c", {"likely_windows": True})]
        info = IntrospectionCascade(strategies).run("10.0.0.5")
        assert info == {"likely_windows": True, "introspection_method": "c"}

    def test_raising_strategy_is_skipped(self):
        broken = _strategy("broken", None)
        broken.probe.side_effect = RuntimeError("kaboom")
        good = _strategy("good", {"smb_accessible": True})
        info = IntrospectionCascade([broken, good]).run("10.0.0.5")
        assert info["introspection_method"] == "good"

    def test_all_empty_returns_empty(self):
        strategies = [_strategy(str(i), {}) for i in range(5)]
        assert IntrospectionCascade(strategies).run("10.0.0.5") == {}

    def test_default_order(self):
        cascade = default_cascade(WindowsSettings())
        names = [s.name for s in cascade.strategies]
        assert names == ["wmi", "admin_share", "remote_script", "local_commands", "port_signature"]


class TestWmiQueryStrategy:
    def test_parses_cim_json(self):
        payload = json.dumps({
            "Caption": "Microsoft Windows Server 2022 Standard",
            "Version": "10.0.20348",
            "TotalVisibleMemorySize": 16777216,
            "CpuName": "Intel Xeon",
            "NumberOfCores": 8,
            "GpuName": "",
            "Manufacturer": "VMware, Inc.",
            "UserName": None,
        })
        with patch("assetsweep.utils.find_powershell", return_value="powershell"), \
                patch("assetsweep.utils.run_command", return_value=_completed(payload)):
            info = WmiQueryStrategy().probe("10.0.0.5")
        assert info["os_name"] == "Microsoft Windows Server 2022 Standard"
        assert info["os_version"] == "10.0.20348"
        assert info["ram_size"] == "16.00 GB"
        assert info["cpu_cores"] == "8"
        assert info["gpu_name"] == "Unknown"
        assert info["last_user"] == "Unknown"

    def test_no_powershell_returns_empty(self):
        with patch("assetsweep.utils.find_powershell", return_value=None):
            assert WmiQueryStrategy().probe("10.0.0.5") == {}

    def test_failure_returns_empty(self):
        with patch("assetsweep.utils.find_powershell", return_value="pwsh"), \
                patch("assetsweep.utils.run_command", return_value=_completed(returncode=1, stderr="Access is denied")):
            assert WmiQueryStrategy().probe("10.0.0.5") == {}

    def test_credentials_travel_in_environment(self):
        settings = WindowsSettings(username="scan", password="s3cret", domain="CORP")
        with patch("assetsweep.utils.find_powershell", return_value="powershell"), \
                patch("assetsweep.utils.run_command", return_value=_completed("{}")) as run:
            WmiQueryStrategy(settings).probe("10.0.0.5")
        cmd = run.call_args.args[0]
        env = run.call_args.kwargs["env"]
        assert env[ENV_USER] == "CORP\\scan"
        assert env[ENV_PASSWORD] == "s3cret"
        assert not any("s3cret" in part for part in cmd)


class TestAdminShareStrategy:
    def test_smbclient_success(self):
        with patch("assetsweep.utils.host_os_family", return_value="linux"), \
                patch("assetsweep.utils.run_command", return_value=_completed("  .  D 0")) as run:
            info = AdminShareStrategy().probe("10.0.0.5")
        assert info == {"smb_accessible": True, "os_family": "Windows"}
        assert run.call_args.args[0][:2] == ["smbclient", "//10.0.0.5/C$"]

    def test_smbclient_missing(self):
        with patch("assetsweep.utils.host_os_family", return_value="linux"), \
                patch("assetsweep.utils.run_command", side_effect=IntrospectionError("smbclient is not available")):
            assert AdminShareStrategy().probe("10.0.0.5") == {}


class TestRemoteScriptStrategy:
    def test_tolerant_extraction(self):
        output = '{\n  "OSName": "Microsoft Windows 10 Pro",\n  "OSVersion": "10.0.19045",\n  "MemoryGB": 15.86,\n  "CPUModel": "AMD Ryzen 7",\n  "CPUCores": 8,\n  "GPUName": null\n}'
        with patch("assetsweep.utils.find_powershell", return_value="powershell"), \
                patch("assetsweep.utils.run_command", return_value=_completed(output)):
            info = RemoteScriptStrategy().probe("10.0.0.5")
        assert info["os_name"] == "Microsoft Windows 10 Pro"
        assert info["ram_size"] == "15.86 GB"
        assert info["cpu_cores"] == "8"
        assert info["gpu_name"] == "Unknown"
        assert info["manufacturer"] == "Unknown"

    def test_unrelated_output_is_empty(self):
        with patch("assetsweep.utils.find_powershell", return_value="powershell"), \
                patch("assetsweep.utils.run_command", return_value=_completed("WinRM cannot complete the operation")):
            assert RemoteScriptStrategy().probe("10.0.0.5") == {}


class TestLocalCommandStrategy:
    def test_skipped_off_windows(self):
        with patch("assetsweep.utils.host_os_family", return_value="linux"), \
                patch("assetsweep.utils.run_command") as run:
            assert LocalCommandStrategy().probe("10.0.0.5") == {}
        run.assert_not_called()

    def test_net_view_then_systeminfo(self):
        sysinfo = (
            "Host Name:                 FILESRV\n"
            "OS Name:                   Microsoft Windows Server 2019 Standard\n"
            "OS Version:                10.0.17763 N/A Build 17763\n"
            "System Manufacturer:       HP\n"
            "System Model:              ProLiant DL380 Gen10\n"
            "Total Physical Memory:     65,213 MB\n"
        )
        responses = [_completed("Share name  Type  Used as  Comment\n"), _completed(sysinfo)]
        with patch("assetsweep.utils.host_os_family", return_value="windows"), \
                patch("assetsweep.utils.run_command", side_effect=responses):
            info = LocalCommandStrategy().probe("10.0.0.5")
        assert info["networked"] is True
        assert info["os_name"] == "Microsoft Windows Server 2019 Standard"
        assert info["model"] == "ProLiant DL380 Gen10"
        assert info["ram_size"] == "65,213 MB"


class TestPortSignatureStrategy:
    def test_windows_ports(self):
        open_ports = {3389, 139}
        with patch("assetsweep.utils.is_port_open", side_effect=lambda a, p, t: p in open_ports):
            info = PortSignatureStrategy().probe("10.0.0.5")
        assert info == {"rdp_enabled": True, "netbios_enabled": True, "likely_windows": True}

    def test_nothing_open(self):
        with patch("assetsweep.utils.is_port_open", return_value=False):
            assert PortSignatureStrategy().probe("10.0.0.5") == {}


class TestParsers:
    @pytest.mark.parametrize(
        "text,key,expected",
        [
            ('{"Model": "OptiPlex 7090"}', "Model", "OptiPlex 7090"),
            ('{"CPUCores": 4, "x": 1}', "CPUCores", "4"),
            ('{"Model": ""}', "Model", "Unknown"),
            ('{"Other": "x"}', "Model", "Unknown"),
        ],
    )
    def test_extract_value(self, text, key, expected):
        assert extract_value(text, key) == expected

    def test_parse_systeminfo_ignores_unrelated_lines(self):
        info = parse_systeminfo("Host Name: X\nOS Name: Windows 11\nnoise\n")
        assert info == {"os_name": "Windows 11"}
