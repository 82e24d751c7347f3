"""Tiered introspection of Windows hosts.

Strategies are tried in a fixed order and the first one that returns any
data wins.  Every strategy shells out to a management tool.  Credentials
reach child processes through environment variables only.
"""
from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List, Optional, Protocol

from assetsweep import utils
from assetsweep.config import WindowsSettings
from assetsweep.errors import IntrospectionError
from assetsweep.log import get_logger
from assetsweep.models import UNKNOWN

logger = get_logger("windows")

ENV_USER = "ASSETSWEEP_WIN_USER"
ENV_PASSWORD = "ASSETSWEEP_WIN_PASSWORD"

# Builds $cred from the environment when a username was supplied.
_CREDENTIAL_PRELUDE = r"""
$ErrorActionPreference = 'Stop'
$cred = $null
if ($env:ASSETSWEEP_WIN_USER) {
    $secure = ConvertTo-SecureString $env:ASSETSWEEP_WIN_PASSWORD -AsPlainText -Force
    $cred = New-Object System.Management.Automation.PSCredential($env:ASSETSWEEP_WIN_USER, $secure)
}
"""

_CIM_SCRIPT = _CREDENTIAL_PRELUDE + r"""
$opts = @{ ComputerName = '__HOST__' }
if ($cred) { $opts.Credential = $cred }
$session = New-CimSession @opts
try {
    $os = Get-CimInstance -CimSession $session Win32_OperatingSystem
    $cpu = Get-CimInstance -CimSession $session Win32_Processor | Select-Object -First 1
    $gpu = Get-CimInstance -CimSession $session Win32_VideoController | Select-Object -First 1
    $cs = Get-CimInstance -CimSession $session Win32_ComputerSystem
    [pscustomobject]@{
        Caption = [string]$os.Caption
        Version = [string]$os.Version
        OSArchitecture = [string]$os.OSArchitecture
        LastBootUpTime = [string]$os.LastBootUpTime
        TotalVisibleMemorySize = $os.TotalVisibleMemorySize
        CpuName = [string]$cpu.Name
        NumberOfCores = $cpu.NumberOfCores
        NumberOfLogicalProcessors = $cpu.NumberOfLogicalProcessors
        CpuManufacturer = [string]$cpu.Manufacturer
        GpuName = [string]$gpu.Name
        DriverVersion = [string]$gpu.DriverVersion
        AdapterRAM = $gpu.AdapterRAM
        Manufacturer = [string]$cs.Manufacturer
        Model = [string]$cs.Model
        SystemType = [string]$cs.SystemType
        Domain = [string]$cs.Domain
        UserName = [string]$cs.UserName
    } | ConvertTo-Json -Compress
} finally {
    Remove-CimSession $session
}
"""

_ADMIN_SHARE_SCRIPT = _CREDENTIAL_PRELUDE + r"""
$root = '\\__HOST__\C$'
if ($cred) {
    New-PSDrive -Name AssetSweepProbe -PSProvider FileSystem -Root $root -Credential $cred | Out-Null
    try { Test-Path 'AssetSweepProbe:\' } finally { Remove-PSDrive AssetSweepProbe }
} else {
    Test-Path $root
}
"""

_REMOTE_SCRIPT = _CREDENTIAL_PRELUDE + r"""
$inventory = {
    $os = Get-WmiObject -Class Win32_OperatingSystem
    $cs = Get-WmiObject -Class Win32_ComputerSystem
    $cpu = Get-WmiObject -Class Win32_Processor | Select-Object -First 1
    $gpu = Get-WmiObject -Class Win32_VideoController | Select-Object -First 1
    [PSCustomObject]@{
        OSName = $os.Caption
        OSVersion = $os.Version
        OSArchitecture = $os.OSArchitecture
        MemoryGB = [math]::Round($cs.TotalPhysicalMemory / 1GB, 2)
        CPUModel = $cpu.Name
        CPUCores = $cpu.NumberOfCores
        Manufacturer = $cs.Manufacturer
        Model = $cs.Model
        GPUName = $gpu.Name
        UserName = $cs.UserName
    } | ConvertTo-Json
}
$opts = @{ ComputerName = '__HOST__'; ScriptBlock = $inventory }
if ($cred) { $opts.Credential = $cred }
Invoke-Command @opts
"""

# systeminfo label -> inventory key
SYSTEMINFO_FIELDS = {
    "OS Name": "os_name",
    "OS Version": "os_version",
    "System Manufacturer": "manufacturer",
    "System Model": "model",
    "Total Physical Memory": "ram_size",
}

WINDOWS_SIGNATURE_PORTS = {3389: "rdp_enabled", 445: "smb_enabled", 139: "netbios_enabled"}


class IntrospectionStrategy(Protocol):
    name: str

    def probe(self, address: str) -> Dict[str, Any]:
        """Return collected attributes, or an empty dict when nothing was learned."""


def _quote(address: str) -> str:
    return address.replace("'", "''")


def _credential_env(settings: WindowsSettings) -> Dict[str, str]:
    if not settings.has_credentials:
        return {}
    user = settings.username or ""
    if settings.domain and "\\" not in user:
        user = f"{settings.domain}\\{user}"
    return {ENV_USER: user, ENV_PASSWORD: settings.password or ""}


def _known(value: Any) -> Any:
    if value is None:
        return UNKNOWN
    text = str(value).strip()
    return text if text else UNKNOWN


def _format_gb(value: Any, divisor: float) -> str:
    try:
        return f"{float(value) / divisor:.2f} GB"
    except (TypeError, ValueError):
        return UNKNOWN


def extract_value(text: str, key: str) -> str:
    """Pull ``"key": value`` out of loosely structured JSON-ish output."""
    match = re.search(rf'"{re.escape(key)}"\s*:\s*(?:"([^"]*)"|([^,\r\n}}]+))', text)
    if not match:
        return UNKNOWN
    value = match.group(1) if match.group(1) is not None else match.group(2)
    value = value.strip()
    if not value or value == "null":
        return UNKNOWN
    return value


def parse_systeminfo(output: str) -> Dict[str, str]:
    info: Dict[str, str] = {}
    for line in output.splitlines():
        if ":" not in line:
            continue
        label, value = line.split(":", 1)
        key = SYSTEMINFO_FIELDS.get(label.strip())
        if key and value.strip():
            info[key] = value.strip()
    return info


class _Strategy:
    """Shared failure handling: any error becomes an empty result."""

    name = "strategy"

    def probe(self, address: str) -> Dict[str, Any]:
        try:
            return self.collect(address)
        except IntrospectionError as e:
            logger.warning("%s failed for %s: %s", self.name, address, e)
        except Exception as e:
            logger.warning("%s failed unexpectedly for %s: %s", self.name, address, e)
        return {}

    def collect(self, address: str) -> Dict[str, Any]:
        raise NotImplementedError


class _PowerShellStrategy(_Strategy):
    def __init__(self, settings: Optional[WindowsSettings] = None) -> None:
        self.settings = settings or WindowsSettings()

    def _powershell(self, script: str, address: str, timeout: Optional[float] = None):
        exe = utils.find_powershell()
        if not exe:
            raise IntrospectionError("PowerShell is not available on this host")
        return utils.run_command(
            [exe, "-NoProfile", "-NonInteractive", "-Command", script.replace("__HOST__", _quote(address))],
            timeout=timeout or self.settings.command_timeout,
            env=_credential_env(self.settings),
        )


class WmiQueryStrategy(_PowerShellStrategy):
    name = "wmi"

    def collect(self, address: str) -> Dict[str, Any]:
        proc = self._powershell(_CIM_SCRIPT, address)
        if proc.returncode != 0:
            raise IntrospectionError((proc.stderr or proc.stdout).strip() or "CIM query failed")
        raw = proc.stdout.strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise IntrospectionError(f"Invalid CIM response: {e.msg}") from e
        if not isinstance(data, dict):
            raise IntrospectionError("Unexpected CIM response format")
        if not data:
            return {}

        info: Dict[str, Any] = {
            "os_name": _known(data.get("Caption")) if data.get("Caption") else "Windows",
            "os_version": _known(data.get("Version")),
            "os_architecture": _known(data.get("OSArchitecture")),
            "last_boot_time": _known(data.get("LastBootUpTime")),
            # TotalVisibleMemorySize is reported in KiB.
            "ram_size": _format_gb(data.get("TotalVisibleMemorySize"), 1024 * 1024),
            "cpu_model": _known(data.get("CpuName")),
            "cpu_cores": _known(data.get("NumberOfCores")),
            "cpu_threads": _known(data.get("NumberOfLogicalProcessors")),
            "cpu_manufacturer": _known(data.get("CpuManufacturer")),
            "gpu_name": _known(data.get("GpuName")),
            "gpu_driver": _known(data.get("DriverVersion")),
            "gpu_memory": _known(data.get("AdapterRAM")),
            "manufacturer": _known(data.get("Manufacturer")),
            "model": _known(data.get("Model")),
            "system_type": _known(data.get("SystemType")),
            "domain": _known(data.get("Domain")),
            "last_user": _known(data.get("UserName")),
        }
        return info


class AdminShareStrategy(_PowerShellStrategy):
    name = "admin_share"

    def collect(self, address: str) -> Dict[str, Any]:
        if utils.host_os_family() == "windows":
            proc = self._powershell(_ADMIN_SHARE_SCRIPT, address)
            accessible = proc.returncode == 0 and proc.stdout.strip().lower() == "true"
        else:
            accessible = self._smbclient(address)
        if not accessible:
            return {}
        return {"smb_accessible": True, "os_family": "Windows"}

    def _smbclient(self, address: str) -> bool:
        cmd = ["smbclient", f"//{address}/C$", "-c", "ls"]
        env: Dict[str, str] = {}
        if self.settings.has_credentials:
            # smbclient reads USER and PASSWD from the environment.
            env = {"USER": self.settings.username or "", "PASSWD": self.settings.password or ""}
            if self.settings.domain:
                cmd += ["-W", self.settings.domain]
        else:
            cmd.append("-N")
        proc = utils.run_command(cmd, timeout=self.settings.command_timeout, env=env)
        return proc.returncode == 0


class RemoteScriptStrategy(_PowerShellStrategy):
    name = "remote_script"

    def collect(self, address: str) -> Dict[str, Any]:
        proc = self._powershell(_REMOTE_SCRIPT, address)
        output = proc.stdout or ""
        if "OSName" not in output or "CPUModel" not in output:
            if proc.returncode != 0:
                raise IntrospectionError((proc.stderr or "Invoke-Command failed").strip())
            return {}

        memory = extract_value(output, "MemoryGB")
        return {
            "os_name": extract_value(output, "OSName"),
            "os_version": extract_value(output, "OSVersion"),
            "os_architecture": extract_value(output, "OSArchitecture"),
            "ram_size": f"{memory} GB" if memory != UNKNOWN else UNKNOWN,
            "cpu_model": extract_value(output, "CPUModel"),
            "cpu_cores": extract_value(output, "CPUCores"),
            "manufacturer": extract_value(output, "Manufacturer"),
            "model": extract_value(output, "Model"),
            "gpu_name": extract_value(output, "GPUName"),
            "last_user": extract_value(output, "UserName"),
        }


class LocalCommandStrategy(_Strategy):
    """``net view`` and ``systeminfo``; only usable from a Windows scanner host."""

    name = "local_commands"

    def collect(self, address: str) -> Dict[str, Any]:
        if utils.host_os_family() != "windows":
            return {}
        view = utils.run_command(["net", "view", f"\\\\{address}"], timeout=5)
        if "Share name" not in (view.stdout or ""):
            return {}

        info: Dict[str, Any] = {"networked": True, "os_family": "Windows"}
        try:
            sysinfo = utils.run_command(["systeminfo", "/s", address], timeout=10)
        except IntrospectionError as e:
            logger.debug("systeminfo failed for %s: %s", address, e)
            return info
        info.update(parse_systeminfo(sysinfo.stdout or ""))
        return info


class PortSignatureStrategy(_Strategy):
    name = "port_signature"

    def __init__(self, timeout: float = 1.0) -> None:
        self.timeout = timeout

    def collect(self, address: str) -> Dict[str, Any]:
        info: Dict[str, Any] = {}
        for port, key in WINDOWS_SIGNATURE_PORTS.items():
            if utils.is_port_open(address, port, self.timeout):
                info[key] = True
        if not info:
            return {}
        info["likely_windows"] = True
        return info


class IntrospectionCascade:
    def __init__(self, strategies: Iterable[IntrospectionStrategy]) -> None:
        self.strategies: List[IntrospectionStrategy] = list(strategies)

    def run(self, address: str) -> Dict[str, Any]:
        """Try each strategy in order; stop at the first non-empty result."""
        for strategy in self.strategies:
            name = getattr(strategy, "name", type(strategy).__name__)
            try:
                info = strategy.probe(address)
            except Exception as e:
                logger.warning("Introspection via %s raised for %s: %s", name, address, e)
                continue
            if info:
                logger.info("Retrieved Windows system info via %s for %s", name, address)
                result = dict(info)
                result["introspection_method"] = name
                return result
        logger.debug("No introspection strategy produced data for %s", address)
        return {}


def default_cascade(settings: Optional[WindowsSettings] = None, port_timeout: float = 1.0) -> IntrospectionCascade:
    settings = settings or WindowsSettings()
    return IntrospectionCascade([
        WmiQueryStrategy(settings),
        AdminShareStrategy(settings),
        RemoteScriptStrategy(settings),
        LocalCommandStrategy(),
        PortSignatureStrategy(port_timeout),
    ])
