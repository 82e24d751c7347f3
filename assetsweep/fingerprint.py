from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple

from assetsweep.models import UNKNOWN, AssetType

# Well-known service ports probed on every reachable host.
SERVICE_PORTS: Dict[int, str] = {
    21: "FTP",
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    80: "HTTP",
    443: "HTTPS",
    445: "SMB",
    3389: "RDP",
}

AIRPLAY_PORT = 7000
BONJOUR_PORT = 5353
APPLE_MANUFACTURER = "Apple Inc."

Ports = Dict[str, bool]
Predicate = Callable[[str, Ports], bool]


def _name_has(*tokens: str) -> Predicate:
    return lambda host, ports: any(token in host for token in tokens)


def _port(service: str) -> Predicate:
    return lambda host, ports: bool(ports.get(service))


def _ssh_without_smb(host: str, ports: Ports) -> bool:
    return bool(ports.get("SSH")) and not ports.get("SMB")


# Ordered: the first matching predicate wins.  Hostname tokens are checked
# before port signals.  This is a heuristic and not authoritative.
ASSET_TYPE_RULES: List[Tuple[Predicate, AssetType]] = [
    (_name_has("win", "desktop", "laptop"), AssetType.WINDOWS),
    (_port("RDP"), AssetType.WINDOWS),
    (_name_has("linux", "ubuntu", "debian", "cent"), AssetType.LINUX),
    (_name_has("mac", "apple", "mbp", "imac"), AssetType.MAC),
    (_name_has("cisco", "router", "switch", "gateway", "access-point"), AssetType.NETWORK_DEVICE),
    (_ssh_without_smb, AssetType.LINUX),
]

OS_RULES: List[Tuple[Predicate, str]] = [
    (_name_has("win"), "Windows"),
    (_name_has("ubuntu"), "Ubuntu Linux"),
    (_name_has("debian"), "Debian Linux"),
    (_name_has("cent"), "CentOS Linux"),
    (_name_has("fedora"), "Fedora Linux"),
    (_name_has("red hat", "redhat"), "Red Hat Linux"),
    (_name_has("linux"), "Linux"),
    (_name_has("mac", "apple", "mbp", "imac"), "macOS"),
    (_port("RDP"), "Windows"),
    (_ssh_without_smb, "Unix/Linux"),
]

# Hostname token -> model; "Mac" when nothing matches.
MAC_MODEL_RULES: List[Tuple[str, str]] = [
    ("macbook", "MacBook"),
    ("mbp", "MacBook"),
    ("imac", "iMac"),
    ("mac mini", "Mac Mini"),
    ("macmini", "Mac Mini"),
    ("macpro", "Mac Pro"),
]

# SSH connect latency upper bound (ms) -> version label.
MACOS_LATENCY_RULES: List[Tuple[float, str]] = [
    (20.0, "macOS 14 (Sonoma)"),
    (30.0, "macOS 13 (Ventura)"),
]
MACOS_LATENCY_FALLBACK = "macOS 12 or earlier"

LINUX_DISTRIBUTIONS: List[Tuple[Predicate, str]] = [
    (_name_has("ubuntu"), "Ubuntu"),
    (_name_has("debian"), "Debian"),
    (_name_has("cent"), "CentOS"),
    (_name_has("fedora"), "Fedora"),
    (lambda host, ports: "red" in host and "hat" in host, "Red Hat"),
    (_name_has("suse"), "SUSE"),
]

NETWORK_DEVICE_TYPES: List[Tuple[Predicate, str]] = [
    (_name_has("router"), "Router"),
    (_name_has("switch"), "Switch"),
    (_name_has("firewall"), "Firewall"),
    (_name_has("access-point", "accesspoint", "access point"), "Access Point"),
]

# Inventory field -> alias kept for Windows hosts.
WINDOWS_ALIASES = {
    "cpu_model": "processor",
    "ram_size": "memory",
    "gpu_name": "graphics_card",
}


def _first_match(rules, hostname: Optional[str], open_ports: Ports, default):
    host = (hostname or "").lower()
    for predicate, value in rules:
        if predicate(host, open_ports):
            return value
    return default


def classify_asset_type(hostname: Optional[str], open_ports: Ports) -> AssetType:
    return _first_match(ASSET_TYPE_RULES, hostname, open_ports, AssetType.UNKNOWN)


def classify_os(hostname: Optional[str], open_ports: Ports) -> str:
    return _first_match(OS_RULES, hostname, open_ports, UNKNOWN)


def guess_mac_model(hostname: Optional[str]) -> str:
    host = (hostname or "").lower()
    for token, model in MAC_MODEL_RULES:
        if token in host:
            return model
    return "Mac"


def estimate_macos_version(latency_ms: float) -> str:
    """
    Guess a macOS release from SSH connect latency.
    Network jitter dominates this signal, so the label always says "Estimated".
    """
    label = MACOS_LATENCY_FALLBACK
    for bound, name in MACOS_LATENCY_RULES:
        if latency_ms < bound:
            label = name
            break
    return f"{label} - Estimated"


def open_ports_by_service(attrs: Dict[str, Any]) -> Ports:
    ports = attrs.get("open_ports")
    return ports if isinstance(ports, dict) else {}


def enrich(asset_type: AssetType, hostname: Optional[str], attrs: Dict[str, Any]) -> Dict[str, Any]:
    """Derive type-specific attributes from what the probe collected."""
    ports = open_ports_by_service(attrs)
    extra: Dict[str, Any] = {}

    if asset_type == AssetType.LINUX:
        extra["distribution"] = _first_match(LINUX_DISTRIBUTIONS, hostname, ports, UNKNOWN)
        extra["os_family"] = "Linux"
    elif asset_type == AssetType.NETWORK_DEVICE:
        extra["device_type"] = _first_match(NETWORK_DEVICE_TYPES, hostname, ports, UNKNOWN)
        if ports.get("HTTP") or ports.get("HTTPS"):
            extra["has_web_interface"] = True
        if ports.get("SSH") or ports.get("Telnet"):
            extra["has_command_line_access"] = True
    elif asset_type == AssetType.WINDOWS:
        extra["os_family"] = "Windows"
        for field, alias in WINDOWS_ALIASES.items():
            if field in attrs:
                extra[alias] = attrs[field]
    elif asset_type == AssetType.MAC:
        extra["os_family"] = "macOS"
        extra["mac_type"] = guess_mac_model(hostname)
    return extra
