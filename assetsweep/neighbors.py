from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, Optional

from assetsweep import utils
from assetsweep.errors import IntrospectionError

PROC_ARP = Path("/proc/net/arp")
_MAC_RE = re.compile(r"([0-9a-fA-F]{1,2}[:-]){5}[0-9a-fA-F]{1,2}")
_INCOMPLETE = "00:00:00:00:00:00"


def normalize_mac(mac: str) -> str:
    parts = re.split(r"[:-]", mac.strip())
    return ":".join(part.zfill(2) for part in parts).lower()


def read_proc_arp(path: Path = PROC_ARP) -> Dict[str, str]:
    """Parse the Linux neighbour table into ``{ip: mac}``."""
    table: Dict[str, str] = {}
    try:
        lines = path.read_text().splitlines()
    except OSError:
        return table
    for line in lines[1:]:
        fields = line.split()
        if len(fields) < 4:
            continue
        ip, mac = fields[0], fields[3]
        if _MAC_RE.fullmatch(mac) and mac != _INCOMPLETE:
            table[ip] = normalize_mac(mac)
    return table


def _arp_command(ip: str) -> Optional[str]:
    cmd = ["arp", "-a", ip] if utils.host_os_family() == "windows" else ["arp", "-n", ip]
    try:
        proc = utils.run_command(cmd, timeout=3)
    except IntrospectionError:
        return None
    match = _MAC_RE.search(proc.stdout or "")
    if not match:
        return None
    return normalize_mac(match.group(0))


def lookup_mac(ip: str) -> Optional[str]:
    """MAC address for ``ip`` from the scanner's neighbour table, if cached.

    Only hosts on the local segment ever appear there.
    """
    if PROC_ARP.exists():
        return read_proc_arp().get(ip)
    return _arp_command(ip)
