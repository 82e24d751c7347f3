from __future__ import annotations

import os
import platform
import shutil
import socket
import subprocess
import time
from typing import Iterable, Mapping, Optional, Tuple

from assetsweep.errors import IntrospectionError, PortProbeTimeout, ResolutionError

LIVENESS_PORTS = (80, 443, 22, 445, 3389, 139)


def host_os_family() -> str:
    """Lower-cased OS family of the machine running the scanner."""
    return platform.system().lower()


def resolve_address(address: str) -> str:
    try:
        return socket.gethostbyname(address)
    except (socket.gaierror, UnicodeError) as e:
        raise ResolutionError(f"Cannot resolve {address}: {e}") from e


def reverse_lookup(ip: str) -> Tuple[str, str]:
    """Return ``(hostname, canonical_hostname)``, falling back to the address."""
    try:
        name, aliases, _ = socket.gethostbyaddr(ip)
    except (socket.herror, socket.gaierror, OSError):
        return ip, ip
    short = aliases[0] if aliases else name
    return name, socket.getfqdn(short) if short != name else name


def connect_ms(address: str, port: int, timeout: float = 1.0) -> float:
    """TCP connect to ``address:port`` and return the elapsed milliseconds."""
    start = time.monotonic()
    try:
        with socket.create_connection((address, port), timeout=timeout):
            pass
    except socket.timeout as e:
        raise PortProbeTimeout(f"{address}:{port} timed out after {timeout}s") from e
    return (time.monotonic() - start) * 1000


def is_port_open(address: str, port: int, timeout: float = 1.0) -> bool:
    try:
        connect_ms(address, port, timeout)
    except (PortProbeTimeout, OSError):
        return False
    return True


def _ping_command(address: str, timeout: float) -> list[str]:
    system = host_os_family()
    if system == "windows":
        return ["ping", "-n", "1", "-w", str(int(timeout * 1000)), address]
    if system == "darwin":
        return ["ping", "-c", "1", "-t", str(max(1, int(timeout))), address]
    return ["ping", "-c", "1", "-W", str(max(1, int(timeout))), address]


def ping_host(address: str, timeout: float = 1.0) -> bool:
    """True if the host answers one ICMP echo via the system ``ping``."""
    try:
        result = subprocess.run(
            _ping_command(address, timeout),
            check=False,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout + 1,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0


def tcp_alive(address: str, timeout: float, ports: Iterable[int] = LIVENESS_PORTS) -> bool:
    """A completed handshake or an RST on any port proves the host is up."""
    deadline = time.monotonic() + timeout
    for port in ports:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        try:
            connect_ms(address, port, min(1.0, remaining))
            return True
        except ConnectionRefusedError:
            return True
        except (PortProbeTimeout, OSError):
            continue
    return False


def check_reachable(address: str, timeout: float = 5.0) -> bool:
    """ICMP first, then TCP liveness, within one overall ``timeout``."""
    start = time.monotonic()
    if ping_host(address, timeout=min(timeout, 2.0)):
        return True
    remaining = timeout - (time.monotonic() - start)
    return remaining > 0 and tcp_alive(address, remaining)


def find_powershell() -> Optional[str]:
    return shutil.which("powershell") or shutil.which("pwsh")


def run_command(
    cmd: list[str],
    timeout: float,
    env: Optional[Mapping[str, str]] = None,
) -> subprocess.CompletedProcess:
    """Run a child process, turning launch failures into IntrospectionError."""
    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)
    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
            env=full_env,
        )
    except FileNotFoundError as e:
        raise IntrospectionError(f"{cmd[0]} is not available on this host") from e
    except subprocess.TimeoutExpired as e:
        raise IntrospectionError(f"{cmd[0]} timed out after {timeout}s") from e
