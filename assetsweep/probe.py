from __future__ import annotations

from typing import Any, Dict, Optional

from assetsweep import neighbors, utils
from assetsweep.config import ScanSettings
from assetsweep.errors import PortProbeTimeout, ResolutionError, UnreachableTargetError
from assetsweep.fingerprint import (
    AIRPLAY_PORT,
    APPLE_MANUFACTURER,
    BONJOUR_PORT,
    SERVICE_PORTS,
    classify_asset_type,
    classify_os,
    enrich,
    estimate_macos_version,
    guess_mac_model,
)
from assetsweep.log import get_logger
from assetsweep.models import UNKNOWN, Asset, AssetType, ScanResult, is_known
from assetsweep.oui import lookup_vendor
from assetsweep.reconcile import AssetReconciler, Observation
from assetsweep.storage import ResultStore
from assetsweep.windows import IntrospectionCascade

logger = get_logger("probe")


class ProbeEngine:
    """Probes a single address end to end and records the outcome.

    :meth:`probe` never raises for target-level problems; they end up in the
    returned (and persisted) :class:`ScanResult`.
    """

    def __init__(
        self,
        results: ResultStore,
        reconciler: AssetReconciler,
        cascade: IntrospectionCascade,
        settings: Optional[ScanSettings] = None,
        oui_map: Optional[Dict[str, str]] = None,
    ) -> None:
        self.results = results
        self.reconciler = reconciler
        self.cascade = cascade
        self.settings = settings or ScanSettings()
        self.oui_map = oui_map or {}

    def probe(self, job_id: str, address: str) -> ScanResult:
        result = ScanResult(job_id=job_id, address=address)
        try:
            ip = utils.resolve_address(address)
            hostname, canonical = utils.reverse_lookup(ip)
            result.hostname = hostname
            if not utils.check_reachable(ip, self.settings.reachability_timeout):
                raise UnreachableTargetError(f"Host {address} is not reachable")
            asset, data = self._inspect(job_id, ip, hostname, canonical)
            result.asset_id = asset.id
            result.data = data
            result.successful = True
        except (ResolutionError, UnreachableTargetError) as e:
            logger.debug("Skipping %s: %s", address, e)
            result.error = str(e)
        except Exception as e:
            logger.warning("Error scanning %s: %s", address, e)
            result.error = str(e) or type(e).__name__
        self.results.add_result(result)
        return result

    def probe_ports(self, ip: str) -> Dict[str, bool]:
        """Sequential connect checks; a timeout counts as closed."""
        return {
            service: utils.is_port_open(ip, port, self.settings.port_timeout)
            for port, service in SERVICE_PORTS.items()
        }

    def _inspect(self, job_id: str, ip: str, hostname: str, canonical: str) -> tuple[Asset, Dict[str, Any]]:
        open_ports = self.probe_ports(ip)
        data: Dict[str, Any] = {
            "ip_address": ip,
            "hostname": hostname,
            "canonical_hostname": canonical,
            "open_ports": open_ports,
        }

        asset_type = classify_asset_type(hostname, open_ports)
        os_name = classify_os(hostname, open_ports)
        os_version = UNKNOWN

        if asset_type == AssetType.MAC:
            os_name = "macOS"
            data.update(self._inspect_mac(ip, hostname, open_ports))

        if asset_type == AssetType.WINDOWS or open_ports.get("RDP") or open_ports.get("SMB"):
            info = self.cascade.run(ip)
            if info:
                if is_known(info.get("os_name")):
                    os_name = info["os_name"]
                if is_known(info.get("os_version")):
                    os_version = info["os_version"]
                if asset_type == AssetType.UNKNOWN:
                    asset_type = AssetType.WINDOWS
                data.update(info)

        data.update(enrich(asset_type, hostname, data))

        mac = neighbors.lookup_mac(ip)
        if mac:
            data["mac_address"] = mac
            vendor = lookup_vendor(mac, self.oui_map)
            if vendor and not is_known(data.get("manufacturer")):
                data["manufacturer"] = vendor

        observation = Observation(
            address=ip,
            hostname=hostname,
            asset_type=asset_type,
            operating_system=os_name,
            os_version=os_version,
            online=True,
            mac_address=mac,
            attributes=data,
        )
        asset = self.reconciler.upsert(observation, job_id)
        return asset, data

    def _inspect_mac(self, ip: str, hostname: str, open_ports: Dict[str, bool]) -> Dict[str, Any]:
        timeout = self.settings.port_timeout
        info: Dict[str, Any] = {
            "os_family": "macOS",
            "manufacturer": APPLE_MANUFACTURER,
            "model": guess_mac_model(hostname),
        }
        open_ports["AirPlay"] = utils.is_port_open(ip, AIRPLAY_PORT, timeout)
        open_ports["Bonjour"] = utils.is_port_open(ip, BONJOUR_PORT, timeout)

        if open_ports.get("SSH"):
            try:
                latency = utils.connect_ms(ip, 22, timeout)
            except (PortProbeTimeout, OSError):
                return info
            info["ssh_latency_ms"] = round(latency, 1)
            # Never copied into Asset.os_version.
            info["os_version_estimate"] = estimate_macos_version(latency)
        return info
