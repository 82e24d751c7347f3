from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from assetsweep.log import get_logger
from assetsweep.models import UNKNOWN, Asset, AssetType, is_known
from assetsweep.storage import AssetStore

logger = get_logger("reconcile")

# Collected attributes that also live in a named inventory column.
PROMOTED_FIELDS = ("cpu_model", "cpu_cores", "ram_size", "gpu_name", "last_user", "model", "manufacturer")


@dataclass
class Observation:
    """What one probe learned about one address."""

    address: str
    hostname: Optional[str] = None
    asset_type: AssetType = AssetType.UNKNOWN
    operating_system: str = UNKNOWN
    os_version: str = UNKNOWN
    online: bool = True
    mac_address: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)


def _promoted(observation: Observation) -> Dict[str, str]:
    values = {}
    for name in PROMOTED_FIELDS:
        value = observation.attributes.get(name)
        if is_known(value):
            values[name] = str(value)
    return values


def merge_asset(existing: Optional[Asset], observation: Observation, scan_id: str, now: Optional[float] = None) -> Asset:
    """Fold ``observation`` into ``existing`` (or a new asset).

    A field is only overwritten by a value the probe actually determined.
    Attribute keys from earlier scans that this probe did not report stay.
    """
    now = now if now is not None else time.time()
    if existing is None:
        asset = Asset(address=observation.address, first_seen=now)
    else:
        asset = existing.model_copy(deep=True)

    asset.online = observation.online
    asset.last_seen = now
    asset.last_scan_id = scan_id

    if is_known(observation.hostname):
        asset.hostname = observation.hostname
    if observation.asset_type != AssetType.UNKNOWN:
        asset.asset_type = observation.asset_type
    if is_known(observation.operating_system):
        asset.operating_system = observation.operating_system
    if is_known(observation.os_version):
        asset.os_version = observation.os_version
    if is_known(observation.mac_address):
        asset.mac_address = observation.mac_address

    for name, value in _promoted(observation).items():
        setattr(asset, name, value)

    for key, value in observation.attributes.items():
        if is_known(value) or key not in asset.attributes:
            asset.attributes[key] = value

    return asset


class AssetReconciler:
    def __init__(self, store: AssetStore) -> None:
        self.store = store
        self._lock = threading.Lock()

    def upsert(self, observation: Observation, scan_id: str) -> Asset:
        # Held across find and save: one row per address.
        with self._lock:
            existing = self.store.find_asset_by_address(observation.address)
            asset = merge_asset(existing, observation, scan_id)
            self.store.save_asset(asset)
        if existing is None:
            logger.info("New asset discovered: %s (%s)", asset.address, asset.asset_type.value)
        else:
            logger.debug("Updated asset %s", asset.address)
        return asset
