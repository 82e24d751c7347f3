from __future__ import annotations

from typing import Dict, Optional

from assetsweep.log import get_logger

logger = get_logger("oui")


def _normalize(prefix: str) -> str:
    return prefix.replace("-", "").replace(":", "").replace(".", "").upper()


def load_oui_map(path: Optional[str]) -> Dict[str, str]:
    """Read ``prefix,vendor`` lines.  A missing path yields an empty map."""
    if not path:
        return {}
    oui_map: Dict[str, str] = {}
    try:
        handle = open(path, "r", encoding="utf-8", errors="ignore")
    except OSError as e:
        logger.warning("Cannot read OUI file %s: %s", path, e)
        return {}
    with handle:
        for line in handle:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            parts = [part.strip().strip('"') for part in line.split(",", 1)]
            if len(parts) != 2 or not parts[1]:
                continue
            prefix = _normalize(parts[0])
            if len(prefix) < 6:
                continue
            oui_map[prefix[:6]] = parts[1]
    logger.debug("Loaded %d OUI prefixes from %s", len(oui_map), path)
    return oui_map


def lookup_vendor(mac: Optional[str], oui_map: Dict[str, str]) -> Optional[str]:
    if not mac or not oui_map:
        return None
    return oui_map.get(_normalize(mac)[:6])
