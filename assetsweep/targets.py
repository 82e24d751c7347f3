"""Expansion of job target specs into concrete addresses.

Segments are approximate on purpose: a /16 is capped at one sub-block so a
single job stays bounded.
"""
from __future__ import annotations

import ipaddress
from typing import Iterable, List

from assetsweep.log import get_logger

logger = get_logger("targets")

HOSTS_PER_BLOCK = 254
SAMPLED_SUB_BLOCK = 1


def _ipv4_octets(base: str) -> List[str]:
    ipaddress.IPv4Address(base)
    return base.split(".")


def _expand_prefix(base: str, prefix_length: int) -> List[str]:
    octets = _ipv4_octets(base)
    if prefix_length == 24:
        prefix = ".".join(octets[:3])
        return [f"{prefix}.{i}" for i in range(1, HOSTS_PER_BLOCK + 1)]
    if prefix_length == 16:
        prefix = ".".join(octets[:2])
        return [f"{prefix}.{SAMPLED_SUB_BLOCK}.{i}" for i in range(1, HOSTS_PER_BLOCK + 1)]
    return [base]


def _expand_range(base: str, end_text: str) -> List[str]:
    octets = _ipv4_octets(base)
    start = int(octets[3])
    end = int(end_text)
    if end > 255 or end < start:
        raise ValueError(f"range end {end} outside {start}..255")
    prefix = ".".join(octets[:3])
    return [f"{prefix}.{i}" for i in range(start, end + 1)]


def expand_segment(segment: str) -> List[str]:
    """Expand one segment string.  Never raises.

    ``a.b.c.d/24``  -> a.b.c.1 .. a.b.c.254
    ``a.b.c.d/16``  -> a.b.1.1 .. a.b.1.254 (bounded sample)
    ``a.b.c.d/N``   -> a.b.c.d for any other N
    ``a.b.c.X-Y``   -> a.b.c.X .. a.b.c.Y
    anything else   -> the literal string
    """
    segment = segment.strip()
    try:
        if "/" in segment:
            base, prefix_text = segment.split("/", 1)
            return _expand_prefix(base.strip(), int(prefix_text))
        if "-" in segment:
            parts = segment.split("-")
            if len(parts) == 2:
                return _expand_range(parts[0].strip(), parts[1].strip())
            logger.warning("Unexpected range format %r, scanning it as a single target", segment)
    except ValueError as e:
        logger.warning("Error expanding segment %r: %s", segment, e)
    return [segment]


def expand_targets(addresses: Iterable[str] | None, segments: Iterable[str] | None) -> List[str]:
    """Discrete addresses first, then each segment in order.  No deduplication."""
    targets: List[str] = [a.strip() for a in (addresses or []) if a and a.strip()]
    for segment in segments or []:
        if segment and segment.strip():
            targets.extend(expand_segment(segment))
    return targets
