"""Discovery allow-list matching."""

from __future__ import annotations

from glovelink.core.model import DetectedDevice, DiscoveryRules


def _service_match(device: DetectedDevice, rules: DiscoveryRules) -> bool:
    advertised = {uuid.lower() for uuid in device.service_uuids}
    return any(uuid in advertised for uuid in rules.service_uuids)


def _name_match(device: DetectedDevice, rules: DiscoveryRules) -> bool:
    if not device.name:
        return False
    if device.name in rules.name_exact:
        return True
    return any(device.name.startswith(prefix) for prefix in rules.name_prefix)


def match_score(device: DetectedDevice, rules: DiscoveryRules) -> int:
    service_match = _service_match(device, rules)
    name_match = _name_match(device, rules)
    if service_match and name_match:
        return 3
    if service_match:
        return 2
    if name_match:
        return 1
    return 0


def is_allowed(device: DetectedDevice, rules: DiscoveryRules) -> bool:
    return match_score(device, rules) > 0


def rank_devices(devices: list[DetectedDevice], rules: DiscoveryRules) -> list[DetectedDevice]:
    """Keep allowed devices, best match first, then strongest advertisement."""
    allowed = [d for d in devices if is_allowed(d, rules)]
    return sorted(
        allowed,
        key=lambda d: (match_score(d, rules), d.rssi if d.rssi is not None else -999),
        reverse=True,
    )
