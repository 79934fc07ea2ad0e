from glovelink.core.device_match import is_allowed, match_score, rank_devices
from glovelink.core.model import DetectedDevice, DiscoveryRules

NORDIC = "6e400001-b5a3-f393-e0a9-e50e24dcca9e"

RULES = DiscoveryRules(
    service_uuids=(NORDIC,),
    name_prefix=("Neuro", "HM-"),
    name_exact=("DSD TECH",),
)


def test_match_score_prefers_combined_match() -> None:
    device = DetectedDevice(address="AA:BB:CC:00:11:22", name="NeuroGlove", service_uuids=(NORDIC.upper(),))
    assert match_score(device, RULES) == 3


def test_exact_name_must_match_whole_name() -> None:
    assert is_allowed(DetectedDevice(address="1", name="DSD TECH"), RULES)
    assert not is_allowed(DetectedDevice(address="2", name="DSD TECH 2"), RULES)


def test_unnamed_device_allowed_by_service_only() -> None:
    device = DetectedDevice(address="1", name="", service_uuids=(NORDIC,))
    assert match_score(device, RULES) == 2


def test_rank_filters_and_orders_candidates() -> None:
    devices = [
        DetectedDevice(address="weak", name="HM-10", rssi=-80),
        DetectedDevice(address="other", name="Speaker", rssi=-40),
        DetectedDevice(address="strong", name="HM-19", rssi=-50),
        DetectedDevice(address="service", name="", service_uuids=(NORDIC,), rssi=-90),
    ]

    ranked = rank_devices(devices, RULES)
    assert [d.address for d in ranked] == ["service", "strong", "weak"]
