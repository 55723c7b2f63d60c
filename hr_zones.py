"""Shared heart-rate zone thresholds, labels, and distributions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Tuple

from constants import FALLBACK_MAX_HR

DEFAULT_MAX_HR = float(FALLBACK_MAX_HR)

HR_ZONE_ORDER: Tuple[str, ...] = (
    'Zone 1',
    'Zone 2',
    'Zone 3',
    'Zone 4',
    'Zone 5',
)

HR_ZONE_RANGE_LABELS: Dict[str, str] = {
    'Zone 1': 'Zone 1 (<60%)',
    'Zone 2': 'Zone 2 (60-70%)',
    'Zone 3': 'Zone 3 (70-80%)',
    'Zone 4': 'Zone 4 (80-90%)',
    'Zone 5': 'Zone 5 (>90%)',
}

# Karvonen reserve fractions: (lower bound, description)
KARVONEN_BANDS: Tuple[Tuple[float, str], ...] = (
    (0.5, 'Recovery'),
    (0.6, 'Aerobic'),
    (0.7, 'Tempo'),
    (0.8, 'Threshold'),
    (0.9, 'Anaerobic'),
)


@dataclass(frozen=True)
class HrZone:
    zone: int
    min: int
    max: int
    description: str


def normalize_max_hr(max_hr, default: float = DEFAULT_MAX_HR) -> float:
    """Return a valid max-HR value."""
    try:
        value = float(max_hr or 0)
    except (TypeError, ValueError):
        value = 0.0
    if value <= 0:
        return float(default)
    return value


def get_zone_thresholds(max_hr) -> Dict[str, Tuple[float, float]]:
    """Return (lower, upper) bpm bounds per zone. Zone 5 tops out at max HR."""
    max_hr_value = normalize_max_hr(max_hr)
    edges = (0.0, 0.60, 0.70, 0.80, 0.90, 1.0)
    return {
        zone: (max_hr_value * edges[idx], max_hr_value * edges[idx + 1])
        for idx, zone in enumerate(HR_ZONE_ORDER)
    }


def classify_hr_zone_by_ratio(ratio: float) -> str:
    """Classify by HR/max-HR ratio using 5-zone boundaries."""
    try:
        ratio = float(ratio)
    except (TypeError, ValueError):
        ratio = 0.0
    if ratio < 0.60:
        return 'Zone 1'
    if ratio < 0.70:
        return 'Zone 2'
    if ratio < 0.80:
        return 'Zone 3'
    if ratio < 0.90:
        return 'Zone 4'
    return 'Zone 5'


def classify_hr_zone(hr_value, max_hr) -> str:
    """Classify a heart-rate value into one of 5 zones."""
    try:
        hr = float(hr_value or 0)
    except (TypeError, ValueError):
        hr = 0.0
    if hr <= 0:
        return 'Zone 1'
    ratio = hr / normalize_max_hr(max_hr)
    return classify_hr_zone_by_ratio(ratio)


def zone_seconds_from_histogram(histogram: Mapping[int, float], max_hr) -> Dict[str, float]:
    """
    Bucket a {bpm: seconds} histogram into zone totals.

    The histogram lets the parser collect time-at-HR in its single pass before
    the effective max HR of the recording is known.
    """
    zone_seconds = {zone: 0.0 for zone in HR_ZONE_ORDER}
    for bpm, seconds in histogram.items():
        if bpm <= 0:
            continue
        zone_seconds[classify_hr_zone(bpm, max_hr)] += seconds
    return zone_seconds


def karvonen_zones(resting_hr, max_hr) -> List[HrZone]:
    """
    Build five training zones from heart-rate reserve (max - resting).

    Zone 5 is capped at the athlete's max HR.
    """
    max_value = int(normalize_max_hr(max_hr))
    try:
        resting = int(resting_hr or 0)
    except (TypeError, ValueError):
        resting = 0
    reserve = max_value - resting

    def _calc(pct):
        return int(reserve * pct + resting + 0.5)

    zones = []
    for idx, (lower, description) in enumerate(KARVONEN_BANDS):
        upper = _calc(KARVONEN_BANDS[idx + 1][0]) if idx + 1 < len(KARVONEN_BANDS) else max_value
        zones.append(HrZone(zone=idx + 1, min=_calc(lower), max=upper, description=description))
    return zones


def split_zone_distribution(splits: Iterable, zones: List[HrZone]) -> List[float]:
    """Percentage of split time per zone, each split assigned by its average HR."""
    distribution = [0.0] * len(zones)
    for split in splits:
        zone_index = 0
        for idx in range(len(zones) - 1, 0, -1):
            if split.avg_hr >= zones[idx].min:
                zone_index = idx
                break
        distribution[zone_index] += split.time_seconds

    total = sum(distribution)
    return [(d / total) * 100 if total > 0 else 0.0 for d in distribution]
