"""
TCX Track Parser - Core Aggregation Engine
Deterministic parsing of Training Center XML recordings. No I/O, no AI.
"""

import logging
import math
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import reduce
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from constants import (
    BEST_EFFORT_TARGETS,
    ELEVATION_NOISE_M,
    FALLBACK_MAX_HR,
    MAX_SAMPLE_SECONDS,
    MIN_SAMPLE_SECONDS,
    SERIES_TARGET_POINTS,
    SPLIT_DISTANCE_M,
    TCX_NAMESPACE,
)
from hr_zones import HR_ZONE_ORDER, zone_seconds_from_histogram
from models import BestEffort, DataPoint, ParsedActivity, Split

logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "No trackpoints found in TCX document."


class NoDataError(ValueError):
    """The document holds no trackable samples (empty or malformed)."""


@dataclass(frozen=True)
class TrackPoint:
    time: float                 # epoch seconds
    distance: float             # cumulative meters, as recorded
    hr: int = 0
    cadence: Optional[int] = None
    altitude: Optional[float] = None


# ---------------------------------------------------------------------------
# XML helpers
# ---------------------------------------------------------------------------

def _local_name(tag) -> str:
    return tag.split('}')[-1] if '}' in tag else tag


def _find(el, tag):
    """Find a child element, trying the TCX namespace then bare."""
    if el is None:
        return None
    child = el.find(f'{{{TCX_NAMESPACE}}}{tag}')
    if child is None:
        child = el.find(tag)
    return child


def _findall(root, tag):
    found = root.findall(f'.//{{{TCX_NAMESPACE}}}{tag}')
    if not found:
        found = root.findall(f'.//{tag}')
    return found


def _text(el, tag) -> Optional[str]:
    child = _find(el, tag)
    if child is not None and child.text:
        return child.text.strip()
    return None


def _to_float(val) -> Optional[float]:
    if val is None:
        return None
    try:
        value = float(val)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def _to_int(val) -> Optional[int]:
    value = _to_float(val)
    return int(value) if value is not None else None


def _parse_time(text) -> Optional[float]:
    if not text:
        return None
    # Naive times are taken as UTC; any fractional-second precision is accepted
    try:
        stamp = pd.to_datetime(text, utc=True)
    except (TypeError, ValueError) as exc:
        logger.debug("Unreadable trackpoint time %r: %s", text, exc)
        return None
    if pd.isna(stamp):
        return None
    return stamp.timestamp()


def _extension_value(pt, field_name) -> Optional[float]:
    """Find a value anywhere under the trackpoint's <Extensions> (e.g. ns3:RunCadence)."""
    ext = _find(pt, 'Extensions')
    if ext is None:
        return None
    for child in ext.iter():
        if child.text and _local_name(child.tag).lower() == field_name.lower():
            return _to_float(child.text)
    return None


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _load_root(document: str):
    if not document or not document.strip():
        raise NoDataError(NO_DATA_MESSAGE)
    try:
        return ET.fromstring(document.lstrip('\ufeff'))
    except ET.ParseError as exc:
        raise NoDataError(NO_DATA_MESSAGE) from exc


def _fill_times(raw_times: Sequence[Optional[float]]) -> List[float]:
    """Carry the last known timestamp forward; leading gaps take the first known one."""
    last = next((t for t in raw_times if t is not None), 0.0)
    filled = []
    for t in raw_times:
        if t is not None:
            last = t
        filled.append(last)
    return filled


def _read_points(root) -> Tuple[List[TrackPoint], bool]:
    rows = []
    raw_times = []
    for pt in _findall(root, 'Trackpoint'):
        raw_times.append(_parse_time(_text(pt, 'Time')))

        hr = _to_int(_text(_find(pt, 'HeartRateBpm'), 'Value'))

        cadence = _to_int(_text(pt, 'Cadence'))
        if cadence is None:
            cadence = _to_int(_extension_value(pt, 'RunCadence'))

        rows.append((
            _to_float(_text(pt, 'DistanceMeters')),
            hr,
            cadence,
            _to_float(_text(pt, 'AltitudeMeters')),
        ))

    times = _fill_times(raw_times)
    points = [
        TrackPoint(
            time=t,
            distance=dist if dist is not None else 0.0,
            hr=hr if hr and hr > 0 else 0,
            cadence=cadence,
            altitude=alt,
        )
        for t, (dist, hr, cadence, alt) in zip(times, rows)
    ]
    has_times = any(t is not None for t in raw_times)
    return points, has_times


def read_trackpoints(document: str) -> List[TrackPoint]:
    """Extract every Trackpoint; unparseable fields fall back to their defaults."""
    points, _ = _read_points(_load_root(document))
    return points


def read_total_calories(root) -> Optional[int]:
    """Sum of Lap/Calories, or None when no lap carries one."""
    values = [_to_int(_text(lap, 'Calories')) for lap in _findall(root, 'Lap')]
    values = [v for v in values if v is not None]
    return sum(values) if values else None


# ---------------------------------------------------------------------------
# Downsampling
# ---------------------------------------------------------------------------

def series_stride(total_points: int, target_points: int = SERIES_TARGET_POINTS) -> int:
    return max(1, total_points // max(1, target_points))


def series_predicate(total_points: int, target_points: int = SERIES_TARGET_POINTS) -> Callable[[int], bool]:
    """Return idx -> keep? for chart sampling. The last sample is always kept."""
    stride = series_stride(total_points, target_points)
    last_index = total_points - 1
    return lambda idx: idx % stride == 0 or idx == last_index


def _median_sample_seconds(times: Sequence[float]) -> float:
    deltas = np.diff(np.asarray(times, dtype=float)) if len(times) > 1 else np.array([])
    deltas = deltas[deltas > 0]
    seconds = float(np.median(deltas)) if deltas.size else 1.0
    return max(MIN_SAMPLE_SECONDS, min(MAX_SAMPLE_SECONDS, seconds))


# ---------------------------------------------------------------------------
# Forward pass
# ---------------------------------------------------------------------------

@dataclass
class ActivityAccumulator:
    """
    Running state of the single forward pass.

    One instance per parse; `add` folds a sample in and returns the
    accumulator so the pass reads as a reduce over (index, point) pairs.
    """

    keep_sample: Callable[[int], bool]
    default_sample_seconds: float = 1.0

    start_time: Optional[float] = None
    end_time: Optional[float] = None
    last_time: Optional[float] = None
    total_distance: float = 0.0

    hr_sum: int = 0
    hr_count: int = 0
    max_hr: int = 0
    cadence_sum: int = 0
    cadence_count: int = 0

    elevation_gain: float = 0.0
    last_altitude: Optional[float] = None

    hr_histogram: Dict[int, float] = field(default_factory=dict)

    split_index: int = 1
    split_start_time: float = 0.0
    split_start_distance: float = 0.0
    split_hr_sum: int = 0
    split_hr_count: int = 0
    split_cadence_sum: int = 0
    split_cadence_count: int = 0

    splits: List[Split] = field(default_factory=list)
    series: List[DataPoint] = field(default_factory=list)
    times: List[float] = field(default_factory=list)
    distances: List[float] = field(default_factory=list)

    def add(self, index: int, point: TrackPoint) -> 'ActivityAccumulator':
        # 1. Time bounds
        if index == 0:
            self.start_time = point.time
            self.split_start_time = point.time
        if self.end_time is None or point.time > self.end_time:
            self.end_time = point.time

        # 2. Distance (clamped: never decreases)
        if point.distance > self.total_distance:
            self.total_distance = point.distance

        # 3. Heart rate
        if point.hr > 0:
            self.hr_sum += point.hr
            self.hr_count += 1
            self.split_hr_sum += point.hr
            self.split_hr_count += 1
            if point.hr > self.max_hr:
                self.max_hr = point.hr
            self.hr_histogram[point.hr] = self.hr_histogram.get(point.hr, 0.0) + self._sample_seconds(point.time)

        # 4. Cadence
        if point.cadence is not None and point.cadence > 0:
            self.cadence_sum += point.cadence
            self.cadence_count += 1
            self.split_cadence_sum += point.cadence
            self.split_cadence_count += 1

        # 5. Elevation (gain only, noise filtered, raw value carried forward)
        if point.altitude is not None:
            if self.last_altitude is not None and point.altitude - self.last_altitude > ELEVATION_NOISE_M:
                self.elevation_gain += point.altitude - self.last_altitude
            self.last_altitude = point.altitude

        # 6. Chart series
        if self.keep_sample(index):
            self.series.append(DataPoint(
                distance=self.total_distance,
                altitude=point.altitude if point.altitude is not None else 0.0,
                hr=point.hr,
                cadence=point.cadence,
            ))

        # 7. Splits
        self._close_splits(point.time)

        self.last_time = point.time
        self.times.append(point.time)
        self.distances.append(self.total_distance)
        return self

    def _sample_seconds(self, now: float) -> float:
        seconds = self.default_sample_seconds
        if self.last_time is not None and now - self.last_time > 0:
            seconds = now - self.last_time
        return max(MIN_SAMPLE_SECONDS, min(MAX_SAMPLE_SECONDS, seconds))

    def _close_splits(self, now: float) -> None:
        crossed = int(self.total_distance // SPLIT_DISTANCE_M) - self.split_index + 1
        if crossed <= 0:
            return

        duration = now - self.split_start_time
        covered = self.total_distance - self.split_start_distance
        avg_hr = _round_half_up(self.split_hr_sum / self.split_hr_count) if self.split_hr_count else 0
        avg_cadence = (
            _round_half_up(self.split_cadence_sum / self.split_cadence_count)
            if self.split_cadence_count else None
        )

        # A sparse gap may jump several kilometers; share the span evenly.
        share_time = duration / crossed
        share_distance = covered / crossed
        pace = share_time / (share_distance / 1000) if share_distance > 0 else 0.0
        if crossed > 1:
            logger.debug("Sample gap crossed %d split boundaries at %.0f m", crossed, self.total_distance)

        for _ in range(crossed):
            self.splits.append(Split(
                kilometer=self.split_index,
                time_seconds=share_time,
                avg_hr=avg_hr,
                avg_cadence=avg_cadence,
                distance_meters=share_distance,
                pace_seconds=pace,
            ))
            self.split_index += 1

        self.split_start_time = now
        self.split_start_distance = self.total_distance
        self.split_hr_sum = 0
        self.split_hr_count = 0
        self.split_cadence_sum = 0
        self.split_cadence_count = 0


def fold_trackpoints(points: Sequence[TrackPoint], target_points: int = SERIES_TARGET_POINTS) -> ActivityAccumulator:
    initial = ActivityAccumulator(
        keep_sample=series_predicate(len(points), target_points),
        default_sample_seconds=_median_sample_seconds([p.time for p in points]),
    )
    return reduce(lambda acc, item: acc.add(*item), enumerate(points), initial)


# ---------------------------------------------------------------------------
# Best efforts
# ---------------------------------------------------------------------------

def find_best_effort(times: Sequence[float], distances: Sequence[float], target: float) -> Optional[float]:
    """
    Shortest elapsed time over any contiguous window spanning >= target meters.

    `distances` must be non-decreasing. Two monotonic pointers: for every right
    edge the left edge moves forward as far as the window still qualifies.
    """
    best = None
    left = 0
    for right in range(len(distances)):
        if distances[right] - distances[left] < target:
            continue
        while left < right and distances[right] - distances[left + 1] >= target:
            left += 1
        elapsed = times[right] - times[left]
        if best is None or elapsed < best:
            best = elapsed
    return best


def compute_best_efforts(times, distances, total_distance) -> List[BestEffort]:
    efforts = []
    for target, label in BEST_EFFORT_TARGETS:
        if total_distance < target:
            continue
        best_time = find_best_effort(times, distances, target)
        if best_time is None:
            continue
        efforts.append(BestEffort(
            label=label,
            distance_meters=target,
            time_seconds=best_time,
            pace_seconds=best_time / (target / 1000),
        ))
    return efforts


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def parse_activity(document: str) -> ParsedActivity:
    """
    Parse a TCX document into a ParsedActivity.

    Raises NoDataError when there is nothing to track. Any other missing or
    unreadable field degrades to its default.
    """
    root = _load_root(document)
    points, has_times = _read_points(root)
    if not points:
        raise NoDataError(NO_DATA_MESSAGE)

    acc = fold_trackpoints(points)

    total_distance = acc.total_distance
    duration = acc.end_time - acc.start_time
    avg_hr = _round_half_up(acc.hr_sum / acc.hr_count) if acc.hr_count else 0
    avg_cadence = _round_half_up(acc.cadence_sum / acc.cadence_count) if acc.cadence_count else None
    avg_pace = duration / (total_distance / 1000) if total_distance > 0 else 0.0

    # Relative effort: minutes x (avg / max HR) x 10
    effective_max_hr = acc.max_hr if acc.max_hr > 0 else FALLBACK_MAX_HR
    training_load = _round_half_up((duration / 60) * (avg_hr / effective_max_hr) * 10)

    zone_seconds = zone_seconds_from_histogram(acc.hr_histogram, effective_max_hr)

    logger.debug(
        "Parsed %d trackpoints: %.0f m in %.0f s, %d splits",
        len(points), total_distance, duration, len(acc.splits),
    )

    return ParsedActivity(
        start_time=datetime.fromtimestamp(acc.start_time, tz=timezone.utc) if has_times else None,
        total_distance_meters=total_distance,
        total_duration_seconds=duration,
        avg_hr=avg_hr,
        max_hr=acc.max_hr,
        avg_cadence=avg_cadence,
        elevation_gain=acc.elevation_gain,
        avg_pace_seconds_per_km=avg_pace,
        training_load_score=training_load,
        total_calories=read_total_calories(root),
        zone_seconds=tuple((zone, round(zone_seconds[zone], 2)) for zone in HR_ZONE_ORDER),
        splits=tuple(acc.splits),
        best_efforts=tuple(compute_best_efforts(acc.times, acc.distances, total_distance)),
        series_sample=tuple(acc.series),
    )


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def format_duration(seconds) -> str:
    """125 -> '2:05', 3725 -> '1:02:05'."""
    total = max(0, int(math.floor(seconds or 0)))
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    return f"{h}:{m:02d}:{s:02d}" if h > 0 else f"{m}:{s:02d}"


def format_pace(seconds_per_km) -> str:
    """330 -> 5'30\"/km."""
    total = max(0, int(math.floor(seconds_per_km or 0)))
    m, s = divmod(total, 60)
    return f"{m}'{s:02d}\"/km"


def format_distance_km(meters) -> str:
    return f"{(meters or 0) / 1000:.2f} km"
