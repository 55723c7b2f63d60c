"""Result and record types shared by the parser, history store and exports."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class Split:
    kilometer: int
    time_seconds: float
    avg_hr: int
    avg_cadence: Optional[int]
    distance_meters: float
    pace_seconds: float


@dataclass(frozen=True)
class BestEffort:
    label: str
    distance_meters: int
    time_seconds: float
    pace_seconds: float


@dataclass(frozen=True)
class DataPoint:
    distance: float
    altitude: float
    hr: int
    cadence: Optional[int] = None


@dataclass(frozen=True)
class ParsedActivity:
    """Everything extracted from one track recording. Never mutated after parsing."""

    start_time: Optional[datetime]
    total_distance_meters: float
    total_duration_seconds: float
    avg_hr: int
    max_hr: int
    avg_cadence: Optional[int]
    elevation_gain: float
    avg_pace_seconds_per_km: float
    training_load_score: int
    total_calories: Optional[int]
    zone_seconds: Tuple[Tuple[str, float], ...]
    splits: Tuple[Split, ...]
    best_efforts: Tuple[BestEffort, ...]
    series_sample: Tuple[DataPoint, ...]

    def best_effort(self, label: str) -> Optional[BestEffort]:
        for effort in self.best_efforts:
            if effort.label == label:
                return effort
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['start_time'] = self.start_time.isoformat() if self.start_time else None
        data['zone_seconds'] = dict(self.zone_seconds)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ParsedActivity':
        start_time = data.get('start_time')
        if start_time:
            start_time = datetime.fromisoformat(start_time)
        return cls(
            start_time=start_time or None,
            total_distance_meters=data.get('total_distance_meters', 0.0),
            total_duration_seconds=data.get('total_duration_seconds', 0.0),
            avg_hr=data.get('avg_hr', 0),
            max_hr=data.get('max_hr', 0),
            avg_cadence=data.get('avg_cadence'),
            elevation_gain=data.get('elevation_gain', 0.0),
            avg_pace_seconds_per_km=data.get('avg_pace_seconds_per_km', 0.0),
            training_load_score=data.get('training_load_score', 0),
            total_calories=data.get('total_calories'),
            zone_seconds=tuple((data.get('zone_seconds') or {}).items()),
            splits=tuple(Split(**s) for s in data.get('splits', [])),
            best_efforts=tuple(BestEffort(**b) for b in data.get('best_efforts', [])),
            series_sample=tuple(DataPoint(**p) for p in data.get('series_sample', [])),
        )


@dataclass
class WorkoutRecord:
    """A history entry. Coaching text lives beside the parsed data, not inside it."""

    id: str
    created_at: int  # epoch ms
    parsed: ParsedActivity
    filename: Optional[str] = None
    distance: str = ''
    duration: str = ''
    avg_pace: str = ''
    ai_coach_feedback: str = ''
    next_workout_suggestion: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at,
            'filename': self.filename,
            'distance': self.distance,
            'duration': self.duration,
            'avg_pace': self.avg_pace,
            'ai_coach_feedback': self.ai_coach_feedback,
            'next_workout_suggestion': self.next_workout_suggestion,
            'parsed': self.parsed.to_dict(),
        }


@dataclass
class AthleteProfile:
    name: str = ''
    age: int = 0
    weight: float = 0.0  # kg
    gender: str = 'Other'
    resting_hr: int = 60
    max_hr: int = 190
    running_goal: str = ''
    weekly_mileage: float = 0.0  # km per week
    personal_bests: str = ''
    is_configured: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AthleteProfile':
        known = {k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__}
        return cls(**known)


def utc_now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)
