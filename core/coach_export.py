"""Coaching prompt and clipboard report export for parsed runs."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime

from hr_zones import HR_ZONE_RANGE_LABELS, get_zone_thresholds, karvonen_zones, split_zone_distribution
from tcx_parser import format_distance_km, format_duration, format_pace

logger = logging.getLogger(__name__)

RESPONSE_FIELDS = ("aiCoachFeedback", "nextWorkoutSuggestion")

COACHING_CONTEXT = """
=== CONTEXT FOR AI COACHING ===

You are a supportive, evidence-based running coach. The run below was parsed
deterministically from a TCX file; interpret it, do not recompute it.

KEY METRICS EXPLAINED:

SPLITS:
- One line per completed kilometer: time and average heart rate
- Rising HR at steady split times = cardiovascular drift

TRAINING LOAD:
- Duration (min) x (avg HR / max HR) x 10
- Relative effort score, not a calibrated physiological measure

BEST EFFORTS:
- Fastest continuous 1k / 5k / 10k inside the run (only when covered)
"""


def build_run_summary(parsed):
    """Condensed numeric summary forwarded to the narrative collaborator."""
    return {
        "totalDistanceKm": f"{parsed.total_distance_meters / 1000:.2f}",
        "duration": format_duration(parsed.total_duration_seconds),
        "avgPace": format_pace(parsed.avg_pace_seconds_per_km),
        "avgHr": parsed.avg_hr,
        "maxHr": parsed.max_hr,
        "elevationGain": parsed.elevation_gain,
        "splits": "\n".join(
            f"Km {s.kilometer}: {format_duration(s.time_seconds)} ({s.avg_hr}bpm)"
            for s in parsed.splits
        ),
    }


def build_athlete_context(profile):
    if profile is None or not profile.is_configured:
        return "Athlete Context: profile not configured."

    lines = [
        f"Athlete: {profile.name or 'Runner'}, age {profile.age}, {profile.gender}",
        f"Goal: {profile.running_goal or '--'}",
        f"Weekly volume: {profile.weekly_mileage:g} km",
        f"Resting HR: {profile.resting_hr} bpm, Max HR: {profile.max_hr} bpm",
        "Heart rate zones (Karvonen):",
    ]
    for zone in karvonen_zones(profile.resting_hr, profile.max_hr):
        lines.append(f"  Z{zone.zone} {zone.description}: {zone.min}-{zone.max} bpm")
    if profile.personal_bests:
        lines.append(f"Personal bests: {profile.personal_bests}")
    return "\n".join(lines)


def build_readiness_context(readiness, today=None):
    """Morning vitals block, only when the readiness check was recorded today (local time)."""
    if not isinstance(readiness, dict) or not readiness.get("lastUpdated"):
        return None
    try:
        recorded = datetime.fromtimestamp(float(readiness["lastUpdated"]) / 1000).date()
    except (TypeError, ValueError, OverflowError, OSError):
        logger.debug("Ignoring readiness with unreadable lastUpdated %r", readiness.get("lastUpdated"))
        return None
    if recorded != (today or date.today()):
        return None
    return "\n".join([
        "MORNING VITALS CONTEXT (Recorded Today):",
        f"- Readiness Score: {readiness.get('score', '--')}/100",
        f"- Status: {readiness.get('status', '--')}",
        f"- Biometric Summary: {readiness.get('summary', '')}",
        f"- Recommendation for Today was: {readiness.get('recommendation', '')}",
    ])


def build_coaching_prompt(parsed, profile=None, readiness_context=None):
    """Prompt text for post-run coaching; the reply must carry RESPONSE_FIELDS."""
    summary = json.dumps(build_run_summary(parsed), indent=2)
    fields = ", ".join(f'"{name}"' for name in RESPONSE_FIELDS)
    return f"""{COACHING_CONTEXT.strip()}

TASK: POST-RUN INTEGRATION (TCX Analysis)

RUN DATA:
{summary}

ATHLETE CONTEXT:
{build_athlete_context(profile)}
{readiness_context or "Readiness Context: Unknown"}

- Connect the splits and HR drift to the big picture.
- Did the run support fitness, recovery, or consistency?

Respond with a JSON object with exactly these string fields: {fields}.
"""


def build_run_report(record, profile=None):
    """Clipboard-friendly text block for one workout."""
    parsed = record.parsed
    date = parsed.start_time.strftime("%Y-%m-%d %H:%M") if parsed.start_time else "--"
    cadence = f"{parsed.avg_cadence} spm" if parsed.avg_cadence else "--"
    calories = f"{parsed.total_calories} kcal" if parsed.total_calories is not None else "--"

    lines = [f"""
RUN: {date} {record.filename or ''}
--------------------------------------------------
SUMMARY
Dist:        {format_distance_km(parsed.total_distance_meters)}
Time:        {format_duration(parsed.total_duration_seconds)}
Pace:        {format_pace(parsed.avg_pace_seconds_per_km)}
Elev Gain:   +{parsed.elevation_gain:.0f} m
Calories:    {calories}

PHYSIOLOGY
Avg HR:      {parsed.avg_hr or '--'} bpm
Max HR:      {parsed.max_hr or '--'} bpm
Avg Cadence: {cadence}
Training Load: {parsed.training_load_score}

[TIME IN HEART RATE ZONES]""".strip("\n")]

    # Same effective max HR the parser bucketed against
    thresholds = get_zone_thresholds(parsed.max_hr)
    zone_total = sum(seconds for _, seconds in parsed.zone_seconds)
    for zone, seconds in parsed.zone_seconds:
        pct = (seconds / zone_total * 100) if zone_total > 0 else 0.0
        low, high = thresholds.get(zone, (0.0, 0.0))
        lines.append(f"{HR_ZONE_RANGE_LABELS.get(zone, zone)} {low:.0f}-{high:.0f} bpm: {seconds / 60:.1f}m ({pct:.1f}%)")

    if profile is not None and profile.is_configured and parsed.splits:
        zones = karvonen_zones(profile.resting_hr, profile.max_hr)
        distribution = split_zone_distribution(parsed.splits, zones)
        lines.append("\n[SPLIT TIME BY KARVONEN ZONE]")
        for zone, pct in zip(zones, distribution):
            lines.append(f"Z{zone.zone} {zone.description}: {pct:.1f}%")

    lines.append("\n[BEST EFFORTS]")
    if parsed.best_efforts:
        for effort in parsed.best_efforts:
            lines.append(
                f"{effort.label}: {format_duration(effort.time_seconds)} ({format_pace(effort.pace_seconds)})"
            )
    else:
        lines.append("--")

    lines.append("\n[KM SPLITS]")
    for split in parsed.splits:
        hr = f"{split.avg_hr}bpm" if split.avg_hr else "--bpm"
        cad = f"{split.avg_cadence}spm" if split.avg_cadence else "--spm"
        lines.append(
            f"{split.kilometer} | {format_duration(split.time_seconds)} | {format_pace(split.pace_seconds)} | {hr} | {cad}"
        )

    if record.ai_coach_feedback:
        lines.append(f"\n[COACH]\n{record.ai_coach_feedback}")
    if record.next_workout_suggestion:
        lines.append(f"\n[NEXT]\n{record.next_workout_suggestion}")

    return "\n".join(lines)


class CoachExporter:
    """Build and copy LLM-ready run reports from the workout history."""

    def __init__(self, db):
        self.db = db

    def generate_export(self, workout_id=None):
        """Full report text for one workout, or for the whole history (newest first)."""
        if workout_id:
            record = self.db.get_workout(workout_id)
            records = [record] if record else []
        else:
            records = self.db.get_workouts(sort_by="date", sort_order="desc")
        if not records:
            return None

        profile = self.db.load_profile()
        report = ("\n\n" + "=" * 50 + "\n\n").join(build_run_report(r, profile) for r in records)
        return f"{COACHING_CONTEXT.strip()}\n\n{report}\n"

    def coaching_prompt(self, workout_id):
        """Coaching prompt for a stored workout with the saved profile and today's readiness."""
        record = self.db.get_workout(workout_id)
        if record is None:
            return None
        readiness_context = build_readiness_context(self.db.load_readiness())
        return build_coaching_prompt(record.parsed, self.db.load_profile(), readiness_context)

    def copy_report(self, workout_id=None):
        """Copy the report to the clipboard. False when there is nothing to copy."""
        content = self.generate_export(workout_id)
        if content is None:
            logger.warning("No workout data to copy (id=%s)", workout_id)
            return False

        import pyperclip
        pyperclip.copy(content)
        return True
