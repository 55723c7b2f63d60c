"""History analytics over stored workouts."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

import pandas as pd

from constants import BEST_EFFORT_TARGETS, DEFAULT_TIMEFRAME


class DataManager:
    """Owns the workout DataFrame, weekly volume, personal bests and CSV export."""

    def __init__(self, db):
        self.db = db
        self.df = None
        self.records = []

    def _rebuild_dataframe(self) -> None:
        rows = []
        for record in self.records:
            parsed = record.parsed
            row = {
                'id': record.id,
                'created_at': pd.to_datetime(record.created_at, unit='ms', utc=True),
                'date': parsed.start_time,
                'filename': record.filename,
                'distance_km': parsed.total_distance_meters / 1000,
                'duration_s': parsed.total_duration_seconds,
                'pace_s_km': parsed.avg_pace_seconds_per_km,
                'avg_hr': parsed.avg_hr,
                'max_hr': parsed.max_hr,
                'avg_cadence': parsed.avg_cadence,
                'elevation_m': parsed.elevation_gain,
                'training_load': parsed.training_load_score,
                'calories': parsed.total_calories,
            }
            for _, label in BEST_EFFORT_TARGETS:
                effort = parsed.best_effort(label)
                row[f'best_{label}_s'] = effort.time_seconds if effort else None
            rows.append(row)

        if rows:
            self.df = pd.DataFrame(rows)
            # Workouts without a recorded start fall back to when they were saved
            self.df['date'] = pd.to_datetime(self.df['date'], utc=True).fillna(self.df['created_at'])
        else:
            self.df = None

    def load_data(self, timeframe=DEFAULT_TIMEFRAME):
        self.records = self.db.get_workouts(timeframe, sort_by='date', sort_order='desc')
        self._rebuild_dataframe()
        return self.df

    def weekly_volume_km(self, now=None) -> float:
        """Distance run in the trailing 7 days."""
        if self.df is None or self.df.empty:
            return 0.0
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        cutoff = pd.Timestamp(now - timedelta(days=7))
        recent = self.df[(self.df['date'] >= cutoff) & (self.df['date'] <= pd.Timestamp(now))]
        return round(float(recent['distance_km'].sum()), 2)

    def personal_bests(self):
        """Fastest best-effort time per label across the loaded history."""
        bests = {}
        if self.df is None or self.df.empty:
            return bests
        for _, label in BEST_EFFORT_TARGETS:
            column = self.df[f'best_{label}_s'].dropna()
            if not column.empty:
                bests[label] = float(column.min())
        return bests

    def _generate_csv_content(self) -> str:
        if self.df is None or self.df.empty:
            raise ValueError("No data to export")

        export_columns = [
            'date',
            'filename',
            'distance_km',
            'duration_s',
            'pace_s_km',
            'avg_hr',
            'max_hr',
            'avg_cadence',
            'elevation_m',
            'training_load',
            'calories',
        ] + [f'best_{label}_s' for _, label in BEST_EFFORT_TARGETS]

        csv_content = self.df[export_columns].to_csv(index=False)
        data_dictionary = """

=== DATA DICTIONARY ===

pace_s_km:      average pace, seconds per kilometer
elevation_m:    elevation gain (rises above 0.2 m only)
training_load:  duration (min) x (avg HR / max HR) x 10
best_*_s:       fastest continuous 1k / 5k / 10k inside the run (blank if not covered)
"""
        return csv_content + data_dictionary

    def export_csv(self, destination_dir=None) -> str:
        """Write CSV export to disk and return the saved file path."""
        full_content = self._generate_csv_content()
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"run_history_{timestamp}.csv"
        output_dir = destination_dir or os.path.expanduser("~/Downloads")
        os.makedirs(output_dir, exist_ok=True)
        file_path = os.path.join(output_dir, filename)

        with open(file_path, 'w', encoding='utf-8') as f:
            f.write(full_content)

        return file_path
