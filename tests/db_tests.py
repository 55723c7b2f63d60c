import json
import os
import tempfile
import unittest
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path

from db import DatabaseManager, calculate_file_hash
from models import AthleteProfile
from tcx_parser import parse_activity
from tcx_factory import steady_run


class DatabaseManagerTests(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.db = DatabaseManager(str(self.root / "test.db"))
        self.parsed = parse_activity(steady_run(5200))

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_add_workout_round_trips_parsed_activity(self):
        record = self.db.add_workout(self.parsed, filename="morning.tcx", source_hash="abc")

        self.assertEqual(len(record.id), 32)
        self.assertGreater(record.created_at, 0)
        self.assertEqual(record.distance, "5.20 km")
        self.assertEqual(record.duration, "26:00")
        self.assertEqual(record.avg_pace, "5'00\"/km")

        loaded = self.db.get_workout(record.id)
        self.assertEqual(loaded.parsed, self.parsed)
        self.assertEqual(loaded.filename, "morning.tcx")
        self.assertEqual(self.db.get_count(), 1)
        self.assertTrue(self.db.workout_exists("abc"))
        self.assertFalse(self.db.workout_exists("other"))

    def test_history_is_append_only_with_unique_ids(self):
        first = self.db.add_workout(self.parsed)
        second = self.db.add_workout(self.parsed)
        self.assertNotEqual(first.id, second.id)
        self.assertEqual(self.db.get_count(), 2)

    def test_attach_coaching_keeps_parsed_data(self):
        record = self.db.add_workout(self.parsed)
        self.assertTrue(self.db.attach_coaching(record.id, "Nice even pacing.", "Easy 5k tomorrow."))

        loaded = self.db.get_workout(record.id)
        self.assertEqual(loaded.ai_coach_feedback, "Nice even pacing.")
        self.assertEqual(loaded.next_workout_suggestion, "Easy 5k tomorrow.")
        self.assertEqual(loaded.parsed, self.parsed)
        self.assertNotIn("ai_coach_feedback", loaded.parsed.to_dict())

    def test_attach_coaching_missing_workout(self):
        self.assertFalse(self.db.attach_coaching("missing", "x", "y"))

    def test_delete_workout(self):
        record = self.db.add_workout(self.parsed)
        self.assertTrue(self.db.delete_workout(record.id))
        self.assertIsNone(self.db.get_workout(record.id))
        self.assertFalse(self.db.delete_workout(record.id))

    def test_sorting_by_distance(self):
        short = parse_activity(steady_run(1000))
        self.db.add_workout(self.parsed, filename="long.tcx")
        self.db.add_workout(short, filename="short.tcx")

        ascending = self.db.get_workouts(sort_by='distance', sort_order='asc')
        self.assertEqual([r.filename for r in ascending], ["short.tcx", "long.tcx"])
        descending = self.db.get_workouts(sort_by='distance', sort_order='desc')
        self.assertEqual([r.filename for r in descending], ["long.tcx", "short.tcx"])

    def test_timeframe_filter(self):
        # Fixture runs are dated 2026-02-01; "This Year" depends on today's date
        self.db.add_workout(self.parsed)
        self.assertEqual(len(self.db.get_workouts("All Time")), 1)

    def test_timeframe_cutoff_is_utc(self):
        now = datetime.now(timezone.utc)
        inside = replace(self.parsed, start_time=now - timedelta(days=6, hours=23))
        outside = replace(self.parsed, start_time=now - timedelta(days=7, hours=1))
        self.db.add_workout(inside, filename="inside.tcx")
        self.db.add_workout(outside, filename="outside.tcx")

        recent = self.db.get_workouts("Last 7 Days")
        self.assertEqual([r.filename for r in recent], ["inside.tcx"])
        self.assertEqual(len(self.db.get_workouts("Last 30 Days")), 2)

    def test_workout_without_start_uses_utc_save_date(self):
        undated = replace(self.parsed, start_time=None)
        self.db.add_workout(undated, filename="undated.tcx")
        self.assertEqual([r.filename for r in self.db.get_workouts("Last 7 Days")], ["undated.tcx"])

    def test_settings_round_trip(self):
        self.assertIsNone(self.db.get_setting("missing"))
        self.db.set_setting("app_settings", {"themeColor": "purple"})
        self.assertEqual(self.db.get_setting("app_settings"), {"themeColor": "purple"})
        self.db.set_setting("app_settings", {"themeColor": "green"})
        self.assertEqual(self.db.get_setting("app_settings"), {"themeColor": "green"})

    def test_profile_and_plan_prefs(self):
        self.assertIsNone(self.db.load_profile())
        profile = AthleteProfile(name="Sam", age=34, resting_hr=52, max_hr=188, is_configured=True)
        self.db.save_profile(profile)
        self.assertEqual(self.db.load_profile(), profile)

        self.assertEqual(self.db.load_plan_prefs()["longRunDay"], "Sunday")
        self.db.save_plan_prefs({"longRunDay": "Saturday"})
        prefs = self.db.load_plan_prefs()
        self.assertEqual(prefs["longRunDay"], "Saturday")
        self.assertEqual(prefs["workoutDay"], "Tuesday")

    def test_backup_and_restore(self):
        self.db.save_profile(AthleteProfile(name="Sam", is_configured=True))
        record = self.db.add_workout(self.parsed, filename="a.tcx")
        self.db.attach_coaching(record.id, "Good.", "Rest.")
        backup = self.db.create_backup()

        payload = json.loads(backup)
        self.assertEqual(payload["version"], 1)
        self.assertEqual(len(payload["history"]), 1)

        other = DatabaseManager(str(self.root / "restored.db"))
        self.assertTrue(other.restore_backup(backup))
        restored = other.get_workout(record.id)
        self.assertEqual(restored.parsed, self.parsed)
        self.assertEqual(restored.ai_coach_feedback, "Good.")
        self.assertEqual(other.load_profile().name, "Sam")

    def test_restore_rejects_malformed_backup(self):
        self.db.save_profile(AthleteProfile(name="Original", is_configured=True))
        self.db.add_workout(self.parsed)
        entry = json.loads(self.db.create_backup())["history"][0]

        bad_backups = [
            "{not json",
            json.dumps({"history": []}),
            json.dumps({"version": 1, "history": [{"parsed": [1]}]}),
            json.dumps({"version": 1, "history": [{"id": "x"}]}),
            json.dumps({"version": 1, "history": "nope"}),
            json.dumps({"version": 1, "profile": ["a"]}),
            json.dumps({"version": 1, "plan": "weekly"}),
            json.dumps({
                "version": 1,
                "profile": {"name": "New", "is_configured": True},
                "history": [entry, dict(entry)],
            }),
        ]
        for backup in bad_backups:
            with self.subTest(backup=backup[:60]):
                with self.assertLogs("db", level="WARNING"):
                    self.assertFalse(self.db.restore_backup(backup))

        self.assertEqual(self.db.get_count(), 1)
        self.assertEqual(self.db.load_profile().name, "Original")

    def test_restore_is_all_or_nothing(self):
        self.db.save_profile(AthleteProfile(name="Original", is_configured=True))
        self.db.add_workout(self.parsed)
        backup = json.loads(self.db.create_backup())
        backup["profile"]["name"] = "New"
        # A created_at that cannot be turned into a date fails mid-write
        backup["history"][0]["created_at"] = "yesterday"
        backup["history"][0]["parsed"]["start_time"] = None

        with self.assertLogs("db", level="WARNING"):
            self.assertFalse(self.db.restore_backup(json.dumps(backup)))
        self.assertEqual(self.db.load_profile().name, "Original")
        self.assertEqual(self.db.get_count(), 1)

    def test_readiness_and_plan(self):
        self.assertIsNone(self.db.load_readiness())
        self.assertIsNone(self.db.load_plan())

        readiness = {"score": 72, "status": "Ready to Train", "summary": "HRV up", "recommendation": "Tempo", "lastUpdated": 1}
        plan = {"goal": "Half marathon", "weeks": 12, "schedule": [{"week": 1, "day": 2, "title": "Intervals"}]}
        self.db.save_readiness(readiness)
        self.db.save_plan(plan)
        self.assertEqual(self.db.load_readiness(), readiness)
        self.assertEqual(self.db.load_plan(), plan)

        self.db.save_plan(None)
        self.assertIsNone(self.db.load_plan())

    def test_backup_round_trips_readiness_and_plan(self):
        readiness = {"score": 55, "status": "Maintenance", "summary": "", "recommendation": "Easy", "lastUpdated": 2}
        plan = {"goal": "10k", "weeks": 8}
        self.db.save_readiness(readiness)
        self.db.save_plan(plan)
        backup = self.db.create_backup()
        self.assertEqual(json.loads(backup)["plan"], plan)

        other = DatabaseManager(str(self.root / "restored.db"))
        other.save_plan({"goal": "stale"})
        self.assertTrue(other.restore_backup(backup))
        self.assertEqual(other.load_readiness(), readiness)
        self.assertEqual(other.load_plan(), plan)

        # A backup without a plan clears the stored one
        self.assertTrue(other.restore_backup(json.dumps({"version": 1})))
        self.assertIsNone(other.load_plan())
        self.assertEqual(other.load_readiness(), readiness)

    def test_calculate_file_hash(self):
        path = self.root / "run.tcx"
        path.write_text("<TrainingCenterDatabase/>", encoding="utf-8")
        first = calculate_file_hash(str(path))
        self.assertEqual(len(first), 64)
        self.assertEqual(first, calculate_file_hash(os.fspath(path)))


if __name__ == "__main__":
    unittest.main()
