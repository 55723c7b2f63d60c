"""
Run Coach - Command Line Interface
Parse TCX recordings from the terminal, optionally saving them to the history.
"""

import logging
import os
import sys

from constants import DEFAULT_DB_PATH
from tcx_parser import NoDataError, format_distance_km, format_duration, format_pace, parse_activity

USAGE = """Usage: python cli.py <file.tcx> [more.tcx ...] [--save] [--db PATH]
       --save       append each parsed run to the workout history
       --db PATH    history database (default: {db})""".format(db=DEFAULT_DB_PATH)


def _parse_args(argv):
    files, save, db_path = [], False, DEFAULT_DB_PATH
    args = iter(argv)
    for arg in args:
        if arg == '--save':
            save = True
        elif arg == '--db':
            db_path = next(args, None)
            if not db_path:
                return None
        elif arg.startswith('--'):
            return None
        else:
            files.append(arg)
    if not files:
        return None
    return files, save, db_path


def print_activity(parsed, emit=print):
    emit(f"   Distance:  {format_distance_km(parsed.total_distance_meters)}")
    emit(f"   Time:      {format_duration(parsed.total_duration_seconds)}")
    emit(f"   Pace:      {format_pace(parsed.avg_pace_seconds_per_km)}")
    emit(f"   HR:        avg {parsed.avg_hr or '–'} / max {parsed.max_hr or '–'} bpm")
    emit(f"   Elevation: +{parsed.elevation_gain:.0f} m")
    emit(f"   Load:      {parsed.training_load_score}")
    for split in parsed.splits:
        emit(f"   Km {split.kilometer:>3}: {format_duration(split.time_seconds)}  "
             f"{format_pace(split.pace_seconds)}  {split.avg_hr or '–'} bpm")
    for effort in parsed.best_efforts:
        emit(f"   Best {effort.label:>3}: {format_duration(effort.time_seconds)} ({format_pace(effort.pace_seconds)})")


def main(argv=None):
    """CLI entry point."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    parsed_args = _parse_args(sys.argv[1:] if argv is None else argv)
    if parsed_args is None:
        print(USAGE)
        return 1
    files, save, db_path = parsed_args

    db = None
    if save:
        from db import DatabaseManager, calculate_file_hash
        db = DatabaseManager(db_path)

    parsed_count = 0
    for path in files:
        if not os.path.isfile(path):
            print(f"❌ Error: {path} is not a file")
            continue

        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            document = f.read()

        try:
            parsed = parse_activity(document)
        except NoDataError:
            print(f"❌ No trackable samples found in {os.path.basename(path)}")
            continue

        parsed_count += 1
        print(f"🏃 {os.path.basename(path)}")
        print_activity(parsed)

        if db is not None:
            file_hash = calculate_file_hash(path)
            if db.workout_exists(file_hash):
                print("   ⚠️ Already in history, skipped save")
            else:
                record = db.add_workout(parsed, filename=os.path.basename(path), source_hash=file_hash)
                print(f"   💾 Saved as {record.id}")

    print(f"\n✅ Parsed {parsed_count} of {len(files)} file(s)")
    return 0 if parsed_count else 1


if __name__ == "__main__":
    sys.exit(main())
