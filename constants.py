"""Shared thresholds and reference values for the run coach."""

# --- PARSER ---
SPLIT_DISTANCE_M = 1000
ELEVATION_NOISE_M = 0.2       # rises at or below this are GPS/baro noise
SERIES_TARGET_POINTS = 150    # approx chart resolution
FALLBACK_MAX_HR = 190         # training load when the file has no HR peak

# (target meters, label)
BEST_EFFORT_TARGETS = (
    (1000, '1k'),
    (5000, '5k'),
    (10000, '10k'),
)

# Per-sample duration clamp for time-in-zone accounting
MIN_SAMPLE_SECONDS = 0.25
MAX_SAMPLE_SECONDS = 10.0

TCX_NAMESPACE = 'http://www.garmin.com/xmlschemas/TrainingCenterDatabase/v2'

# --- PERSISTENCE ---
DEFAULT_DB_PATH = 'run_coach.db'
BACKUP_VERSION = 1

DEFAULT_PLAN_PREFS = {
    'longRunDay': 'Sunday',
    'workoutDay': 'Tuesday',
    'notes': '',
}

TIMEFRAME_OPTIONS = ('All Time', 'Last 7 Days', 'Last 30 Days', 'Last 90 Days', 'This Year')
DEFAULT_TIMEFRAME = 'All Time'
