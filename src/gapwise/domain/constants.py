"""Centralized constants for the gapwise core.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- FSRS ----------
# w[0]-w[3] initial stabilities (AGAIN..EASY), w[4]-w[7] difficulty,
# w[8]-w[10] recall stability, w[11]-w[14] lapse stability,
# w[15] hard penalty, w[16] easy bonus.
FSRS_DEFAULT_WEIGHTS = (
    0.4, 0.6, 2.4, 5.8,
    4.93, 0.94, 0.86, 0.01,
    1.49, 0.14, 0.94,
    2.18, 0.05, 0.34, 1.26,
    0.29, 2.61,
)
REFERENCE_RETRIEVABILITY = 0.9  # R at t == stability
DEFAULT_DESIRED_RETENTION = 0.9
MAXIMUM_INTERVAL_DAYS = 36500
MAX_LAPSE_FRACTION = 0.5  # failure never keeps more than this share of stability
STABILITY_MIN = 0.01  # days; repeated lapses bottom out here
DIFFICULTY_MIN = 1.0
DIFFICULTY_MAX = 10.0

# ---------- Mastery ----------
RECENCY_HALF_LIFE_DAYS = 14.0
STABILITY_SATURATION_DAYS = 10.0
WEIGHT_ACCURACY = 0.4
WEIGHT_RECENCY = 0.4
WEIGHT_STABILITY = 0.2
TREND_WINDOW = 5
TREND_NOISE_THRESHOLD = 3.0

# ---------- Gaps ----------
CRITICAL_THRESHOLD = 50.0
WEAK_THRESHOLD = 70.0
STRONG_THRESHOLD = 80.0
DEFAULT_TOP_GAPS = 5

# ---------- Daily plan ----------
DEFAULT_DAILY_ITEMS = 20
DEFAULT_DAILY_MINUTES = 30.0
DEFAULT_REVIEW_SHARE = 0.7
DEFAULT_COVERAGE_THRESHOLD = 3
DIAGNOSTIC_TARGET_DIFFICULTY = 50

# ---------- Attempts ----------
CONFIDENCE_MIN = 1
CONFIDENCE_MAX = 5

SECONDS_PER_DAY = 86400.0
