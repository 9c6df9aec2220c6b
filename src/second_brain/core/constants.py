"""SM-2 and scheduling constants."""

# SuperMemo-2
SM2_INITIAL_EASE_FACTOR = 2.5
SM2_MIN_EASE_FACTOR = 1.3
SM2_MIN_QUALITY = 0
SM2_MAX_QUALITY = 5
SM2_PASSING_QUALITY = 3
SM2_FIRST_INTERVAL_DAYS = 1
SM2_SECOND_INTERVAL_DAYS = 6

# Fresh memory strength rows
INITIAL_STRENGTH = 0.0

# Similarity score recorded for the chunk that founds a canonical cluster
FOUNDING_SIMILARITY = 1.0

# How far back the streak calculation looks
STREAK_LOOKBACK_REVIEWS = 30

# Unlinked chunks handled per batch dedup run
DEDUP_BATCH_SIZE = 100

# Finished job outcomes kept by the asyncio dispatcher
JOB_HISTORY_SIZE = 200

# Candidate selections tried when the chosen canonical chunk is merged away mid-link
CANONICALIZE_MAX_ATTEMPTS = 3
