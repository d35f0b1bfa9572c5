
# ─────────────────────────────────────────────
# STAGE SCHEDULE
# (stage, fraction, minimum rows, purpose)
# Fractions strictly increase across stages 1-4; stage 5 is the full dataset.
# ─────────────────────────────────────────────

STAGE_SCHEDULE: tuple[tuple[int, float, int, str], ...] = (
    (1, 0.001, 100,  "Initial Exploration"),
    (2, 0.005, 500,  "Pattern Expansion"),
    (3, 0.015, 1500, "HITL Decision"),
    (4, 0.025, 2500, "Confidence Checkpoint"),
    (5, 1.0,   0,    "Bulk Processing"),
)

FIRST_SAMPLING_STAGE = 1
LAST_SAMPLING_STAGE  = 4
HITL_DECISION_STAGE  = 3     # pending questions are drained at the end of this stage
BULK_STAGE           = 5
TOTAL_STAGES         = 5
