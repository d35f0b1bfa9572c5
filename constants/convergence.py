
# ─────────────────────────────────────────────
# CONVERGENCE
# ─────────────────────────────────────────────

CONFIDENCE_THRESHOLD  = 0.95
STABILITY_WINDOW      = 500    # rows sampled since the last new rule
SAMPLING_STAGE_BUDGET = 4      # stages observed before ReviewStrategy can be declared


# ─────────────────────────────────────────────
# PER-RULE DETAIL
# ─────────────────────────────────────────────

CREDIBLE_INTERVAL_LEVEL = 0.95
HISTORY_WINDOW          = 5     # most recent confidences used for the trend
TREND_TOLERANCE         = 0.02  # |slope| below this → stable
VOLATILE_STD            = 0.15  # std above this → volatile
