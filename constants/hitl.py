
# ─────────────────────────────────────────────
# RESPONDERS
# ─────────────────────────────────────────────

DEFAULT_RESPONDER      = "user"
AUTO_RESOLVE_RESPONDER = "system:auto-resolve"
DEFAULT_PORT_RESPONDER = "system:recommended-default"


# ─────────────────────────────────────────────
# QUESTION QUEUE
# ─────────────────────────────────────────────

MAX_HITL_ROUNDS               = 3
BULK_CONFIRMATION_QUESTION_ID = "q-bulk-confirmation"
YES_TOKENS = frozenset({"y", "yes", "true", "1", "approve", "ok"})
NO_TOKENS  = frozenset({"n", "no", "false", "0", "reject"})
