
# ─────────────────────────────────────────────
# MISSING VALUE TOKENS
# Compared after strip() + lower(); "" covers blank and whitespace-only cells.
# ─────────────────────────────────────────────

MISSING_VALUE_TOKENS: frozenset[str] = frozenset({
    "", "null", "nil", "na", "n/a", "nan", "none",
    "-", "--", ".", "?", "missing", "undefined", "unknown",
})


# ─────────────────────────────────────────────
# DETECTION FLOORS (fraction of sampled rows)
# ─────────────────────────────────────────────

MISSING_VALUE_FLOOR = 0.01
OUTLIER_FLOOR       = 0.01
WHITESPACE_FLOOR    = 0.01
DATE_FORMAT_FLOOR   = 0.01
TYPE_MIX_FLOOR      = 0.01


# ─────────────────────────────────────────────
# NUMERIC COLUMNS
# ─────────────────────────────────────────────

IQR_MULTIPLIER              = 1.5
MAX_OUTLIER_RATIO           = 0.30   # above this the "outliers" are the distribution
MIN_NUMERIC_VALUES          = 10     # fewer parsed values → no outlier check
NUMERIC_COERCION_THRESHOLD  = 0.70   # share of non-missing cells that must parse


# ─────────────────────────────────────────────
# CATEGORICAL COLUMNS
# ─────────────────────────────────────────────

MAX_CATEGORY_CARDINALITY = 100       # wider columns are treated as free text
DEFAULT_CATEGORY_LABEL   = "Other"   # target of the default unknown-category mapping


# ─────────────────────────────────────────────
# MIXED-TYPE COLUMNS
# Numeric share of non-missing cells strictly inside this band → mixed.
# ─────────────────────────────────────────────

TYPE_MIX_MIN_NUMERIC_RATIO = 0.10
TYPE_MIX_MAX_NUMERIC_RATIO = 0.90


# ─────────────────────────────────────────────
# DATE FORMATS
# (regex, strptime format, label). Checked in order; a cell takes the first
# format whose regex matches AND whose parse succeeds, so "01/15/2024" falls
# through dd/MM/yyyy to MM/dd/yyyy.
# ─────────────────────────────────────────────

ISO_DATE_LABEL = "yyyy-MM-dd"

DATE_FORMATS: tuple[tuple[str, str, str], ...] = (
    (r"^\d{4}-\d{2}-\d{2}$", "%Y-%m-%d", ISO_DATE_LABEL),
    (r"^\d{2}/\d{2}/\d{4}$", "%d/%m/%Y", "dd/MM/yyyy"),
    (r"^\d{2}/\d{2}/\d{4}$", "%m/%d/%Y", "MM/dd/yyyy"),
    (r"^\d{2}-\d{2}-\d{4}$", "%d-%m-%Y", "dd-MM-yyyy"),
    (r"^\d{4}/\d{2}/\d{2}$", "%Y/%m/%d", "yyyy/MM/dd"),
    (r"^\d{8}$", "%Y%m%d", "yyyyMMdd"),
)


# ─────────────────────────────────────────────
# VALIDATION / BOOKKEEPING
# ─────────────────────────────────────────────

VALIDATION_BLOCK_SIZE = 100          # rows per validation trial
MAX_RECORDED_ISSUES   = 100          # DiscoveryIssue entries kept per stage (all are counted)
INITIAL_RULE_CONFIDENCE = 0.5      # Laplace estimate with no evidence
