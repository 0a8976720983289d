import os
import platform


# Environment-aware defaults
# These mirror the PATHWAYS_* env vars; use them instead of calling os.getenv() everywhere.
DEFAULT_ALLOW_REPEATS = os.environ.get('PATHWAYS_ALLOW_REPEATS', 'false').strip().lower() == 'true'
DEFAULT_MAX_DEPTH = int(os.environ.get('PATHWAYS_MAX_DEPTH', '5'))
DEFAULT_COLLAPSE_WINDOW_DAYS = int(os.environ.get('PATHWAYS_COLLAPSE_WINDOW_DAYS', '30'))
DEFAULT_MIN_CELL_COUNT = int(os.environ.get('PATHWAYS_MIN_CELL_COUNT', '5'))
DEFAULT_MAX_WORKERS = int(os.environ.get('PATHWAYS_MAX_WORKERS', '1'))

# Default export directory. Can be overridden by setting PATHWAYS_EXPORT_DIR (useful on EC2 or CI).
DEFAULT_EXPORT_DIR = os.environ.get(
    'PATHWAYS_EXPORT_DIR', os.path.join('1_cohort_pathways', 'outputs')
)

# Staging directory for exports that end up on S3
S3_STAGING_DIR = os.environ.get('PATHWAYS_S3_STAGING_DIR', '/tmp/cohort_pathways_export')
AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

# Separator used when naming combination codes
COMBO_NAME_SEPARATOR = " + "

# Cohort table columns (OHDSI cohort table layout)
COHORT_TABLE_COLUMNS = [
    'cohort_definition_id',
    'subject_id',
    'cohort_start_date',
    'cohort_end_date',
]

COHORT_DEFINITION_COLUMNS = ['cohort_id', 'cohort_name']

# Output column layouts
GENERATION_ID_COLUMN = 'pathway_analysis_generation_id'
COUNT_COLUMN = 'count_value'
EVENT_COUNT_COLUMN = 'event_count'

STATS_COLUMNS = [
    GENERATION_ID_COLUMN,
    'target_cohort_id',
    'code',
    COUNT_COLUMN,
    EVENT_COUNT_COLUMN,
]

CODES_COLUMNS = [
    GENERATION_ID_COLUMN,
    'code',
    'name',
    'is_combo',
]

CODES_LONG_COLUMNS = [
    GENERATION_ID_COLUMN,
    'code',
    'target_cohort_id',
    'event_cohort_id',
    'event_cohort_name',
    'is_combo',
    'number_of_events',
]

# Columns subject to min cell count censoring at export
CENSORED_COLUMNS = [COUNT_COLUMN, EVENT_COUNT_COLUMN]

# Export file names (kept identical to the published result set)
PATHS_FILE = "pathwaysAnalysisPaths.csv"
STATS_FILE = "pathwayAnalysisStats.csv"
CODES_FILE = "pathwayAnalysisCodes.csv"
CODES_LONG_FILE = "pathwayAnalysisCodesLong.csv"
OUTPUT_FILES = [PATHS_FILE, STATS_FILE, CODES_FILE, CODES_LONG_FILE]

PIPELINE_STATE_FILE = "pipeline_state.json"


def step_columns(max_depth: int) -> list:
    """Return step_1..step_N column names for a given max depth."""
    return [f"step_{i}" for i in range(1, max_depth + 1)]


def path_columns(max_depth: int) -> list:
    return [GENERATION_ID_COLUMN, 'target_cohort_id'] + step_columns(max_depth) + [COUNT_COLUMN]


# Windows emoji compatibility
IS_WINDOWS = platform.system() == 'Windows'
SYMBOLS = {
    'rocket': '[START]' if IS_WINDOWS else '🚀',
    'arrow': '->' if IS_WINDOWS else '→',
    'info': '[INFO]' if IS_WINDOWS else '📊',
    'config': '[CONFIG]' if IS_WINDOWS else '🔧',
    'success': '[PASS]' if IS_WINDOWS else '✅',
    'fail': '[FAIL]' if IS_WINDOWS else '❌',
    'warn': '[WARN]' if IS_WINDOWS else '⚠️',
    'skip': '[SKIP]' if IS_WINDOWS else '⏭️',
    'trophy': '[SUCCESS]' if IS_WINDOWS else '🎉'
}
