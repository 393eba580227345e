# ============================================================
# settings.py
# Paths and analysis constants shared by every step
# ============================================================

from pathlib import Path

# -------------------------
# Paths
# -------------------------
PROJECT_ROOT = Path(__file__).resolve().parents[2]
DATA_PATH = PROJECT_ROOT / "data" / "brca_genes.csv"
OUT_DIR = PROJECT_ROOT / "outputs"

CLEAN_FILE = "expression_clean.csv"
CLEAN_REPORT_FILE = "cleaning_report.txt"

CPDAG_FILE = "edges_cpdag.csv"
BOOTSTRAP_FILE = "edges_bootstrap.csv"
ALPHA_SWEEP_FILE = "alpha_sweep.csv"
DISCOVERY_REPORT_FILE = "discovery_report.txt"

IDA_TO_TARGET_FILE = "ida_to_target.csv"
IDA_FROM_TARGET_FILE = "ida_from_target.csv"
IDA_JSON_FILE = "ida_results.json"
IDA_REPORT_FILE = "ida_report.txt"

MB_JSON_FILE = "markov_blanket.json"
MB_CV_FILE = "mb_cv_results.csv"
MB_REPORT_FILE = "mb_report.txt"

BN_MODEL_FILE = "bn_model.pkl"
BN_DISCRETE_FILE = "bn_discretized.csv"
BN_STATE_MAP_FILE = "bn_state_map.json"
BN_EVIDENCE_FILE = "bn_evidence_table.csv"
BN_REPORT_FILE = "bn_report.txt"

# -------------------------
# Analysis
# -------------------------
TARGET_GENE = "BRCA1"

ALPHA = 0.01
ALPHA_GRID = [0.001, 0.005, 0.01, 0.05, 0.1]
MAX_COND_VARS = 3

N_BOOTSTRAP = 50
BOOTSTRAP_MIN_FREQ = 0.5

CV_FOLDS = 5
N_BINS = 3
PSEUDO_COUNT = 1.0
MAX_BN_PARENTS = 3

RANDOM_STATE = 42
