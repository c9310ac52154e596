"""Configuration constants for the rebel group ERGM analysis."""

from pathlib import Path

ID_COLUMN = "group_id"
LABEL_COLUMN = "label"

# Required attribute columns and their declared kinds
REQUIRED_ATTRIBUTES = {
    "size": "numeric",
    "role": "categorical",
    "ideology": "ordinal",
}

DATA_DIR = Path("data")
ADJACENCY_FILE = DATA_DIR / "rebels_adjacency.csv"
ATTRIBUTES_FILE = DATA_DIR / "rebels_attributes.csv"

REQUEST_TIMEOUT = 30  # seconds
USER_AGENT = "RebelERGM/0.1 (Research project; network covariate analysis)"

# Default model specifications (name -> ergm-style formula)
UNDIRECTED_MODELS = {
    "baseline": "edges",
    "covariates": "edges + absdiff(size) + nodematch(role) + absdiff(ideology)",
    "structural": (
        "edges + absdiff(size) + nodematch(role) + absdiff(ideology) + isolates + concurrent"
    ),
}
DIRECTED_MODELS = {
    "baseline": "edges",
    "covariates": "edges + absdiff(size) + nodematch(role) + absdiff(ideology)",
    "popularity": "edges + absdiff(size) + nodematch(role) + absdiff(ideology) + istar(2)",
}

MAX_ITER = 5000
TOL = 1e-10
MAX_CONDITION_NUMBER = 1e10  # Fisher information beyond this is treated as singular
MAX_LINEAR_PREDICTOR = 20.0  # |logit| beyond this means fitted probabilities of 0 or 1

# (upper p-value bound, marker), checked in order
SIGNIFICANCE_LEVELS = ((0.001, "***"), (0.01, "**"), (0.05, "*"), (0.1, "."))

RANDOM_SEED = 42
