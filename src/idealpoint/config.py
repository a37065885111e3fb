"""Configuration constants and the estimation config for idealpoint."""

from dataclasses import dataclass

# Sampling defaults
DEFAULT_DRAWS = 1000
DEFAULT_TUNE = 1000
DEFAULT_CHAINS = 4
DEFAULT_CORES = 1
TARGET_ACCEPT = 0.9
RANDOM_SEED = 42

# ADVI
VB_ITERATIONS = 30_000
VB_DRAWS = 1000
VB_WINDOW = 1000  # iterations per loss window for the convergence check
VB_REL_TOLERANCE = 0.01

# Convergence thresholds (full sampling)
RHAT_THRESHOLD = 1.01
ESS_THRESHOLD = 400
MAX_DIVERGENCES = 10

# Priors
PERSON_SD = 1.0
DISCRIM_SD = 1.0
DIFF_SD = 5.0
CUTPOINT_SD = 5.0
TIME_SD_PRIOR = 0.5  # HalfNormal scale on over-time innovation SD
COVARIATE_SD = 1.0

# Identification
DEFAULT_HIGH_VALUE = 1.0
DEFAULT_LOW_VALUE = -1.0
DEGENERATE_TOL = 1e-8  # anchors closer than this in any draw cannot be solved
MIN_ANCHOR_SEPARATION = 0.5  # pre-fit anchors must differ by this many posterior SDs
MAX_IDENTIFY_ATTEMPTS = 1  # fits tried before non-convergence becomes fatal

# Default labels
DEFAULT_GROUP = "G"
DEFAULT_TIME = 1


@dataclass(frozen=True)
class EstimationConfig:
    """Inference options threaded through every pipeline stage."""

    use_vb: bool = False
    draws: int = DEFAULT_DRAWS
    tune: int = DEFAULT_TUNE
    chains: int = DEFAULT_CHAINS
    cores: int = DEFAULT_CORES
    target_accept: float = TARGET_ACCEPT
    vb_iterations: int = VB_ITERATIONS
    seed: int = RANDOM_SEED
    rhat_threshold: float = RHAT_THRESHOLD
    ess_threshold: float = ESS_THRESHOLD
    max_divergences: int = MAX_DIVERGENCES
    max_attempts: int = MAX_IDENTIFY_ATTEMPTS

    @property
    def mode(self) -> str:
        return "vb" if self.use_vb else "nuts"
