"""Idealpoint - Bayesian IRT ideal point estimation with post-hoc identification."""

__version__ = "0.1.0"

from idealpoint.config import EstimationConfig as EstimationConfig
from idealpoint.data import id_make as id_make
from idealpoint.estimate import id_estimate as id_estimate
from idealpoint.identify import identify_draws as identify_draws
from idealpoint.identify import identify_posterior as identify_posterior
from idealpoint.models import AnchorSpec as AnchorSpec
from idealpoint.models import IdealData as IdealData
from idealpoint.models import IdealFit as IdealFit
from idealpoint.models import ModelType as ModelType
from idealpoint.models import TimeProcess as TimeProcess
from idealpoint.summarize import extract_draws as extract_draws
from idealpoint.summarize import summarize as summarize
