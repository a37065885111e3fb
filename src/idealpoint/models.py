"""Data classes and enums shared across the estimation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Optional

import numpy as np
import polars as pl

_FAMILIES = {
    1: "binary",
    3: "rating_scale",
    5: "graded_response",
    7: "poisson",
    9: "normal",
    11: "lognormal",
    13: "latent_space",
}


class ModelType(IntEnum):
    """The fourteen outcome / missingness combinations.

    Odd codes ignore missing responses; the following even code adds a
    hurdle that models whether a response is missing at all.
    """

    BINARY = 1
    BINARY_INFLATED = 2
    RATING_SCALE = 3
    RATING_SCALE_INFLATED = 4
    GRADED_RESPONSE = 5
    GRADED_RESPONSE_INFLATED = 6
    POISSON = 7
    POISSON_INFLATED = 8
    NORMAL = 9
    NORMAL_INFLATED = 10
    LOGNORMAL = 11
    LOGNORMAL_INFLATED = 12
    LATENT_SPACE = 13
    LATENT_SPACE_INFLATED = 14

    @property
    def inflated(self) -> bool:
        return self.value % 2 == 0

    @property
    def family(self) -> str:
        return _FAMILIES[self.value - 1 if self.inflated else self.value]

    @property
    def ordinal(self) -> bool:
        return self.family in ("rating_scale", "graded_response")

    @property
    def discrete(self) -> bool:
        """Outcomes are recoded to integer categories (vs. kept numeric)."""
        return self.family in ("binary", "rating_scale", "graded_response", "latent_space")

    @property
    def label(self) -> str:
        name = self.family.replace("_", " ")
        return f"{name} (inflated)" if self.inflated else name


class TimeProcess(str, Enum):
    """Over-time process for time-varying ideal points."""

    RANDOM_WALK = "random_walk"
    AR1 = "ar1"


@dataclass(frozen=True, eq=False)
class IdealData:
    """Normalized person x item (x time) response data.

    ``long`` has one row per response with integer indices into the label
    lists. Covariate matrices, when present, are row-aligned with ``long``.
    """

    long: pl.DataFrame
    person_labels: list[str]
    item_labels: list[str]
    group_labels: list[str]
    time_labels: list[Any]
    person_group: np.ndarray
    outcome_levels: Optional[list[Any]] = None
    miss_val: Any = None
    person_cov: Optional[np.ndarray] = None
    person_cov_names: list[str] = field(default_factory=list)
    item_cov: Optional[np.ndarray] = None
    item_cov_names: list[str] = field(default_factory=list)
    item_cov_miss: Optional[np.ndarray] = None
    item_cov_miss_names: list[str] = field(default_factory=list)

    @property
    def n_persons(self) -> int:
        return len(self.person_labels)

    @property
    def n_items(self) -> int:
        return len(self.item_labels)

    @property
    def n_groups(self) -> int:
        return len(self.group_labels)

    @property
    def n_time(self) -> int:
        return len(self.time_labels)

    @property
    def n_obs(self) -> int:
        return self.long.height

    @property
    def vote_count(self) -> int:
        """Number of non-missing outcome levels (0 for numeric outcomes)."""
        return len(self.outcome_levels) if self.outcome_levels is not None else 0

    @property
    def observed(self) -> pl.DataFrame:
        return self.long.filter(~pl.col("is_missing"))


@dataclass(frozen=True)
class AnchorSpec:
    """Reference persons for identification.

    ``high``/``low`` are person indices or labels; leave both as None to pick
    them automatically from an unidentified pre-fit.
    """

    high: Optional[int | str] = None
    low: Optional[int | str] = None
    high_value: Optional[float] = None
    low_value: Optional[float] = None

    @property
    def automatic(self) -> bool:
        return self.high is None and self.low is None

    @property
    def explicit_values(self) -> bool:
        return self.high_value is not None or self.low_value is not None


@dataclass
class ConvergenceReport:
    """Convergence statistics for one fit and whether they are in range."""

    mode: str
    converged: bool
    statistics: dict[str, float] = field(default_factory=dict)
    problems: list[str] = field(default_factory=list)

    @property
    def acceptable(self) -> bool:
        """Approximate fits are accepted with a warning; full sampling must converge."""
        return self.converged or self.mode == "vb"

    def describe(self) -> str:
        if self.converged:
            return f"{self.mode}: all checks passed"
        return f"{self.mode}: " + "; ".join(self.problems)


@dataclass
class IdentificationResult:
    """Per-draw affine transform mapping raw draws to the identified scale.

    identified = scale * raw + shift, one (scale, shift) pair per draw.
    """

    high_idx: int
    low_idx: int
    scale: np.ndarray
    shift: np.ndarray
    mode: str  # "affine" or "sign"
    anchor_source: str  # "explicit", "auto" or "prior_fit"
    high_value: Optional[float] = None
    low_value: Optional[float] = None
    time_process: Optional[TimeProcess] = None
    n_capped_draws: int = 0

    @property
    def n_reflected(self) -> int:
        return int(np.sum(self.scale < 0))


@dataclass
class IdealFit:
    """Result of ``id_estimate``: identified posterior plus diagnostics."""

    data: IdealData
    model_type: ModelType
    idata: Any  # arviz.InferenceData, identified
    identification: IdentificationResult
    convergence: ConvergenceReport
    mode: str
    time_process: Optional[TimeProcess] = None
    use_groups: bool = False
    prefit_means: Optional[np.ndarray] = None
    sampling_time: float = 0.0

    @property
    def trait_var(self) -> str:
        return "L_tp1" if self.time_process is not None else "L_full"
