"""Post-hoc identification of the latent person scale.

Ideal point models are invariant to reflection, translation and scaling of
the person scale: (a * L + b) fits the data exactly as well as L once the item
parameters are adjusted. The models in model_spec.py are sampled without any
constraint, and this module fixes the scale afterwards, draw by draw:

- affine mode: solve for (a, b) so two anchor persons land exactly on target
  values (default +1 for the high anchor, -1 for the low anchor);
- sign mode: flip each draw so the high anchor exceeds the low anchor, then
  centre the anchors' midpoint, leaving the scale unchanged.

The same (a, b) is applied to every person (and every time point) of a draw,
so relative positions within a draw are preserved. For time-varying draws the
random walk fixes the anchors at the first time point; the stationary AR(1)
process fixes the anchors' long-run means instead.
"""

from __future__ import annotations

import warnings
from enum import Enum
from typing import Optional

import arviz as az
import numpy as np

from idealpoint.config import (
    DEFAULT_HIGH_VALUE,
    DEFAULT_LOW_VALUE,
    DEGENERATE_TOL,
    MAX_IDENTIFY_ATTEMPTS,
    MIN_ANCHOR_SEPARATION,
)
from idealpoint.errors import ConvergenceError, IdentificationError, IdentificationWarning
from idealpoint.model_spec import DISCRIM_VARS, TRAIT_VARS
from idealpoint.models import ConvergenceReport, IdentificationResult, TimeProcess
from idealpoint.sampling import enforce_convergence

# ── Transforms ───────────────────────────────────────────────────────────────


def _check_gap(gap: np.ndarray) -> None:
    bad = ~np.isfinite(gap) | (np.abs(gap) < DEGENERATE_TOL)
    n_bad = int(bad.sum())
    if n_bad:
        raise IdentificationError(
            f"Anchors are tied in {n_bad} of {len(gap)} draws "
            f"(|high - low| < {DEGENERATE_TOL}); the scale cannot be solved"
        )


def anchor_transform(
    high: np.ndarray,
    low: np.ndarray,
    high_value: float = DEFAULT_HIGH_VALUE,
    low_value: float = DEFAULT_LOW_VALUE,
) -> tuple[np.ndarray, np.ndarray]:
    """Exact per-draw affine solve putting the anchors on their targets.

    Returns (scale, shift) such that scale * high + shift == high_value and
    scale * low + shift == low_value for every draw. A negative scale is a
    reflection.
    """
    if not high_value > low_value:
        raise IdentificationError(
            f"High anchor target ({high_value}) must exceed low anchor target ({low_value})"
        )
    high = np.asarray(high, dtype=float)
    low = np.asarray(low, dtype=float)
    gap = high - low
    _check_gap(gap)
    scale = (high_value - low_value) / gap
    shift = high_value - scale * high
    return scale, shift


def sign_transform(
    high: np.ndarray,
    low: np.ndarray,
    centre: float = 0.0,
) -> tuple[np.ndarray, np.ndarray]:
    """Per-draw reflection and shift: high anchor above low, midpoint at ``centre``."""
    high = np.asarray(high, dtype=float)
    low = np.asarray(low, dtype=float)
    gap = high - low
    _check_gap(gap)
    scale = np.sign(gap)
    shift = centre - scale * (high + low) / 2.0
    return scale, shift


def apply_transform(draws: np.ndarray, scale: np.ndarray, shift: np.ndarray) -> np.ndarray:
    """Apply one (scale, shift) pair per draw along the leading axis."""
    draws = np.asarray(draws, dtype=float)
    shape = (-1,) + (1,) * (draws.ndim - 1)
    return scale.reshape(shape) * draws + shift.reshape(shape)


def step_sd(draws: np.ndarray) -> np.ndarray:
    """SD of one-step changes per draw and person for (draw, time, person) arrays."""
    return np.diff(draws, axis=1).std(axis=1)


# ── Anchors ──────────────────────────────────────────────────────────────────


def _check_indices(n_persons: int, high_idx: int, low_idx: int) -> None:
    for name, idx in (("high", high_idx), ("low", low_idx)):
        if not 0 <= idx < n_persons:
            raise IdentificationError(f"{name} anchor index {idx} out of range [0, {n_persons})")
    if high_idx == low_idx:
        raise IdentificationError("High and low anchors must be different persons")


def anchor_reference(
    draws: np.ndarray,
    idx: int,
    time_process: Optional[TimeProcess] = None,
    long_run_means: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Per-draw value of one person that the identification constrains.

    Static: the trait itself. Random walk: the first time point. AR(1): the
    long-run mean (taken from ``long_run_means`` when sampled, otherwise the
    time-average of the trajectory).
    """
    if draws.ndim == 2:
        return draws[:, idx]
    if time_process is None:
        raise IdentificationError("Time-varying draws need a time process to be identified")
    if TimeProcess(time_process) == TimeProcess.RANDOM_WALK:
        return draws[:, 0, idx]
    if long_run_means is not None:
        return np.asarray(long_run_means, dtype=float)[:, idx]
    return draws[:, :, idx].mean(axis=1)


def select_anchors(prefit_draws: np.ndarray) -> tuple[int, int, np.ndarray]:
    """Pick anchors from an unidentified fit: argmax / argmin of posterior means.

    Time-varying draws (draw, time, person) use the first time point. Ties go
    to the first person in input order.

    Returns (high_idx, low_idx, posterior_means).
    """
    draws = np.asarray(prefit_draws, dtype=float)
    ref = draws[:, 0, :] if draws.ndim == 3 else draws
    if ref.shape[-1] < 2:
        raise IdentificationError("At least two persons are needed to pick anchors")

    means = ref.mean(axis=0)
    sds = ref.std(axis=0)
    high_idx = int(np.argmax(means))
    low_idx = int(np.argmin(means))

    separation = float(means[high_idx] - means[low_idx])
    pooled_sd = float(np.sqrt((sds[high_idx] ** 2 + sds[low_idx] ** 2) / 2.0))
    if separation < DEGENERATE_TOL or separation < MIN_ANCHOR_SEPARATION * pooled_sd:
        raise IdentificationError(
            f"Anchors are not separable in the unidentified fit: posterior means differ by "
            f"{separation:.4g} (pooled SD {pooled_sd:.4g}); the scale is degenerate"
        )

    print(f"  High anchor: person {high_idx}, unidentified mean={means[high_idx]:+.3f}")
    print(f"  Low anchor:  person {low_idx}, unidentified mean={means[low_idx]:+.3f}")
    return high_idx, low_idx, means


# ── Identification ───────────────────────────────────────────────────────────


def identify_draws(
    draws: np.ndarray,
    high_idx: int,
    low_idx: int,
    high_value: Optional[float] = None,
    low_value: Optional[float] = None,
    rescale: bool = True,
    time_process: Optional[TimeProcess | str] = None,
    long_run_means: Optional[np.ndarray] = None,
    max_time_sd: Optional[float] = None,
    anchor_source: str = "explicit",
) -> tuple[np.ndarray, IdentificationResult]:
    """Identify a (draw, person) or (draw, time, person) matrix of trait draws.

    Args:
        draws: Raw posterior draws; never modified.
        high_idx, low_idx: Anchor persons.
        high_value, low_value: Targets for the anchors; default +1 / -1.
        rescale: Affine solve (True) or sign-and-shift only (False). In sign
            mode the targets only set where the anchors' midpoint is centred.
        time_process: Required for time-varying draws.
        long_run_means: (draw, person) AR(1) long-run means, if sampled.
        max_time_sd: Cap on the SD of one-step changes; draws exceeding it
            are counted and reported with an IdentificationWarning.
        anchor_source: "explicit" or "auto", recorded in the result.

    Returns:
        (identified draws, IdentificationResult).
    """
    draws = np.asarray(draws, dtype=float)
    if draws.ndim not in (2, 3):
        raise IdentificationError(f"Expected 2-D or 3-D draws, got shape {draws.shape}")
    if time_process is not None:
        time_process = TimeProcess(time_process)
    _check_indices(draws.shape[-1], high_idx, low_idx)

    high = anchor_reference(draws, high_idx, time_process, long_run_means)
    low = anchor_reference(draws, low_idx, time_process, long_run_means)

    hv = DEFAULT_HIGH_VALUE if high_value is None else float(high_value)
    lv = DEFAULT_LOW_VALUE if low_value is None else float(low_value)
    if rescale:
        scale, shift = anchor_transform(high, low, hv, lv)
        mode = "affine"
    else:
        if not hv > lv:
            raise IdentificationError(
                f"High anchor target ({hv}) must exceed low anchor target ({lv})"
            )
        scale, shift = sign_transform(high, low, centre=(hv + lv) / 2.0)
        mode = "sign"

    identified = apply_transform(draws, scale, shift)

    n_capped = 0
    if max_time_sd is not None:
        if identified.ndim != 3:
            raise IdentificationError("max_time_sd only applies to time-varying draws")
        over = (step_sd(identified) > max_time_sd).any(axis=1)
        n_capped = int(over.sum())
        if n_capped:
            warnings.warn(
                f"{n_capped} of {len(over)} identified draws have an over-time step SD "
                f"above the cap of {max_time_sd}",
                IdentificationWarning,
                stacklevel=2,
            )

    result = IdentificationResult(
        high_idx=high_idx,
        low_idx=low_idx,
        scale=scale,
        shift=shift,
        mode=mode,
        anchor_source=anchor_source,
        high_value=hv if rescale else None,
        low_value=lv if rescale else None,
        time_process=time_process,
        n_capped_draws=n_capped,
    )
    return identified, result


def _stacked(values: np.ndarray) -> np.ndarray:
    """(chain, draw, ...) -> (chain * draw, ...)."""
    return values.reshape((-1,) + values.shape[2:])


def _per_draw(coef: np.ndarray, ndim: int) -> np.ndarray:
    """Broadcast a (chain, draw) coefficient against a (chain, draw, ...) array."""
    return coef.reshape(coef.shape + (1,) * (ndim - 2))


def transform_item_draws(posterior, scale: np.ndarray, shift: np.ndarray) -> dict[str, np.ndarray]:
    """Item and auxiliary parameters matching persons moved to scale * L + shift.

    ``scale`` and ``shift`` have shape (chain, draw). With identified
    L' = a * L + b, the 2PL predictor sigma_reg * L - B_int is unchanged when
    sigma_reg' = sigma_reg / a and B_int' = B_int + sigma_reg * b / a
    (likewise for sigma_abs / A_int and for graded-response cutpoints).
    Latent-space item positions move with the persons, which leaves the
    distance predictor unchanged only when scale is +/-1. Returns the new values
    by variable name; variables absent from the posterior are skipped.
    """
    a, b = scale, shift
    out: dict[str, np.ndarray] = {}

    latent_space = "ls_int" in posterior
    for discrim, diff in DISCRIM_VARS.items():
        if discrim not in posterior:
            continue
        s = posterior[discrim].values
        if latent_space and discrim == "sigma_reg":
            out[discrim] = _per_draw(a, s.ndim) * s + _per_draw(b, s.ndim)
            continue
        out[discrim] = s / _per_draw(a, s.ndim)
        offset = s * _per_draw(b, s.ndim) / _per_draw(a, s.ndim)
        if diff in posterior:
            out[diff] = posterior[diff].values + offset
        elif discrim == "sigma_reg" and "steps_votes_grm" in posterior:
            out["steps_votes_grm"] = posterior["steps_votes_grm"].values + offset[..., None]

    if "legis_x" in posterior:
        vals = posterior["legis_x"].values
        out["legis_x"] = _per_draw(a, vals.ndim) * vals
    if "time_sd" in posterior:
        out["time_sd"] = np.abs(a) * posterior["time_sd"].values
    if "L_innov" in posterior:
        vals = posterior["L_innov"].values
        out["L_innov"] = _per_draw(np.sign(a), vals.ndim) * vals
    return out


def identify_posterior(
    idata: az.InferenceData,
    high_idx: int,
    low_idx: int,
    high_value: Optional[float] = None,
    low_value: Optional[float] = None,
    rescale: bool = True,
    time_process: Optional[TimeProcess | str] = None,
    max_time_sd: Optional[float] = None,
    anchor_source: str = "explicit",
) -> tuple[az.InferenceData, IdentificationResult]:
    """Identify every person-scale variable of a posterior and adjust the items.

    Latent-space posteriors (those with ``ls_int``) are always identified in
    sign mode: person-item distances already fix the scale, so only
    reflection and location are free. Returns a new InferenceData; the input
    is left untouched.
    """
    post = idata.posterior
    if "ls_int" in post and rescale:
        print("  Latent-space distances fix the scale; identifying sign and location only")
        rescale = False
    trait = "L_tp1" if "L_tp1" in post else "L_full"
    raw = post[trait].values
    n_chain, n_draw = raw.shape[:2]

    long_run = _stacked(post["L_mean"].values) if "L_mean" in post else None
    identified, result = identify_draws(
        _stacked(raw),
        high_idx,
        low_idx,
        high_value=high_value,
        low_value=low_value,
        rescale=rescale,
        time_process=time_process,
        long_run_means=long_run,
        max_time_sd=max_time_sd,
        anchor_source=anchor_source,
    )

    new = idata.copy()
    out = new.posterior
    a = result.scale.reshape(n_chain, n_draw)
    b = result.shift.reshape(n_chain, n_draw)

    def assign(var: str, values: np.ndarray) -> None:
        out[var] = (post[var].dims, values)

    assign(trait, identified.reshape(raw.shape))
    for var in TRAIT_VARS:
        if var != trait and var in post:
            vals = post[var].values
            assign(var, _per_draw(a, vals.ndim) * vals + _per_draw(b, vals.ndim))
    for var, values in transform_item_draws(post, a, b).items():
        assign(var, values)

    print(
        f"  Identified ({result.mode}, {result.anchor_source} anchors): "
        f"{result.n_reflected} of {len(result.scale)} draws reflected"
    )
    return new, result


# ── Anchor state machine ─────────────────────────────────────────────────────


class IdentificationState(str, Enum):
    UNCONSTRAINED = "unconstrained"
    HIGH_FIXED = "high_fixed"
    LOW_FIXED = "low_fixed"
    IDENTIFIED = "identified"


class AnchorStateMachine:
    """Tracks anchor fixing across fits: UNCONSTRAINED -> HIGH_FIXED -> LOW_FIXED -> IDENTIFIED.

    An anchor fix is only accepted from a fit whose ConvergenceReport is
    acceptable. A rejected fit sends the machine back to UNCONSTRAINED and
    raises ConvergenceError; after ``max_attempts`` rejections every further
    transition raises IdentificationError.
    """

    def __init__(self, max_attempts: int = MAX_IDENTIFY_ATTEMPTS) -> None:
        self.state = IdentificationState.UNCONSTRAINED
        self.max_attempts = max_attempts
        self.failures = 0
        self._warned = False

    @property
    def exhausted(self) -> bool:
        return self.failures >= self.max_attempts

    def _require(self, expected: IdentificationState, action: str) -> None:
        if self.exhausted:
            raise IdentificationError(
                f"Gave up identifying after {self.failures} non-converged fits"
            )
        if self.state != expected:
            raise IdentificationError(
                f"Cannot {action} in state '{self.state.value}' (expected '{expected.value}')"
            )

    def _guard(self, report: ConvergenceReport) -> None:
        if not report.acceptable:
            self.state = IdentificationState.UNCONSTRAINED
            self.failures += 1
            raise ConvergenceError(
                f"Anchor fix rejected (attempt {self.failures}/{self.max_attempts}): "
                f"{report.describe()}",
                report=report,
            )
        if not report.converged and not self._warned:
            enforce_convergence(report)
            self._warned = True

    def fix_high(self, report: ConvergenceReport) -> None:
        self._require(IdentificationState.UNCONSTRAINED, "fix the high anchor")
        self._guard(report)
        self.state = IdentificationState.HIGH_FIXED

    def fix_low(self, report: ConvergenceReport) -> None:
        self._require(IdentificationState.HIGH_FIXED, "fix the low anchor")
        self._guard(report)
        self.state = IdentificationState.LOW_FIXED

    def finalize(self) -> None:
        self._require(IdentificationState.LOW_FIXED, "finalize identification")
        self.state = IdentificationState.IDENTIFIED
