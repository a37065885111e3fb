"""Synthetic data and posterior draws with known ground truth.

Used to check that estimation and identification recover the true ordering
of persons, and to exercise the time-varying processes.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
import polars as pl

from idealpoint.config import RANDOM_SEED
from idealpoint.models import ModelType, TimeProcess


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


def simulate_time_paths(
    n_persons: int,
    n_time: int,
    process: TimeProcess | str = TimeProcess.RANDOM_WALK,
    time_sd: float = 0.2,
    ar_coef: float = 0.5,
    max_time_sd: Optional[float] = None,
    start: Optional[np.ndarray] = None,
    seed: int = RANDOM_SEED,
) -> np.ndarray:
    """Trait trajectories, shape (n_time, n_persons).

    ``start`` is the first position (random walk) or the long-run mean (AR(1));
    drawn from Normal(0, 1) when omitted. ``max_time_sd`` caps the innovation SD.
    """
    process = TimeProcess(process)
    rng = np.random.default_rng(seed)
    sd = min(time_sd, max_time_sd) if max_time_sd is not None else time_sd
    base = rng.normal(0.0, 1.0, n_persons) if start is None else np.asarray(start, dtype=float)

    paths = np.empty((n_time, n_persons))
    if process == TimeProcess.RANDOM_WALK:
        paths[0] = base
        for t in range(1, n_time):
            paths[t] = paths[t - 1] + sd * rng.normal(size=n_persons)
    else:
        paths[0] = base + sd * rng.normal(size=n_persons)
        for t in range(1, n_time):
            paths[t] = base + ar_coef * (paths[t - 1] - base) + sd * rng.normal(size=n_persons)
    return paths


def _outcomes(
    model_type: ModelType,
    eta: np.ndarray,
    item_idx: np.ndarray,
    cutpoints: np.ndarray,
    rng: np.random.Generator,
) -> np.ndarray:
    family = model_type.family
    if family in ("binary", "latent_space"):
        return rng.binomial(1, _sigmoid(eta)).astype(float)
    if family == "rating_scale":
        latent = eta + rng.logistic(size=eta.shape)
        return (latent[:, None] > cutpoints[None, :]).sum(axis=1).astype(float)
    if family == "graded_response":
        latent = eta + rng.logistic(size=eta.shape)
        return (latent[:, None] > cutpoints[item_idx]).sum(axis=1).astype(float)
    if family == "poisson":
        return rng.poisson(np.exp(np.clip(eta, -5.0, 3.0))).astype(float)
    if family == "normal":
        return eta + rng.normal(0.0, 0.5, eta.shape)
    return np.exp(eta + rng.normal(0.0, 0.5, eta.shape))


def simulate_ideal_data(
    n_persons: int = 20,
    n_items: int = 50,
    model_type: ModelType | int = ModelType.BINARY,
    n_time: int = 1,
    time_process: Optional[TimeProcess | str] = None,
    time_sd: float = 0.2,
    ar_coef: float = 0.5,
    missing_rate: float = 0.0,
    n_levels: int = 4,
    seed: int = RANDOM_SEED,
) -> tuple[pl.DataFrame, dict]:
    """Simulate a long response table for one model variant.

    Inflated variants generate missingness from the trait (a hurdle with a
    base rate of ``missing_rate``); other variants drop responses completely
    at random at that rate. Missing responses are null outcomes.

    Returns (long table with person_id, item_id, time_id, outcome; truth dict).
    """
    model_type = ModelType(model_type)
    rng = np.random.default_rng(seed)

    if time_process is None:
        ideal = rng.normal(0.0, 1.0, (1, n_persons))
        n_time = 1
    else:
        ideal = simulate_time_paths(
            n_persons, n_time, time_process, time_sd=time_sd, ar_coef=ar_coef, seed=seed + 1
        )

    discrimination = rng.choice([-1.0, 1.0], n_items) * rng.uniform(0.5, 2.0, n_items)
    difficulty = rng.normal(0.0, 1.0, n_items)
    n_cut = n_levels - 1
    if model_type.family == "graded_response":
        cutpoints = np.sort(rng.normal(0.0, 1.5, (n_items, n_cut)), axis=1)
    else:
        cutpoints = np.linspace(-1.5, 1.5, n_cut)

    grid = np.meshgrid(np.arange(n_time), np.arange(n_persons), np.arange(n_items), indexing="ij")
    t_idx, p_idx, i_idx = (g.ravel() for g in grid)
    trait = ideal[t_idx, p_idx]
    if model_type.family == "latent_space":
        eta = difficulty[i_idx] - np.abs(trait - discrimination[i_idx])
    elif model_type.family == "graded_response":
        eta = discrimination[i_idx] * trait
    else:
        eta = discrimination[i_idx] * trait - difficulty[i_idx]

    outcome = _outcomes(model_type, eta, i_idx, cutpoints, rng)

    if model_type.inflated and missing_rate > 0:
        miss_discrim = rng.normal(0.0, 1.0, n_items)
        logit_base = np.log(missing_rate / (1.0 - missing_rate))
        missing = rng.binomial(1, _sigmoid(miss_discrim[i_idx] * trait + logit_base)).astype(bool)
    else:
        missing = rng.random(len(outcome)) < missing_rate

    table = pl.DataFrame(
        {
            "person_id": [f"p{p:03d}" for p in p_idx],
            "item_id": [f"i{i:03d}" for i in i_idx],
            "time_id": t_idx + 1,
            "outcome": pl.Series(np.where(missing, np.nan, outcome)).fill_nan(None),
        }
    )
    truth = {
        "ideal_pts": ideal[0] if time_process is None else ideal,
        "discrimination": discrimination,
        "difficulty": difficulty,
        "cutpoints": cutpoints,
        "missing_rate": float(missing.mean()),
    }
    return table, truth


def simulate_unidentified_draws(
    true_traits: np.ndarray,
    n_draws: int = 500,
    noise_sd: float = 0.1,
    seed: int = RANDOM_SEED,
) -> np.ndarray:
    """Posterior-like draws of ``true_traits`` under random per-draw invariances.

    Each draw is the truth plus noise, then reflected with probability 1/2,
    scaled by Uniform(0.5, 2) and shifted by Normal(0, 1): exactly the
    ambiguity an unidentified sampler can wander through.
    """
    truth = np.asarray(true_traits, dtype=float)
    rng = np.random.default_rng(seed)
    noisy = truth[None, ...] + rng.normal(0.0, noise_sd, (n_draws,) + truth.shape)
    sign = rng.choice([-1.0, 1.0], n_draws)
    scale = sign * rng.uniform(0.5, 2.0, n_draws)
    shift = rng.normal(0.0, 1.0, n_draws)
    shape = (-1,) + (1,) * truth.ndim
    return scale.reshape(shape) * noisy + shift.reshape(shape)
