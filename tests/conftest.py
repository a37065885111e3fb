"""Shared fixtures: small fitted models with hand-built posteriors (no sampling)."""

import arviz as az
import numpy as np
import pytest

from idealpoint.data import id_make
from idealpoint.models import (
    ConvergenceReport,
    IdealFit,
    IdentificationResult,
    ModelType,
    TimeProcess,
)
from idealpoint.simulate import simulate_ideal_data


def make_fit(
    model_type: ModelType = ModelType.BINARY,
    time_process: TimeProcess | None = None,
    n_time: int = 1,
    n_chain: int = 2,
    n_draw: int = 100,
    seed: int = 0,
) -> IdealFit:
    """An IdealFit over simulated data with a random (already identified) posterior."""
    frame, _ = simulate_ideal_data(
        n_persons=5,
        n_items=4,
        model_type=model_type,
        n_time=n_time,
        time_process=time_process,
        missing_rate=0.2 if model_type.inflated else 0.0,
        seed=seed,
    )
    data = id_make(frame, time_id="time_id", discrete=model_type.discrete)
    rng = np.random.default_rng(seed)
    shape = (n_chain, n_draw)

    posterior: dict[str, np.ndarray] = {}
    dims: dict[str, list[str]] = {}
    coords = {"person": data.person_labels, "item": data.item_labels}

    if time_process is None:
        posterior["L_full"] = rng.normal(size=shape + (data.n_persons,))
        dims["L_full"] = ["person"]
    else:
        coords["time"] = [str(t) for t in data.time_labels]
        posterior["L_tp1"] = rng.normal(size=shape + (data.n_time, data.n_persons))
        dims["L_tp1"] = ["time", "person"]
        posterior["time_sd"] = np.abs(rng.normal(0.3, 0.05, size=shape))

    posterior["sigma_reg"] = rng.normal(size=shape + (data.n_items,))
    dims["sigma_reg"] = ["item"]
    if model_type.family != "graded_response":
        posterior["B_int"] = rng.normal(size=shape + (data.n_items,))
        dims["B_int"] = ["item"]
    if model_type.inflated:
        posterior["sigma_abs"] = rng.normal(size=shape + (data.n_items,))
        posterior["A_int"] = rng.normal(size=shape + (data.n_items,))
        dims["sigma_abs"] = ["item"]
        dims["A_int"] = ["item"]
    if model_type.ordinal:
        n_cut = data.vote_count - 1
        coords["cutpoint"] = list(range(n_cut))
        if model_type.family == "graded_response":
            cuts = np.sort(rng.normal(size=shape + (data.n_items, n_cut)), axis=-1)
            posterior["steps_votes_grm"] = cuts
            dims["steps_votes_grm"] = ["item", "cutpoint"]
        else:
            posterior["steps_votes"] = np.sort(rng.normal(size=shape + (n_cut,)), axis=-1)
            dims["steps_votes"] = ["cutpoint"]
    if model_type.family == "latent_space":
        posterior["ls_int"] = rng.normal(size=shape + (data.n_persons,))
        dims["ls_int"] = ["person"]

    idata = az.from_dict(
        posterior=posterior,
        sample_stats={"diverging": np.zeros(shape, dtype=bool)},
        coords=coords,
        dims=dims,
    )
    n_total = n_chain * n_draw
    identification = IdentificationResult(
        high_idx=0,
        low_idx=data.n_persons - 1,
        scale=np.ones(n_total),
        shift=np.zeros(n_total),
        mode="affine",
        anchor_source="explicit",
        high_value=1.0,
        low_value=-1.0,
        time_process=time_process,
    )
    return IdealFit(
        data=data,
        model_type=model_type,
        idata=idata,
        identification=identification,
        convergence=ConvergenceReport(mode="nuts", converged=True),
        mode="nuts",
        time_process=time_process,
    )


@pytest.fixture
def binary_fit() -> IdealFit:
    return make_fit()


@pytest.fixture
def rw_fit() -> IdealFit:
    return make_fit(time_process=TimeProcess.RANDOM_WALK, n_time=3)
