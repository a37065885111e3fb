"""Inference through PyMC (NUTS or ADVI) and convergence diagnostics."""

from __future__ import annotations

import time
import warnings
from typing import Optional, Sequence

import arviz as az
import numpy as np
import pymc as pm

from idealpoint.config import VB_REL_TOLERANCE, VB_WINDOW, EstimationConfig
from idealpoint.errors import ConvergenceError, ConvergenceWarning
from idealpoint.models import ConvergenceReport


def sample_model(
    model: pm.Model,
    config: EstimationConfig,
) -> tuple[az.InferenceData, Optional[np.ndarray], float]:
    """Run full sampling (NUTS) or approximate inference (ADVI).

    Returns (InferenceData, ADVI loss history or None, seconds).
    """
    t0 = time.time()
    loss = None
    with model:
        if config.use_vb:
            print(f"  ADVI: {config.vb_iterations} iterations, {config.draws} draws")
            print(f"  seed={config.seed}")
            approx = pm.fit(
                n=config.vb_iterations,
                method="advi",
                random_seed=config.seed,
                progressbar=True,
            )
            loss = np.asarray(approx.hist)
            idata = approx.sample(config.draws, random_seed=config.seed)
        else:
            print(
                f"  Sampling: {config.draws} draws, {config.tune} tune, "
                f"{config.chains} chains, {config.cores} cores"
            )
            print(f"  target_accept={config.target_accept}, seed={config.seed}")
            idata = pm.sample(
                draws=config.draws,
                tune=config.tune,
                chains=config.chains,
                cores=config.cores,
                target_accept=config.target_accept,
                random_seed=config.seed,
                progressbar=True,
            )
    elapsed = time.time() - t0
    print(f"  Inference complete in {elapsed:.1f}s")
    return idata, loss, elapsed


def check_convergence(
    idata: az.InferenceData,
    var_names: Sequence[str],
    config: EstimationConfig,
) -> ConvergenceReport:
    """R-hat, bulk ESS and divergence checks for a NUTS posterior.

    R-hat needs at least two chains; with one chain it is reported as NaN
    and not checked.
    """
    stats: dict[str, float] = {}
    problems: list[str] = []
    var_names = [v for v in var_names if v in idata.posterior]

    n_chains = idata.posterior.sizes["chain"]
    if n_chains > 1:
        rhat = az.rhat(idata, var_names=var_names)
        rhat_max = max(float(np.nanmax(rhat[v].values)) for v in var_names)
    else:
        rhat_max = float("nan")
    stats["rhat_max"] = rhat_max
    if rhat_max > config.rhat_threshold:
        problems.append(f"R-hat max {rhat_max:.4f} > {config.rhat_threshold}")
    rhat_status = "WARNING" if rhat_max > config.rhat_threshold else "OK"
    print(f"  R-hat:        max = {rhat_max:.4f}  {rhat_status}")

    ess = az.ess(idata, var_names=var_names)
    ess_min = min(float(np.nanmin(ess[v].values)) for v in var_names)
    stats["ess_min"] = ess_min
    if ess_min < config.ess_threshold:
        problems.append(f"ESS min {ess_min:.0f} < {config.ess_threshold}")
    ess_status = "WARNING" if ess_min < config.ess_threshold else "OK"
    print(f"  ESS:          min = {ess_min:.0f}  {ess_status}")

    divergences = 0
    if "sample_stats" in idata.groups() and "diverging" in idata.sample_stats:
        divergences = int(idata.sample_stats["diverging"].sum().values)
    stats["divergences"] = divergences
    if divergences > config.max_divergences:
        problems.append(f"{divergences} divergences > {config.max_divergences}")
    div_status = "WARNING" if divergences > config.max_divergences else "OK"
    print(f"  Divergences:  {divergences}  {div_status}")

    report = ConvergenceReport(
        mode="nuts", converged=not problems, statistics=stats, problems=problems
    )
    if report.converged:
        print("  CONVERGENCE: ALL CHECKS PASSED")
    else:
        print("  CONVERGENCE: SOME CHECKS FAILED — inspect diagnostics")
    return report


def check_vb_convergence(loss: np.ndarray, window: int = VB_WINDOW) -> ConvergenceReport:
    """Relative change of the mean ADVI loss between the last two windows."""
    loss = np.asarray(loss, dtype=float)
    window = min(window, len(loss) // 2)
    stats: dict[str, float] = {"n_iterations": float(len(loss))}

    if window < 1 or not np.all(np.isfinite(loss[-2 * window :])):
        problems = ["ADVI loss history too short or not finite"]
        stats["rel_change"] = float("nan")
    else:
        last = float(np.mean(loss[-window:]))
        prev = float(np.mean(loss[-2 * window : -window]))
        rel_change = abs(last - prev) / max(abs(prev), 1e-12)
        stats["rel_change"] = rel_change
        stats["final_loss"] = last
        problems = []
        if rel_change >= VB_REL_TOLERANCE:
            problems.append(f"ADVI loss relative change {rel_change:.4f} >= {VB_REL_TOLERANCE}")

    status = "OK" if not problems else "WARNING"
    print(f"  ADVI loss change: {stats['rel_change']:.4f}  {status}")
    return ConvergenceReport(mode="vb", converged=not problems, statistics=stats, problems=problems)


def enforce_convergence(report: ConvergenceReport) -> None:
    """Warn (approximate inference) or raise (full sampling) on non-convergence."""
    if report.converged:
        return
    if report.mode == "vb":
        warnings.warn(
            f"Approximate inference may not have converged: {report.describe()}",
            ConvergenceWarning,
            stacklevel=2,
        )
        return
    raise ConvergenceError(f"Sampler did not converge: {report.describe()}", report=report)
