"""
Bayesian IRT Ideal Points with Post-Hoc Identification

Fits one of the fourteen ideal point model variants to a long response table,
identifies the person scale from two anchor persons (explicit, or picked from
an unidentified ADVI pre-fit), and validates the identified posterior.

Usage:
  uv run python analysis/ideal_points.py DATA.csv [--outcome outcome]
      [--person-id person_id] [--item-id item_id] [--group-id ...] [--time-id ...]
      [--model-type 1] [--vb] [--n-samples 1000] [--n-tune 1000] [--n-chains 4]
      [--high-anchor LABEL --low-anchor LABEL]

Outputs (in results/<dataset>/ideal_points/<date>/):
  - data/:   Parquet summaries (ideal points, items, convergence) + NetCDF posterior
  - filtering_manifest.json, run_info.json, run_log.txt
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path

import numpy as np
import polars as pl
from scipy import stats
from sklearn.metrics import roc_auc_score

from idealpoint.config import EstimationConfig
from idealpoint.data import clean_items, id_make
from idealpoint.estimate import id_estimate, print_header
from idealpoint.models import AnchorSpec, IdealData, IdealFit, ModelType, TimeProcess
from idealpoint.summarize import extract_draws, summarize

try:
    from analysis.run_context import RunContext
except ModuleNotFoundError:
    from run_context import RunContext

# ── Primer ───────────────────────────────────────────────────────────────────
# Written to results/<dataset>/ideal_points/README.md by RunContext on each run.

PRIMER = """\
# Bayesian IRT Ideal Points

## Purpose

Ideal point models place each person on a latent scale from their responses
to a set of items (roll call votes, survey questions, ratings). The scale is
only defined up to reflection, shift and stretch, so the sampler explores all
of these equivalent solutions. This analysis fits the model without any
constraint and fixes the scale afterwards, draw by draw, so that two anchor
persons land on fixed values (+1 and -1 by default).

## Method

1. **Data**: Long table, one row per person x item (x time point). Missing
   responses are nulls or a sentinel value.
2. **Anchors**: Given on the command line, or picked automatically as the
   persons with the highest and lowest posterior means in a quick,
   unidentified ADVI fit.
3. **Inference**: NUTS (default) or ADVI (`--vb`) on the unidentified model.
4. **Identification**: Per-draw affine map putting the anchors on their
   targets; item discriminations and difficulties are adjusted so every
   draw predicts exactly what it predicted before.
5. **Diagnostics**: R-hat, bulk ESS and divergences on the identified draws
   (NUTS), or the stability of the ADVI loss.
6. **Validation** (binary models): posterior predictive checks on the
   observed 1-rate and in-sample holdout prediction.

## Inputs

- A CSV with outcome, person and item columns, optionally group and time.

## Outputs

All outputs land in `results/<dataset>/ideal_points/<date>/`:

### `data/` — Parquet summaries + NetCDF posterior

| File | Description |
|------|-------------|
| `ideal_points.parquet` | Identified ideal points with 90% intervals |
| `item_params.parquet` | Item discrimination / difficulty / cutpoints |
| `posterior_summary.parquet` | ArviZ summary of every parameter |
| `idata.nc` | Full identified posterior (ArviZ NetCDF) |

### Root files

| File | Description |
|------|-------------|
| `filtering_manifest.json` | Model, anchors, convergence, validation results |
| `run_info.json` | Git commit, timestamp, Python version, parameters |
| `run_log.txt` | Full console output from the run |

## Interpretation Guide

- **posterior_median**: Position on the identified scale. The high anchor sits
  at +1 and the low anchor at -1 in every draw, so their intervals collapse.
- **Interval width**: Few responses or inconsistent responses widen it.
- **Discrimination**: Sign says which end of the scale favours a 1 response;
  magnitude says how sharply the item separates persons.
- **Reflected draws**: How many raw draws had the anchors the wrong way round.
  Many reflections are normal for an unidentified sampler.

## Caveats

- One latent dimension only.
- The holdout check is in-sample (the model saw all data). PPC is the proper
  Bayesian check.
- Automatic anchors depend on the pre-fit; give explicit anchors for results
  that must be reproducible across datasets.
"""

# ── Constants ────────────────────────────────────────────────────────────────

DEFAULT_N_SAMPLES = 1000
DEFAULT_N_TUNE = 1000
DEFAULT_N_CHAINS = 4
RANDOM_SEED = 42

N_PPC_REPLICATIONS = 500
HOLDOUT_FRACTION = 0.20  # Random 20% of observed cells
HOLDOUT_SEED = 42
PPC_CALIBRATED_RANGE = (0.1, 0.9)
N_EXTREMES = 5


# ── Helpers ──────────────────────────────────────────────────────────────────


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bayesian IRT ideal points")
    parser.add_argument("data", type=Path, help="Long response table (CSV)")
    parser.add_argument("--outcome", default="outcome")
    parser.add_argument("--person-id", default="person_id")
    parser.add_argument("--item-id", default="item_id")
    parser.add_argument("--group-id", default=None)
    parser.add_argument("--time-id", default=None)
    parser.add_argument("--miss-val", default=None, help="Sentinel for missing responses")
    parser.add_argument(
        "--model-type",
        type=int,
        default=int(ModelType.BINARY),
        choices=[int(m) for m in ModelType],
    )
    parser.add_argument(
        "--time-process", choices=[p.value for p in TimeProcess], default=None
    )
    parser.add_argument("--vb", action="store_true", help="ADVI instead of NUTS")
    parser.add_argument(
        "--n-samples",
        type=int,
        default=DEFAULT_N_SAMPLES,
        help="Posterior draws per chain",
    )
    parser.add_argument(
        "--n-tune",
        type=int,
        default=DEFAULT_N_TUNE,
        help="MCMC tuning samples (discarded)",
    )
    parser.add_argument(
        "--n-chains",
        type=int,
        default=DEFAULT_N_CHAINS,
        help="Number of MCMC chains",
    )
    parser.add_argument("--high-anchor", default=None)
    parser.add_argument("--low-anchor", default=None)
    parser.add_argument("--results-root", type=Path, default=None)
    return parser.parse_args(argv)


# ── Phase 1: Load Data ──────────────────────────────────────────────────────


def load_data(args: argparse.Namespace) -> IdealData:
    """Read the CSV, normalize it, and drop items that cannot be estimated."""
    model_type = ModelType(args.model_type)
    scores = pl.read_csv(args.data)
    print(f"  Rows: {scores.height:,}  Columns: {scores.columns}")

    miss_val = args.miss_val
    if miss_val is not None:
        try:
            miss_val = float(miss_val)
        except ValueError:
            pass

    data = id_make(
        scores,
        outcome=args.outcome,
        person_id=args.person_id,
        item_id=args.item_id,
        group_id=args.group_id,
        time_id=args.time_id,
        miss_val=miss_val,
        discrete=model_type.discrete,
    )
    data = clean_items(data, model_type)
    n_cells = data.n_obs
    print(f"  {data.n_persons} persons x {data.n_items} items x {data.n_time} time points")
    print(
        f"  Observed cells: {data.observed.height:,} / {n_cells:,} "
        f"({100 * data.observed.height / n_cells:.1f}%)"
    )
    return data


# ── Phase 3: Posterior Predictive Checks ────────────────────────────────────


def binary_predictor_draws(fit: IdealFit) -> tuple[np.ndarray, np.ndarray]:
    """Linear predictor for every observed response, per draw.

    Returns (eta with shape (n_draws, n_observed), observed 0/1 outcomes).
    """
    obs = fit.data.observed
    p_col = "group_idx" if fit.use_groups else "person_idx"
    p_idx = obs[p_col].to_numpy()
    i_idx = obs["item_idx"].to_numpy()
    t_idx = obs["time_idx"].to_numpy()

    traits = extract_draws(fit, "persons")
    trait = traits[:, p_idx] if traits.ndim == 2 else traits[:, t_idx, p_idx]
    discrim = extract_draws(fit, "reg_discrim")
    diff = extract_draws(fit, "reg_diff")
    eta = discrim[:, i_idx] * trait - diff[:, i_idx]
    return eta, obs["y"].to_numpy().astype(int)


def run_ppc(fit: IdealFit) -> dict:
    """Posterior predictive checks on the overall 1-rate and classification accuracy."""
    eta, y_obs = binary_predictor_draws(fit)
    observed_rate = float(y_obs.mean())

    rng = np.random.default_rng(RANDOM_SEED)
    n_reps = min(N_PPC_REPLICATIONS, eta.shape[0])
    draws = rng.choice(eta.shape[0], size=n_reps, replace=False)

    rep_rates = np.empty(n_reps)
    rep_accuracies = np.empty(n_reps)
    for k, d in enumerate(draws):
        p = 1.0 / (1.0 + np.exp(-eta[d]))
        y_rep = rng.binomial(1, p)
        rep_rates[k] = y_rep.mean()
        rep_accuracies[k] = (y_rep == y_obs).mean()

    p_rate = float(np.mean(rep_rates >= observed_rate))
    lo, hi = PPC_CALIBRATED_RANGE

    print(f"    Observed 1-rate: {observed_rate:.3f}")
    print(f"    Replicated 1-rate: {rep_rates.mean():.3f} +/- {rep_rates.std():.3f}")
    print(f"    Bayesian p-value: {p_rate:.3f}")
    print(f"    Mean replicated accuracy: {rep_accuracies.mean():.3f}")
    if lo <= p_rate <= hi:
        print(f"    Result: WELL-CALIBRATED (p in [{lo}, {hi}])")
    else:
        print(f"    Result: POTENTIAL MISFIT (p outside [{lo}, {hi}])")

    return {
        "observed_rate": observed_rate,
        "replicated_rate_mean": float(rep_rates.mean()),
        "replicated_rate_sd": float(rep_rates.std()),
        "bayesian_p_rate": p_rate,
        "mean_replicated_accuracy": float(rep_accuracies.mean()),
        "n_replications": n_reps,
    }


# ── Phase 4: Holdout Validation ─────────────────────────────────────────────


def holdout_mask(n: int, fraction: float = HOLDOUT_FRACTION, seed: int = HOLDOUT_SEED):
    rng = np.random.default_rng(seed)
    mask = np.zeros(n, dtype=bool)
    mask[rng.choice(n, size=int(n * fraction), replace=False)] = True
    return mask


def run_holdout_validation(fit: IdealFit) -> dict:
    """In-sample prediction of a random 20% of observed cells from posterior means."""
    eta, y_obs = binary_predictor_draws(fit)
    p_one = (1.0 / (1.0 + np.exp(-eta))).mean(axis=0)

    mask = holdout_mask(len(y_obs))
    y_holdout = y_obs[mask]
    p_holdout = p_one[mask]

    accuracy = float(((p_holdout >= 0.5).astype(int) == y_holdout).mean())
    base_rate = float(y_holdout.mean())
    base_accuracy = max(base_rate, 1 - base_rate)
    try:
        auc = float(roc_auc_score(y_holdout, p_holdout))
    except ValueError:
        auc = float("nan")

    print(f"    Holdout cells: {int(mask.sum()):,}")
    print(f"    Base-rate accuracy: {base_accuracy:.3f}")
    print(f"    Model accuracy: {accuracy:.3f}")
    print(f"    AUC-ROC: {auc:.3f}")
    verdict = "PASS" if accuracy > base_accuracy else "FAIL"
    print(f"    Result: {verdict} (accuracy {accuracy:.3f} vs base rate {base_accuracy:.3f})")

    return {
        "holdout_cells": int(mask.sum()),
        "base_rate": base_rate,
        "base_accuracy": base_accuracy,
        "accuracy": accuracy,
        "auc_roc": auc,
        "note": "In-sample prediction (model saw all data). "
        "PPC provides proper Bayesian validation.",
    }


def compare_with_prefit(fit: IdealFit) -> dict | None:
    """Rank agreement between the identified ideal points and the anchor pre-fit."""
    if fit.prefit_means is None:
        return None
    post = fit.idata.posterior
    if fit.time_process == TimeProcess.AR1 and "L_mean" in post:
        ref_means = post["L_mean"].values.mean(axis=(0, 1))
    else:
        draws = extract_draws(fit, "persons")
        ref = draws[:, 0, :] if draws.ndim == 3 else draws
        ref_means = ref.mean(axis=0)
    rho, _ = stats.spearmanr(ref_means, fit.prefit_means)
    # Pre-fit orientation is arbitrary; anchors were taken from its extremes
    rho = abs(float(rho))
    print(f"    Spearman |rho| with unidentified pre-fit: {rho:.3f}")
    return {"spearman_abs_rho": rho}


# ── Phase 5: Filtering Manifest + Main ──────────────────────────────────────


def save_filtering_manifest(manifest: dict, out_dir: Path) -> None:
    path = out_dir / "filtering_manifest.json"
    with open(path, "w") as f:
        json.dump(manifest, f, indent=2, default=str)
    print(f"  Saved: {path.name}")


def print_extremes(ideal_points: pl.DataFrame) -> None:
    ranked = ideal_points.sort("posterior_median", descending=True)
    for title, rows in (
        (f"Top {N_EXTREMES}:", ranked.head(N_EXTREMES)),
        (f"Bottom {N_EXTREMES}:", ranked.tail(N_EXTREMES)),
    ):
        print(f"\n  {title}")
        for row in rows.iter_rows(named=True):
            print(
                f"    {row['person']:24s}  t={row['time_point']!s:6s}  "
                f"{row['posterior_median']:+.3f}  [{row['low_interval']:+.3f}, "
                f"{row['high_interval']:+.3f}]"
            )


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    model_type = ModelType(args.model_type)

    with RunContext(
        dataset=str(args.data),
        analysis_name="ideal_points",
        params=vars(args),
        results_root=args.results_root,
        primer=PRIMER,
    ) as ctx:
        print(f"Bayesian IRT Ideal Points — {args.data}")
        print(f"Model:     {int(model_type)} ({model_type.label})")
        print(f"Output:    {ctx.run_dir}")

        # ── Phase 1: Load data ──
        print_header("PHASE 1: LOADING DATA")
        data = load_data(args)

        # ── Phase 2: Estimate and identify ──
        config = EstimationConfig(
            use_vb=args.vb,
            draws=args.n_samples,
            tune=args.n_tune,
            chains=args.n_chains,
            seed=RANDOM_SEED,
        )
        anchors = AnchorSpec(high=args.high_anchor, low=args.low_anchor)
        fit = id_estimate(
            data,
            model_type=model_type,
            config=config,
            anchors=anchors,
            time_process=args.time_process,
        )

        print_header("PHASE 2: POSTERIOR SUMMARIES")
        ideal_points = summarize(fit, "ideal_pts")
        item_params = summarize(fit, "items")
        posterior_summary = summarize(fit, "all")
        print_extremes(ideal_points)

        ideal_points.write_parquet(ctx.data_dir / "ideal_points.parquet")
        item_params.write_parquet(ctx.data_dir / "item_params.parquet")
        posterior_summary.write_parquet(ctx.data_dir / "posterior_summary.parquet")
        print("  Saved: ideal_points.parquet")
        print("  Saved: item_params.parquet")
        print("  Saved: posterior_summary.parquet")

        fit.idata.to_netcdf(str(ctx.data_dir / "idata.nc"))
        print("  Saved: idata.nc")

        # ── Phase 3/4: Validation (binary outcomes only) ──
        ppc: dict | None = None
        holdout: dict | None = None
        if model_type.family == "binary":
            print_header("PHASE 3: POSTERIOR PREDICTIVE CHECKS")
            ppc = run_ppc(fit)
            print_header("PHASE 4: HOLDOUT VALIDATION")
            holdout = run_holdout_validation(fit)
        else:
            print_header(f"VALIDATION SKIPPED ({model_type.label} outcomes)")
        prefit = compare_with_prefit(fit)

        # ── Phase 5: Filtering manifest ──
        print_header("PHASE 5: FILTERING MANIFEST")
        ident = fit.identification
        labels = data.person_labels
        manifest = {
            "model": model_type.label,
            "model_type": int(model_type),
            "time_process": fit.time_process.value if fit.time_process else None,
            "inference": {
                "mode": fit.mode,
                "n_samples": args.n_samples,
                "n_tune": args.n_tune,
                "n_chains": args.n_chains,
                "seed": RANDOM_SEED,
                "sampling_time_s": round(fit.sampling_time, 1),
            },
            "data": {
                "n_persons": data.n_persons,
                "n_items": data.n_items,
                "n_time": data.n_time,
                "n_observed": data.observed.height,
                "n_missing": data.n_obs - data.observed.height,
            },
            "identification": {
                "mode": ident.mode,
                "anchor_source": ident.anchor_source,
                "high_anchor": labels[ident.high_idx],
                "low_anchor": labels[ident.low_idx],
                "high_value": ident.high_value,
                "low_value": ident.low_value,
                "n_reflected_draws": ident.n_reflected,
            },
            "convergence": {
                "converged": fit.convergence.converged,
                **fit.convergence.statistics,
                "problems": fit.convergence.problems,
            },
            "ppc": ppc,
            "holdout": holdout,
            "prefit_agreement": prefit,
        }
        save_filtering_manifest(manifest, ctx.run_dir)


if __name__ == "__main__":
    main()
