"""Posterior summaries and draw extraction for fitted models."""

from __future__ import annotations

import re

import arviz as az
import numpy as np
import polars as pl

from idealpoint.errors import ConfigurationError
from idealpoint.models import IdealFit

EXTRACT_VARS = {
    "persons": None,  # the fit's trait variable
    "reg_discrim": "sigma_reg",
    "reg_diff": "B_int",
    "miss_discrim": "sigma_abs",
    "miss_diff": "A_int",
}

COVARIATE_VARS = {
    "person_cov": ("legis_x", "person_cov_names"),
    "discrim_reg_cov": ("sigma_reg_x", "item_cov_names"),
    "discrim_infl_cov": ("sigma_abs_x", "item_cov_miss_names"),
}

_PARAM_RE = re.compile(r"^(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?:\[(?P<index>[^\]]*)\])?$")


def _stacked(fit: IdealFit, var: str) -> np.ndarray:
    if var not in fit.idata.posterior:
        raise ConfigurationError(
            f"Parameter '{var}' is not part of this {fit.model_type.label} model"
        )
    values = fit.idata.posterior[var].values
    return values.reshape((-1,) + values.shape[2:])


def _intervals(draws: np.ndarray, low_limit: float, high_limit: float) -> dict[str, np.ndarray]:
    return {
        "low_interval": np.quantile(draws, low_limit, axis=0),
        "posterior_median": np.median(draws, axis=0),
        "high_interval": np.quantile(draws, high_limit, axis=0),
    }


def _person_labels(fit: IdealFit) -> tuple[list[str], list[str]]:
    """(labels, group of each label) for the units ideal points were estimated for."""
    data = fit.data
    if fit.use_groups:
        return data.group_labels, data.group_labels
    groups = [data.group_labels[g] for g in data.person_group]
    return data.person_labels, groups


def summarize_ideal_points(
    fit: IdealFit,
    high_limit: float = 0.95,
    low_limit: float = 0.05,
    aggregate: bool = True,
) -> pl.DataFrame:
    """Ideal point intervals per person (and time point), or every draw."""
    draws = extract_draws(fit, "persons")
    if draws.ndim == 2:
        draws = draws[:, None, :]
        time_labels = [1]
    else:
        time_labels = list(fit.data.time_labels)
    n_draws, n_time, n_persons = draws.shape
    labels, groups = _person_labels(fit)
    var = fit.trait_var

    p_idx = np.tile(np.arange(n_persons), n_time)
    t_idx = np.repeat(np.arange(n_time), n_persons)
    if fit.time_process is None:
        names = [f"{var}[{labels[p]}]" for p in p_idx]
    else:
        names = [f"{var}[{time_labels[t]},{labels[p]}]" for t, p in zip(t_idx, p_idx)]

    if aggregate:
        stats = _intervals(draws.reshape(n_draws, -1), low_limit, high_limit)
        return pl.DataFrame(
            {
                "person": [labels[p] for p in p_idx],
                "group": [groups[p] for p in p_idx],
                "time_point": [time_labels[t] for t in t_idx],
                **stats,
                "parameter": names,
            }
        )

    n_cells = n_time * n_persons
    return pl.DataFrame(
        {
            "person": [labels[p] for p in p_idx] * n_draws,
            "group": [groups[p] for p in p_idx] * n_draws,
            "time_point": [time_labels[t] for t in t_idx] * n_draws,
            "ideal_pts": draws.reshape(-1),
            "iteration": np.repeat(np.arange(1, n_draws + 1), n_cells),
            "parameter": names * n_draws,
        }
    )


def summarize_items(
    fit: IdealFit,
    high_limit: float = 0.95,
    low_limit: float = 0.05,
) -> pl.DataFrame:
    """Item parameter intervals, one row per item x parameter.

    Shared rating-scale cutpoints are reported under item "all".
    """
    post = fit.idata.posterior
    items = fit.data.item_labels
    latent_space = fit.model_type.family == "latent_space"
    roles = [
        ("sigma_reg", "position" if latent_space else "discrimination"),
        ("B_int", "intercept" if latent_space else "difficulty"),
        ("sigma_abs", "missing_discrimination"),
        ("A_int", "missing_difficulty"),
    ]

    frames = []
    for var, role in roles:
        if var not in post:
            continue
        stats = _intervals(_stacked(fit, var), low_limit, high_limit)
        frames.append(
            pl.DataFrame(
                {
                    "item": items,
                    "parameter_type": [role] * len(items),
                    **stats,
                    "parameter": [f"{var}[{i}]" for i in items],
                }
            )
        )

    if "steps_votes_grm" in post:
        draws = _stacked(fit, "steps_votes_grm")  # (draw, item, cutpoint)
        n_items, n_cut = draws.shape[1:]
        cells = [(j, k) for j in range(n_items) for k in range(n_cut)]
        stats = _intervals(draws.reshape(draws.shape[0], -1), low_limit, high_limit)
        frames.append(
            pl.DataFrame(
                {
                    "item": [items[j] for j, _ in cells],
                    "parameter_type": [f"cutpoint_{k + 1}" for _, k in cells],
                    **stats,
                    "parameter": [f"steps_votes_grm[{items[j]},{k}]" for j, k in cells],
                }
            )
        )
    if "steps_votes" in post:
        draws = _stacked(fit, "steps_votes")
        n_cut = draws.shape[1]
        stats = _intervals(draws, low_limit, high_limit)
        frames.append(
            pl.DataFrame(
                {
                    "item": ["all"] * n_cut,
                    "parameter_type": [f"cutpoint_{k + 1}" for k in range(n_cut)],
                    **stats,
                    "parameter": [f"steps_votes[{k}]" for k in range(n_cut)],
                }
            )
        )
    return pl.concat(frames)


def summarize_all(fit: IdealFit) -> pl.DataFrame:
    """ArviZ summary of every posterior variable, with a parameter-type column."""
    summary = az.summary(fit.idata, stat_funcs={"median": np.median}, extend=True)
    df = pl.DataFrame(
        {
            "parameter": [str(i) for i in summary.index],
            **{col: summary[col].to_numpy() for col in summary.columns},
        }
    )
    return df.with_columns(pl.col("parameter").str.extract(r"^([^\[]+)", 1).alias("par_type"))


def summarize_covariates(
    fit: IdealFit,
    pars: str,
    high_limit: float = 0.95,
    low_limit: float = 0.05,
    aggregate: bool = True,
) -> pl.DataFrame:
    var, names_attr = COVARIATE_VARS[pars]
    if var not in fit.idata.posterior:
        raise ConfigurationError(f"This model was fit without '{pars}' covariates")
    draws = _stacked(fit, var)
    names = getattr(fit.data, names_attr)

    if aggregate:
        return pl.DataFrame(
            {
                "covariate": names,
                **_intervals(draws, low_limit, high_limit),
                "parameter": [var] * len(names),
            }
        )
    n_draws = draws.shape[0]
    return pl.DataFrame(
        {
            "covariate": names * n_draws,
            "value": draws.reshape(-1),
            "iteration": np.repeat(np.arange(1, n_draws + 1), len(names)),
            "parameter": [var] * (n_draws * len(names)),
        }
    )


def summarize(
    fit: IdealFit,
    pars: str = "ideal_pts",
    high_limit: float = 0.95,
    low_limit: float = 0.05,
    aggregate: bool = True,
) -> pl.DataFrame:
    """Posterior summaries of a fitted model.

    Args:
        fit: Result of ``id_estimate``.
        pars: "ideal_pts", "items", "all", "person_cov", "discrim_reg_cov" or
            "discrim_infl_cov".
        high_limit, low_limit: Quantiles of the uncertainty interval.
        aggregate: Summaries (True) or every posterior draw (False). Only
            ideal points and covariates have a draw-level form.
    """
    if not 0.0 < low_limit < high_limit < 1.0:
        raise ConfigurationError(
            f"Need 0 < low_limit < high_limit < 1, got {low_limit} and {high_limit}"
        )
    if pars == "ideal_pts":
        return summarize_ideal_points(fit, high_limit, low_limit, aggregate)
    if pars == "items":
        return summarize_items(fit, high_limit, low_limit)
    if pars == "all":
        return summarize_all(fit)
    if pars in COVARIATE_VARS:
        return summarize_covariates(fit, pars, high_limit, low_limit, aggregate)
    raise ConfigurationError(
        f"Unknown summary '{pars}'; expected ideal_pts, items, all, {', '.join(COVARIATE_VARS)}"
    )


def extract_draws(fit: IdealFit, extract_type: str = "persons") -> np.ndarray:
    """Posterior draws with chains stacked: (n_draws, ...) in input order."""
    if extract_type not in EXTRACT_VARS:
        raise ConfigurationError(
            f"Unknown extract_type '{extract_type}'; expected one of {list(EXTRACT_VARS)}"
        )
    var = EXTRACT_VARS[extract_type] or fit.trait_var
    return _stacked(fit, var)


def trace_data(fit: IdealFit, parameter: str) -> pl.DataFrame:
    """Per-chain draws of one scalar parameter, e.g. ``"L_full[alice]"``.

    Index labels are matched against the coordinate values of each
    non-sample dimension, in order.
    """
    m = _PARAM_RE.match(parameter.replace(" ", ""))
    if m is None or m["name"] not in fit.idata.posterior:
        raise ConfigurationError(f"Unknown parameter '{parameter}'")
    da = fit.idata.posterior[m["name"]]
    dims = [d for d in da.dims if d not in ("chain", "draw")]
    labels = m["index"].split(",") if m["index"] else []
    if len(labels) != len(dims):
        raise ConfigurationError(f"'{parameter}' needs {len(dims)} index labels for dims {dims}")

    selection = {}
    for dim, label in zip(dims, labels):
        values = [str(v) for v in da[dim].values]
        if label not in values:
            raise ConfigurationError(f"'{label}' is not a value of dimension '{dim}'")
        selection[dim] = values.index(label)
    values = da.isel(selection).values  # (chain, draw)

    n_chain, n_draw = values.shape
    return pl.DataFrame(
        {
            "chain": np.repeat(np.arange(n_chain), n_draw),
            "draw": np.tile(np.arange(n_draw), n_chain),
            "value": values.reshape(-1),
        }
    )
