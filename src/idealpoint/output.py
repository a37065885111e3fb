"""CSV / parquet / NetCDF output for fitted ideal point models."""

import json
from pathlib import Path

import polars as pl

from idealpoint.models import IdealFit
from idealpoint.summarize import summarize

FORMATS = ("csv", "parquet")


def _write_table(df: pl.DataFrame, path: Path) -> None:
    if path.suffix == ".parquet":
        df.write_parquet(path)
    else:
        df.write_csv(path)
    print(f"  {path} ({df.height} rows)")


def fit_info(fit: IdealFit) -> dict:
    """Plain-JSON record of how a fit was produced and identified."""
    ident = fit.identification
    labels = fit.data.group_labels if fit.use_groups else fit.data.person_labels
    return {
        "model_type": int(fit.model_type),
        "model": fit.model_type.label,
        "mode": fit.mode,
        "time_process": fit.time_process.value if fit.time_process else None,
        "use_groups": fit.use_groups,
        "n_persons": fit.data.n_persons,
        "n_items": fit.data.n_items,
        "n_time": fit.data.n_time,
        "n_obs": fit.data.n_obs,
        "identification": {
            "mode": ident.mode,
            "anchor_source": ident.anchor_source,
            "high_anchor": labels[ident.high_idx],
            "low_anchor": labels[ident.low_idx],
            "high_value": ident.high_value,
            "low_value": ident.low_value,
            "n_reflected": ident.n_reflected,
            "n_capped_draws": ident.n_capped_draws,
        },
        "convergence": {
            "converged": fit.convergence.converged,
            "statistics": fit.convergence.statistics,
            "problems": fit.convergence.problems,
        },
        "sampling_time": fit.sampling_time,
    }


def save_results(
    fit: IdealFit,
    output_dir: Path,
    output_name: str = "idealpoint",
    fmt: str = "csv",
    save_posterior: bool = True,
) -> list[Path]:
    """Save ideal point and item summaries, fit metadata and the posterior.

    Returns the paths written.
    """
    if fmt not in FORMATS:
        raise ValueError(f"Unknown output format '{fmt}'; expected one of {FORMATS}")
    print("\n" + "=" * 60)
    print("Saving results...")
    print("=" * 60)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []

    ideal_path = output_dir / f"{output_name}_ideal_points.{fmt}"
    _write_table(summarize(fit, "ideal_pts"), ideal_path)
    written.append(ideal_path)

    items_path = output_dir / f"{output_name}_items.{fmt}"
    _write_table(summarize(fit, "items"), items_path)
    written.append(items_path)

    info_path = output_dir / f"{output_name}_fit.json"
    with open(info_path, "w") as f:
        json.dump(fit_info(fit), f, indent=2, default=str)
    print(f"  {info_path}")
    written.append(info_path)

    if save_posterior:
        nc_path = output_dir / f"{output_name}_idata.nc"
        fit.idata.to_netcdf(str(nc_path))
        print(f"  {nc_path}")
        written.append(nc_path)
    return written
