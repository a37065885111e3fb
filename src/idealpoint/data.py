"""Data ingestion: long response tables to ``IdealData``.

The input is a long table with one row per person x item (x time point).
Missing responses are either nulls or a sentinel value in the outcome column.
Non-inflated models drop them from the likelihood; inflated models use them
as the observed side of the missingness hurdle.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

import numpy as np
import polars as pl

from idealpoint.config import DEFAULT_GROUP, DEFAULT_TIME, RANDOM_SEED
from idealpoint.errors import ConfigurationError
from idealpoint.models import IdealData, ModelType

LONG_COLUMNS = ["person_idx", "item_idx", "group_idx", "time_idx", "y", "is_missing"]


def _ordered_unique(values: list, sort: bool) -> list:
    seen = dict.fromkeys(values)
    return sorted(seen) if sort else list(seen)


def _sentinel_mask(col: pl.Series, miss_val: Any) -> pl.Series:
    """Boolean mask of rows equal to the missing-value sentinel."""
    numeric_sentinel = isinstance(miss_val, (int, float)) and not isinstance(miss_val, bool)
    if col.dtype.is_numeric() and numeric_sentinel:
        mask = col == miss_val
    else:
        mask = col.cast(pl.Utf8) == str(miss_val)
    return mask.fill_null(False)


def _person_groups(long: pl.DataFrame, n_persons: int) -> np.ndarray:
    """Group index of each person (first group seen for that person)."""
    firsts = long.group_by("person_idx", maintain_order=True).agg(pl.col("group_idx").first())
    groups = np.zeros(n_persons, dtype=np.int64)
    groups[firsts["person_idx"].to_numpy()] = firsts["group_idx"].to_numpy()
    return groups


def _covariate_matrix(df: pl.DataFrame, cols: Optional[Sequence[str]]) -> Optional[np.ndarray]:
    if not cols:
        return None
    cov = df.select([pl.col(c).cast(pl.Float64, strict=False) for c in cols])
    bad = [c for c in cols if cov[c].null_count() > 0]
    if bad:
        raise ConfigurationError(f"Covariate columns contain missing or non-numeric values: {bad}")
    return cov.to_numpy()


def id_make(
    score_data: pl.DataFrame | dict,
    outcome: str = "outcome",
    person_id: str = "person_id",
    item_id: str = "item_id",
    group_id: Optional[str] = None,
    time_id: Optional[str] = None,
    miss_val: Any = None,
    person_cov: Optional[Sequence[str]] = None,
    item_cov: Optional[Sequence[str]] = None,
    item_cov_miss: Optional[Sequence[str]] = None,
    discrete: bool = True,
) -> IdealData:
    """Normalize a long response table into an ``IdealData`` object.

    Discrete outcomes are recoded to 0..K-1 in sorted level order; pass
    ``discrete=False`` for count or continuous outcomes.

    Raises ConfigurationError for unknown columns, a sentinel that never
    occurs in the outcome column, or duplicate person x item x time cells.
    """
    df = score_data if isinstance(score_data, pl.DataFrame) else pl.DataFrame(score_data)

    named = [outcome, person_id, item_id]
    named += [c for c in (group_id, time_id) if c is not None]
    named += list(person_cov or []) + list(item_cov or []) + list(item_cov_miss or [])
    absent = [c for c in named if c not in df.columns]
    if absent:
        raise ConfigurationError(
            f"Columns not found in data: {absent}. Available: {df.columns}"
        )
    if df.height == 0:
        raise ConfigurationError("Response table is empty")

    # ── Missing responses ──
    col = df[outcome]
    is_missing = col.is_null()
    if miss_val is not None:
        sentinel = _sentinel_mask(col, miss_val)
        if not sentinel.any():
            raise ConfigurationError(
                f"Missing-value sentinel {miss_val!r} does not occur in column '{outcome}'"
            )
        is_missing = is_missing | sentinel
    missing = is_missing.to_list()

    # ── Index vectors ──
    persons = df[person_id].cast(pl.Utf8).to_list()
    items = df[item_id].cast(pl.Utf8).to_list()
    groups = df[group_id].cast(pl.Utf8).to_list() if group_id else [DEFAULT_GROUP] * df.height
    times = df[time_id].to_list() if time_id else [DEFAULT_TIME] * df.height

    cells = pl.DataFrame({"p": persons, "i": items, "t": [str(t) for t in times]})
    n_dupes = int(cells.is_duplicated().sum())
    if n_dupes:
        raise ConfigurationError(
            f"{n_dupes} rows share a person x item x time cell; each cell must appear once"
        )

    person_labels = _ordered_unique(persons, sort=False)
    item_labels = _ordered_unique(items, sort=False)
    group_labels = _ordered_unique(groups, sort=True)
    time_labels = _ordered_unique(times, sort=True)

    person_map = {p: i for i, p in enumerate(person_labels)}
    item_map = {v: i for i, v in enumerate(item_labels)}
    group_map = {g: i for i, g in enumerate(group_labels)}
    time_map = {t: i for i, t in enumerate(time_labels)}

    # ── Outcome coding ──
    values = col.to_list()
    outcome_levels = None
    if discrete:
        outcome_levels = sorted({v for v, m in zip(values, missing) if not m})
        level_map = {v: i for i, v in enumerate(outcome_levels)}
        y = [None if m else float(level_map[v]) for v, m in zip(values, missing)]
    else:
        try:
            y = [None if m else float(v) for v, m in zip(values, missing)]
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Outcome column '{outcome}' is not numeric: {e}") from e

    long = pl.DataFrame(
        {
            "person_idx": [person_map[p] for p in persons],
            "item_idx": [item_map[v] for v in items],
            "group_idx": [group_map[g] for g in groups],
            "time_idx": [time_map[t] for t in times],
            "y": pl.Series(y, dtype=pl.Float64),
            "is_missing": missing,
        },
        schema_overrides={
            "person_idx": pl.Int64,
            "item_idx": pl.Int64,
            "group_idx": pl.Int64,
            "time_idx": pl.Int64,
        },
    )

    return IdealData(
        long=long,
        person_labels=person_labels,
        item_labels=item_labels,
        group_labels=group_labels,
        time_labels=time_labels,
        person_group=_person_groups(long, len(person_labels)),
        outcome_levels=outcome_levels,
        miss_val=miss_val,
        person_cov=_covariate_matrix(df, person_cov),
        person_cov_names=list(person_cov or []),
        item_cov=_covariate_matrix(df, item_cov),
        item_cov_names=list(item_cov or []),
        item_cov_miss=_covariate_matrix(df, item_cov_miss),
        item_cov_miss_names=list(item_cov_miss or []),
    )


def _compact(data: IdealData, row_mask: np.ndarray) -> IdealData:
    """Keep the masked rows and renumber persons/items/groups/time points."""
    long = data.long.filter(pl.Series(row_mask))
    if long.height == 0:
        raise ConfigurationError("No responses left after subsetting")

    labels = {
        "person_idx": data.person_labels,
        "item_idx": data.item_labels,
        "group_idx": data.group_labels,
        "time_idx": data.time_labels,
    }
    new_labels = {}
    for col, old in labels.items():
        values = long[col].to_numpy()
        used = np.unique(values)
        long = long.with_columns(pl.Series(col, np.searchsorted(used, values), dtype=pl.Int64))
        new_labels[col] = [old[i] for i in used]

    def rows(arr: Optional[np.ndarray]) -> Optional[np.ndarray]:
        return None if arr is None else arr[row_mask]

    return IdealData(
        long=long,
        person_labels=new_labels["person_idx"],
        item_labels=new_labels["item_idx"],
        group_labels=new_labels["group_idx"],
        time_labels=new_labels["time_idx"],
        person_group=_person_groups(long, len(new_labels["person_idx"])),
        outcome_levels=data.outcome_levels,
        miss_val=data.miss_val,
        person_cov=rows(data.person_cov),
        person_cov_names=data.person_cov_names,
        item_cov=rows(data.item_cov),
        item_cov_names=data.item_cov_names,
        item_cov_miss=rows(data.item_cov_miss),
        item_cov_miss_names=data.item_cov_miss_names,
    )


def subset_data(
    data: IdealData,
    groups: Optional[Sequence[str]] = None,
    persons: Optional[Sequence[str]] = None,
    sample_size: Optional[int] = None,
    seed: int = RANDOM_SEED,
) -> IdealData:
    """Restrict the data to some groups, some persons, or a random sample of persons.

    When both groups and persons are given, the persons must belong to the
    chosen groups.
    """
    keep = np.ones(data.n_persons, dtype=bool)

    if groups is not None:
        unknown = [g for g in groups if g not in data.group_labels]
        if unknown:
            raise ConfigurationError(f"Groups not found in data: {unknown}")
        group_idx = [data.group_labels.index(g) for g in groups]
        keep &= np.isin(data.person_group, group_idx)

    if persons is not None:
        unknown = [p for p in persons if p not in data.person_labels]
        if unknown:
            raise ConfigurationError(f"Persons not found in data: {unknown}")
        wanted = np.isin(np.arange(data.n_persons), [data.person_labels.index(p) for p in persons])
        if groups is not None and np.any(wanted & ~keep):
            raise ConfigurationError("Persons to subset must be members of the subsetted groups")
        keep &= wanted

    if sample_size is not None:
        candidates = np.flatnonzero(keep)
        if sample_size > len(candidates):
            raise ConfigurationError(
                f"sample_size={sample_size} exceeds the {len(candidates)} available persons"
            )
        rng = np.random.default_rng(seed)
        chosen = rng.choice(candidates, size=sample_size, replace=False)
        keep = np.isin(np.arange(data.n_persons), chosen)

    row_mask = keep[data.long["person_idx"].to_numpy()]
    return _compact(data, row_mask)


def clean_items(data: IdealData, model_type: ModelType) -> IdealData:
    """Drop items without enough distinct observed outcomes to be estimable.

    Ordinal items may leave one category unused; everything else needs at
    least two distinct observed values.
    """
    required = 2
    if model_type.ordinal:
        required = max(2, data.vote_count - 1)

    counts = data.observed.group_by("item_idx").agg(pl.col("y").n_unique().alias("n_distinct"))
    n_distinct = np.zeros(data.n_items, dtype=np.int64)
    n_distinct[counts["item_idx"].to_numpy()] = counts["n_distinct"].to_numpy()

    keep_items = n_distinct >= required
    n_dropped = int((~keep_items).sum())
    if n_dropped == 0:
        return data
    if not keep_items.any():
        raise ConfigurationError("No item has enough distinct outcomes to be estimated")

    print(f"  Dropped {n_dropped} of {data.n_items} items with < {required} distinct outcomes")
    row_mask = keep_items[data.long["item_idx"].to_numpy()]
    return _compact(data, row_mask)


def score_matrix(data: IdealData, time_idx: int = 0) -> pl.DataFrame:
    """Wide persons x items matrix of coded outcomes (null = missing).

    For time-varying data only the responses at ``time_idx`` are used.
    """
    obs = data.long
    if data.n_time > 1:
        obs = obs.filter(pl.col("time_idx") == time_idx)

    obs = obs.with_columns(
        pl.col("person_idx")
        .replace_strict(dict(enumerate(data.person_labels)), return_dtype=pl.Utf8)
        .alias("person"),
        pl.col("item_idx")
        .replace_strict(dict(enumerate(data.item_labels)), return_dtype=pl.Utf8)
        .alias("item"),
    )
    wide = obs.pivot(on="item", index="person", values="y")
    item_cols = [i for i in data.item_labels if i in wide.columns]
    return wide.select(["person", *item_cols])
