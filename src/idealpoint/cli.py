"""Command-line interface for ideal point estimation."""

import argparse
from pathlib import Path

import polars as pl

from idealpoint.config import (
    DEFAULT_CHAINS,
    DEFAULT_DRAWS,
    DEFAULT_TUNE,
    RANDOM_SEED,
    VB_ITERATIONS,
    EstimationConfig,
)
from idealpoint.data import clean_items, id_make
from idealpoint.estimate import id_estimate
from idealpoint.models import AnchorSpec, ModelType, TimeProcess
from idealpoint.output import FORMATS, save_results


def _parse_miss_val(value: str | None) -> int | float | str | None:
    """Numeric sentinels compare against numeric outcome columns."""
    if value is None:
        return None
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    return value


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="idealpoint",
        description="Estimate identified ideal points from a long response table.",
    )
    parser.add_argument("data", nargs="?", type=Path, help="CSV file, one row per response")
    parser.add_argument("--outcome", default="outcome", help="Outcome column (default: outcome)")
    parser.add_argument(
        "--person-id", default="person_id", help="Person column (default: person_id)"
    )
    parser.add_argument("--item-id", default="item_id", help="Item column (default: item_id)")
    parser.add_argument("--group-id", default=None, help="Optional group column")
    parser.add_argument("--time-id", default=None, help="Optional time point column")
    parser.add_argument(
        "--miss-val",
        default=None,
        help="Outcome value that marks a missing response (nulls are always missing)",
    )
    parser.add_argument(
        "--model-type",
        type=int,
        default=int(ModelType.BINARY),
        choices=[int(m) for m in ModelType],
        help="Model variant 1-14 (default: 1, binary); see --list-models",
    )
    parser.add_argument(
        "--time-process",
        choices=[p.value for p in TimeProcess],
        default=None,
        help="Time-varying ideal points (requires --time-id)",
    )
    parser.add_argument(
        "--use-groups",
        action="store_true",
        help="Estimate one ideal point per group instead of per person",
    )
    parser.add_argument(
        "--vb",
        action="store_true",
        help="Approximate inference (ADVI) instead of NUTS",
    )
    parser.add_argument(
        "--chains",
        type=int,
        default=DEFAULT_CHAINS,
        help=f"NUTS chains (default: {DEFAULT_CHAINS})",
    )
    parser.add_argument(
        "--draws",
        type=int,
        default=DEFAULT_DRAWS,
        help=f"Posterior draws per chain (default: {DEFAULT_DRAWS})",
    )
    parser.add_argument(
        "--tune",
        type=int,
        default=DEFAULT_TUNE,
        help=f"NUTS tuning steps, discarded (default: {DEFAULT_TUNE})",
    )
    parser.add_argument(
        "--vb-iterations",
        type=int,
        default=VB_ITERATIONS,
        help=f"ADVI iterations (default: {VB_ITERATIONS})",
    )
    parser.add_argument(
        "--seed", type=int, default=RANDOM_SEED, help=f"Random seed (default: {RANDOM_SEED})"
    )
    parser.add_argument("--high-anchor", default=None, help="Person fixed at the high end")
    parser.add_argument("--low-anchor", default=None, help="Person fixed at the low end")
    parser.add_argument("--high-value", type=float, default=None, help="Target for high anchor")
    parser.add_argument("--low-value", type=float, default=None, help="Target for low anchor")
    parser.add_argument(
        "--no-rescale",
        action="store_true",
        help="Only fix the sign and location of the scale, not its spread",
    )
    parser.add_argument(
        "--restrict-var-high",
        type=float,
        default=None,
        help="Upper bound on the over-time innovation SD prior",
    )
    parser.add_argument(
        "--keep-all-items",
        action="store_true",
        help="Skip dropping items with too few distinct responses",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=Path("idealpoint_results"),
        help="Output directory (default: idealpoint_results/)",
    )
    parser.add_argument(
        "--format",
        choices=FORMATS,
        default="csv",
        help="Summary file format (default: csv)",
    )
    parser.add_argument(
        "--list-models",
        action="store_true",
        help="List the model variants and exit",
    )

    args = parser.parse_args(argv)

    if args.list_models:
        print("Model variants:")
        print()
        for m in ModelType:
            print(f"  {m.value:2d}  {m.name:26s}  {m.label}")
        return

    if args.data is None:
        parser.error("the DATA argument is required unless --list-models is given")
    if args.time_process and not args.time_id:
        parser.error("--time-process requires --time-id")

    model_type = ModelType(args.model_type)
    scores = pl.read_csv(args.data)
    data = id_make(
        scores,
        outcome=args.outcome,
        person_id=args.person_id,
        item_id=args.item_id,
        group_id=args.group_id,
        time_id=args.time_id,
        miss_val=_parse_miss_val(args.miss_val),
        discrete=model_type.discrete,
    )
    if not args.keep_all_items:
        data = clean_items(data, model_type)

    config = EstimationConfig(
        use_vb=args.vb,
        draws=args.draws,
        tune=args.tune,
        chains=args.chains,
        vb_iterations=args.vb_iterations,
        seed=args.seed,
    )
    anchors = AnchorSpec(
        high=args.high_anchor,
        low=args.low_anchor,
        high_value=args.high_value,
        low_value=args.low_value,
    )

    fit = id_estimate(
        data,
        model_type=model_type,
        config=config,
        anchors=anchors,
        time_process=args.time_process,
        use_groups=args.use_groups,
        restrict_var_high=args.restrict_var_high,
        rescale=not args.no_rescale,
    )

    save_results(fit, args.output, output_name=args.data.stem, fmt=args.format)
