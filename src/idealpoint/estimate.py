"""End-to-end estimation: anchors, sampling, identification, diagnostics."""

from __future__ import annotations

from dataclasses import replace
from typing import Optional, Sequence

import numpy as np
import pymc as pm

from idealpoint.config import EstimationConfig
from idealpoint.errors import ConfigurationError, ConvergenceError
from idealpoint.identify import AnchorStateMachine, identify_posterior, select_anchors
from idealpoint.model_spec import build_model, trait_var_name
from idealpoint.models import AnchorSpec, IdealData, IdealFit, ModelType, TimeProcess
from idealpoint.sampling import check_convergence, check_vb_convergence, sample_model

DIAGNOSTIC_VARS = ("L_full", "L_tp1", "sigma_reg", "B_int", "sigma_abs", "A_int")


def print_header(title: str) -> None:
    width = 80
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}")


def resolve_anchor(anchor: int | str, labels: Sequence[str]) -> int:
    """Turn an anchor given as an index or a label into an index."""
    if isinstance(anchor, (int, np.integer)):
        if not 0 <= anchor < len(labels):
            raise ConfigurationError(f"Anchor index {anchor} out of range [0, {len(labels)})")
        return int(anchor)
    if anchor not in labels:
        raise ConfigurationError(f"Anchor '{anchor}' not found among {len(labels)} persons")
    return list(labels).index(anchor)


def anchors_from_posterior(
    idata, time_process: Optional[TimeProcess] = None
) -> tuple[int, int, np.ndarray]:
    """Pick anchors from the trait draws of an existing fit.

    AR(1) fits use the long-run means, the quantity identification fixes;
    other time-varying fits use the first time point.
    """
    post = idata.posterior
    var = trait_var_name(time_process)
    if time_process == TimeProcess.AR1 and "L_mean" in post:
        var = "L_mean"
    values = post[var].values
    return select_anchors(values.reshape((-1,) + values.shape[2:]))


def run_prefit(
    model: pm.Model,
    config: EstimationConfig,
    time_process: Optional[TimeProcess] = None,
) -> tuple[int, int, np.ndarray]:
    """Fit the unidentified model with ADVI and pick anchors from its extremes.

    Returns (high_idx, low_idx, unidentified posterior means).
    """
    print_header("UNIDENTIFIED PRE-FIT (ADVI)")
    prefit_config = replace(config, use_vb=True)
    idata, loss, _ = sample_model(model, prefit_config)
    report = check_vb_convergence(loss)
    if not report.converged:
        print(f"  Pre-fit: {report.describe()}")

    return anchors_from_posterior(idata, time_process)


def id_estimate(
    data: IdealData,
    model_type: ModelType | int = ModelType.BINARY,
    config: Optional[EstimationConfig] = None,
    anchors: Optional[AnchorSpec] = None,
    time_process: Optional[TimeProcess | str] = None,
    use_groups: bool = False,
    restrict_var_high: Optional[float] = None,
    max_time_sd: Optional[float] = None,
    rescale: bool = True,
    prior_fit: Optional[IdealFit] = None,
) -> IdealFit:
    """Estimate and identify an ideal point model.

    Without anchor persons, an unidentified ADVI pre-fit picks the persons
    with the highest and lowest posterior means. Passing ``prior_fit`` takes
    those extremes from an earlier fit of the same persons instead. Full sampling that does not
    converge raises ConvergenceError; approximate inference only warns.

    Args:
        data: Normalized data from ``id_make``.
        model_type: One of the fourteen ``ModelType`` variants (or 1-14).
        config: Inference options; defaults to ``EstimationConfig()``.
        anchors: Anchor persons and optional target values.
        time_process: None, "random_walk" or "ar1".
        use_groups: Estimate ideal points per group.
        restrict_var_high: Prior cap on the over-time innovation SD.
        max_time_sd: Post-identification cap on one-step SD, reported if exceeded.
        rescale: Affine identification (True) or sign-and-shift only (False).
        prior_fit: Earlier fit to pick automatic anchors from, skipping the
            ADVI pre-fit. Ignored when anchors are given.
    """
    config = config or EstimationConfig()
    anchors = anchors or AnchorSpec()
    if config.max_attempts < 1:
        raise ConfigurationError("max_attempts must be at least 1")
    try:
        model_type = ModelType(model_type)
    except ValueError as e:
        raise ConfigurationError(f"Unknown model type {model_type!r}; expected 1-14") from e
    if time_process is not None:
        time_process = TimeProcess(time_process)
    labels = data.group_labels if use_groups else data.person_labels

    print_header(f"MODEL: {model_type.label} ({config.mode})")
    print(f"  {data.n_persons} persons x {data.n_items} items x {data.n_time} time points")
    print(f"  Responses: {data.n_obs:,} ({data.observed.height:,} observed)")

    model = build_model(
        data,
        model_type,
        time_process=time_process,
        use_groups=use_groups,
        restrict_var_high=restrict_var_high,
    )

    prefit_means = None
    if anchors.automatic and prior_fit is not None:
        prior_labels = (
            prior_fit.data.group_labels if prior_fit.use_groups else prior_fit.data.person_labels
        )
        if list(prior_labels) != list(labels):
            raise ConfigurationError(
                "prior_fit was estimated on different persons; anchors cannot be reused"
            )
        print_header("ANCHORS FROM PRIOR FIT")
        high_idx, low_idx, prefit_means = anchors_from_posterior(
            prior_fit.idata, prior_fit.time_process
        )
        source = "prior_fit"
    elif anchors.automatic:
        high_idx, low_idx, prefit_means = run_prefit(model, config, time_process)
        source = "auto"
    elif anchors.high is None or anchors.low is None:
        raise ConfigurationError("Give both a high and a low anchor, or neither")
    else:
        high_idx = resolve_anchor(anchors.high, labels)
        low_idx = resolve_anchor(anchors.low, labels)
        source = "explicit"
    print(f"  Anchors: high={labels[high_idx]}, low={labels[low_idx]} ({source})")

    machine = AnchorStateMachine(max_attempts=config.max_attempts)
    for attempt in range(config.max_attempts):
        run_config = replace(config, seed=config.seed + attempt)
        print_header(f"INFERENCE — attempt {attempt + 1}/{config.max_attempts}")
        raw, loss, elapsed = sample_model(model, run_config)

        print_header("IDENTIFICATION")
        idata, result = identify_posterior(
            raw,
            high_idx,
            low_idx,
            high_value=anchors.high_value,
            low_value=anchors.low_value,
            rescale=rescale,
            time_process=time_process,
            max_time_sd=max_time_sd,
            anchor_source=source,
        )

        print_header("CONVERGENCE DIAGNOSTICS")
        if config.use_vb:
            report = check_vb_convergence(loss)
        else:
            report = check_convergence(idata, DIAGNOSTIC_VARS, run_config)

        try:
            machine.fix_high(report)
            machine.fix_low(report)
        except ConvergenceError as e:
            if machine.exhausted:
                raise
            print(f"  {e}")
            print(f"  Refitting with seed {run_config.seed + 1}")
            continue
        machine.finalize()
        break

    return IdealFit(
        data=data,
        model_type=model_type,
        idata=idata,
        identification=result,
        convergence=report,
        mode=config.mode,
        time_process=time_process,
        use_groups=use_groups,
        prefit_means=prefit_means,
        sampling_time=elapsed,
    )
