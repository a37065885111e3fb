"""
Tests for post-hoc identification in identify.py.

Identification is checked on synthetic draw matrices with known structure:
anchors land on their targets in every draw, the transform is idempotent,
automatic anchors are the posterior-mean extremes, and item parameters are
adjusted so each draw predicts exactly what it predicted before.

Run: uv run pytest tests/test_identify.py -v
"""

import warnings

import arviz as az
import numpy as np
import pytest
from scipy import stats

from idealpoint.errors import (
    ConvergenceError,
    ConvergenceWarning,
    IdentificationError,
    IdentificationWarning,
)
from idealpoint.identify import (
    AnchorStateMachine,
    IdentificationState,
    anchor_transform,
    apply_transform,
    identify_draws,
    identify_posterior,
    select_anchors,
    sign_transform,
    step_sd,
    transform_item_draws,
)
from idealpoint.models import ConvergenceReport, TimeProcess
from idealpoint.simulate import simulate_time_paths, simulate_unidentified_draws

# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def raw_draws() -> np.ndarray:
    """200 unidentified draws of 10 persons, random sign and scale per draw."""
    truth = np.linspace(-2.0, 2.0, 10)
    return simulate_unidentified_draws(truth, n_draws=200, noise_sd=0.2, seed=7)


@pytest.fixture
def rw_draws() -> np.ndarray:
    """(draw, time, person) random-walk draws: 100 draws, 5 time points, 6 persons."""
    rng = np.random.default_rng(3)
    start = rng.normal(0.0, 1.0, (100, 1, 6))
    steps = rng.normal(0.0, 0.3, (100, 4, 6))
    return np.concatenate([start, start + np.cumsum(steps, axis=1)], axis=1)


def _eta(discrim: np.ndarray, traits: np.ndarray, diff: np.ndarray) -> np.ndarray:
    """(chain, draw, person, item) 2PL predictor."""
    return discrim[..., None, :] * traits[..., :, None] - diff[..., None, :]


def _idata(posterior: dict, dims: dict, coords: dict) -> az.InferenceData:
    return az.from_dict(posterior=posterior, dims=dims, coords=coords)


def _static_posterior(seed: int = 11, n_persons: int = 5, n_items: int = 4) -> dict:
    rng = np.random.default_rng(seed)
    return {
        "L_full": rng.normal(0.0, 1.0, (2, 50, n_persons)),
        "sigma_reg": rng.normal(0.0, 1.0, (2, 50, n_items)),
        "B_int": rng.normal(0.0, 2.0, (2, 50, n_items)),
    }


STATIC_DIMS = {"L_full": ["person"], "sigma_reg": ["item"], "B_int": ["item"]}
STATIC_COORDS = {"person": list("abcde"), "item": ["i1", "i2", "i3", "i4"]}


# ── Transforms ───────────────────────────────────────────────────────────────


class TestAnchorTransform:
    """Exact per-draw affine solve."""

    def test_anchors_hit_targets(self) -> None:
        high = np.array([0.3, -2.0, 5.0])
        low = np.array([-0.1, 1.0, 4.0])
        scale, shift = anchor_transform(high, low, 2.0, -3.0)
        np.testing.assert_allclose(scale * high + shift, 2.0)
        np.testing.assert_allclose(scale * low + shift, -3.0)

    def test_negative_scale_is_reflection(self) -> None:
        scale, _ = anchor_transform(np.array([-1.0]), np.array([1.0]))
        assert scale[0] < 0

    def test_tied_anchors_raise(self) -> None:
        with pytest.raises(IdentificationError, match="tied"):
            anchor_transform(np.array([1.0, 0.5]), np.array([0.0, 0.5]))

    def test_non_finite_gap_raises(self) -> None:
        with pytest.raises(IdentificationError):
            anchor_transform(np.array([np.nan]), np.array([0.0]))

    def test_targets_must_be_ordered(self) -> None:
        with pytest.raises(IdentificationError, match="must exceed"):
            anchor_transform(np.array([1.0]), np.array([0.0]), -1.0, 1.0)


class TestSignTransform:
    """Reflection and centring without rescaling."""

    def test_scale_is_unit(self) -> None:
        scale, _ = sign_transform(np.array([1.0, -2.0]), np.array([0.0, 3.0]))
        np.testing.assert_array_equal(scale, [1.0, -1.0])

    def test_midpoint_centred(self) -> None:
        high = np.array([3.0, -1.0])
        low = np.array([1.0, 2.0])
        scale, shift = sign_transform(high, low, centre=0.5)
        np.testing.assert_allclose((scale * high + shift + scale * low + shift) / 2, 0.5)


class TestApplyTransform:
    def test_broadcasts_over_trailing_axes(self) -> None:
        draws = np.ones((3, 2, 4))
        out = apply_transform(draws, np.array([1.0, 2.0, -1.0]), np.array([0.0, 1.0, 0.0]))
        np.testing.assert_allclose(out[:, 0, 0], [1.0, 3.0, -1.0])
        assert out.shape == draws.shape


# ── identify_draws ───────────────────────────────────────────────────────────


class TestIdentifyDraws:
    """Static (draw, person) identification."""

    def test_explicit_targets_exact(self, raw_draws: np.ndarray) -> None:
        out, _ = identify_draws(raw_draws, 9, 0, high_value=2.5, low_value=-0.5)
        np.testing.assert_allclose(out[:, 9], 2.5)
        np.testing.assert_allclose(out[:, 0], -0.5)

    def test_default_targets_plus_minus_one(self, raw_draws: np.ndarray) -> None:
        out, result = identify_draws(raw_draws, 9, 0)
        np.testing.assert_allclose(out[:, 9], 1.0)
        np.testing.assert_allclose(out[:, 0], -1.0)
        assert result.high_value == 1.0
        assert result.low_value == -1.0

    def test_idempotent(self, raw_draws: np.ndarray) -> None:
        once, _ = identify_draws(raw_draws, 9, 0, high_value=1.5, low_value=-2.0)
        twice, result = identify_draws(once, 9, 0, high_value=1.5, low_value=-2.0)
        np.testing.assert_allclose(twice, once)
        np.testing.assert_allclose(result.scale, 1.0)
        np.testing.assert_allclose(result.shift, 0.0, atol=1e-12)

    def test_relative_positions_preserved(self, raw_draws: np.ndarray) -> None:
        """Each person's position relative to the anchors is unchanged within a draw."""
        out, _ = identify_draws(raw_draws, 9, 0)
        raw_ratio = (raw_draws - raw_draws[:, [0]]) / (raw_draws[:, [9]] - raw_draws[:, [0]])
        new_ratio = (out - out[:, [0]]) / (out[:, [9]] - out[:, [0]])
        np.testing.assert_allclose(new_ratio, raw_ratio)

    def test_reflected_draws_counted(self, raw_draws: np.ndarray) -> None:
        _, result = identify_draws(raw_draws, 9, 0)
        flipped = int(np.sum(raw_draws[:, 9] < raw_draws[:, 0]))
        assert result.n_reflected == flipped
        assert 0 < flipped < len(raw_draws)

    def test_input_not_modified(self, raw_draws: np.ndarray) -> None:
        before = raw_draws.copy()
        identify_draws(raw_draws, 9, 0)
        np.testing.assert_array_equal(raw_draws, before)

    def test_sign_mode_orders_anchors(self, raw_draws: np.ndarray) -> None:
        out, result = identify_draws(raw_draws, 9, 0, rescale=False)
        assert np.all(out[:, 9] > out[:, 0])
        spread = np.abs(raw_draws[:, 9] - raw_draws[:, 0])
        np.testing.assert_allclose(out[:, 9] - out[:, 0], spread)
        assert result.mode == "sign"
        assert result.high_value is None

    def test_same_anchor_twice_raises(self, raw_draws: np.ndarray) -> None:
        with pytest.raises(IdentificationError, match="different"):
            identify_draws(raw_draws, 3, 3)

    def test_anchor_out_of_range_raises(self, raw_draws: np.ndarray) -> None:
        with pytest.raises(IdentificationError, match="out of range"):
            identify_draws(raw_draws, 10, 0)

    def test_degenerate_anchors_raise(self) -> None:
        draws = np.random.default_rng(0).normal(size=(20, 4))
        draws[:, 2] = draws[:, 1]
        with pytest.raises(IdentificationError):
            identify_draws(draws, 1, 2)

    def test_one_dimensional_input_raises(self) -> None:
        with pytest.raises(IdentificationError, match="2-D or 3-D"):
            identify_draws(np.zeros(5), 0, 1)

    def test_max_time_sd_on_static_draws_raises(self, raw_draws: np.ndarray) -> None:
        with pytest.raises(IdentificationError, match="time-varying"):
            identify_draws(raw_draws, 9, 0, max_time_sd=0.1)


class TestTimeVarying:
    """(draw, time, person) identification."""

    def test_random_walk_fixes_first_time_point(self, rw_draws: np.ndarray) -> None:
        out, _ = identify_draws(rw_draws, 0, 1, time_process=TimeProcess.RANDOM_WALK)
        np.testing.assert_allclose(out[:, 0, 0], 1.0)
        np.testing.assert_allclose(out[:, 0, 1], -1.0)

    def test_random_walk_later_points_free(self, rw_draws: np.ndarray) -> None:
        out, _ = identify_draws(rw_draws, 0, 1, time_process="random_walk")
        assert np.any(np.abs(out[:, 1:, 0] - 1.0) > 1e-6)
        assert np.any(np.abs(out[:, 1:, 1] + 1.0) > 1e-6)

    def test_same_transform_for_all_time_points(self, rw_draws: np.ndarray) -> None:
        out, result = identify_draws(rw_draws, 0, 1, time_process="random_walk")
        expected = result.scale[:, None, None] * rw_draws + result.shift[:, None, None]
        np.testing.assert_allclose(out, expected)

    def test_ar1_fixes_long_run_means(self, rw_draws: np.ndarray) -> None:
        long_run = rw_draws.mean(axis=1) + 0.05
        out, result = identify_draws(
            rw_draws, 2, 4, time_process=TimeProcess.AR1, long_run_means=long_run
        )
        moved = apply_transform(long_run, result.scale, result.shift)
        np.testing.assert_allclose(moved[:, 2], 1.0)
        np.testing.assert_allclose(moved[:, 4], -1.0)

    def test_ar1_defaults_to_trajectory_mean(self, rw_draws: np.ndarray) -> None:
        out, _ = identify_draws(rw_draws, 2, 4, time_process="ar1")
        np.testing.assert_allclose(out[:, :, 2].mean(axis=1), 1.0)
        np.testing.assert_allclose(out[:, :, 4].mean(axis=1), -1.0)

    def test_time_varying_needs_process(self, rw_draws: np.ndarray) -> None:
        with pytest.raises(IdentificationError, match="time process"):
            identify_draws(rw_draws, 0, 1)

    def test_capped_draws_warn(self, rw_draws: np.ndarray) -> None:
        with pytest.warns(IdentificationWarning):
            _, result = identify_draws(
                rw_draws, 0, 1, time_process="random_walk", max_time_sd=1e-6
            )
        assert result.n_capped_draws == len(rw_draws)

    def test_generous_cap_does_not_warn(self, rw_draws: np.ndarray) -> None:
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            _, result = identify_draws(
                rw_draws, 0, 1, time_process="random_walk", max_time_sd=1e6
            )
        assert result.n_capped_draws == 0


class TestStationaryCap:
    """AR(1) paths simulated under a variance cap."""

    def test_mean_step_within_cap(self) -> None:
        cap = 0.1
        paths = simulate_time_paths(
            2000, 20, TimeProcess.AR1, time_sd=1.0, ar_coef=0.5, max_time_sd=cap, seed=5
        )
        assert np.mean(np.abs(np.diff(paths, axis=0))) <= cap

    def test_uncapped_steps_are_larger(self) -> None:
        paths = simulate_time_paths(2000, 20, TimeProcess.AR1, time_sd=1.0, seed=5)
        assert np.mean(np.abs(np.diff(paths, axis=0))) > 0.1

    def test_step_sd_shape(self) -> None:
        draws = np.zeros((7, 5, 3))
        assert step_sd(draws).shape == (7, 3)


# ── Automatic anchors ────────────────────────────────────────────────────────


class TestSelectAnchors:
    """Argmax / argmin of unidentified posterior means."""

    def test_argmax_argmin(self) -> None:
        rng = np.random.default_rng(1)
        means = np.array([0.2, 3.0, -1.0, -4.0, 0.0])
        draws = means + rng.normal(0.0, 0.1, (300, 5))
        high, low, post_means = select_anchors(draws)
        assert high == int(np.argmax(post_means)) == 1
        assert low == int(np.argmin(post_means)) == 3

    def test_ties_go_to_first_person(self) -> None:
        draws = np.tile([1.0, 5.0, 5.0, -2.0, -2.0], (10, 1))
        high, low, _ = select_anchors(draws)
        assert (high, low) == (1, 3)

    def test_time_varying_uses_first_time_point(self) -> None:
        draws = np.zeros((10, 3, 4))
        draws[:, 0, :] = [0.0, 2.0, -2.0, 1.0]
        draws[:, 1, :] = [9.0, 0.0, 0.0, -9.0]
        high, low, _ = select_anchors(draws)
        assert (high, low) == (1, 2)

    def test_non_separable_raises(self) -> None:
        draws = np.random.default_rng(2).normal(0.0, 1.0, (500, 10))
        with pytest.raises(IdentificationError, match="not separable"):
            select_anchors(draws)

    def test_constant_draws_raise(self) -> None:
        with pytest.raises(IdentificationError):
            select_anchors(np.ones((50, 4)))

    def test_single_person_raises(self) -> None:
        with pytest.raises(IdentificationError, match="two persons"):
            select_anchors(np.ones((50, 1)))


# ── End-to-end recovery ──────────────────────────────────────────────────────


class TestRecovery:
    """Identification recovers a known ordering from scrambled draws."""

    def test_spearman_with_truth(self) -> None:
        rng = np.random.default_rng(21)
        truth = rng.permutation(np.linspace(-2.0, 2.0, 30))
        draws = simulate_unidentified_draws(truth, n_draws=400, noise_sd=0.15, seed=22)
        high, low = int(np.argmax(truth)), int(np.argmin(truth))

        out, _ = identify_draws(
            draws, high, low, high_value=truth[high], low_value=truth[low]
        )
        rho, _ = stats.spearmanr(out.mean(axis=0), truth)
        assert rho >= 0.9

    def test_identified_means_match_truth(self) -> None:
        truth = np.linspace(-2.0, 2.0, 30)
        draws = simulate_unidentified_draws(truth, n_draws=400, noise_sd=0.15, seed=22)
        out, _ = identify_draws(draws, 29, 0, high_value=2.0, low_value=-2.0)
        np.testing.assert_allclose(out.mean(axis=0), truth, atol=0.2)


# ── identify_posterior ───────────────────────────────────────────────────────


class TestIdentifyPosterior:
    """Whole-posterior identification with item parameter adjustment."""

    def test_linear_predictor_unchanged(self) -> None:
        post = _static_posterior()
        idata = _idata(post, STATIC_DIMS, STATIC_COORDS)
        new, _ = identify_posterior(idata, 0, 4)

        p = new.posterior
        before = _eta(post["sigma_reg"], post["L_full"], post["B_int"])
        after = _eta(p["sigma_reg"].values, p["L_full"].values, p["B_int"].values)
        np.testing.assert_allclose(after, before, atol=1e-8)

    def test_anchors_on_targets(self) -> None:
        idata = _idata(_static_posterior(), STATIC_DIMS, STATIC_COORDS)
        new, _ = identify_posterior(idata, 1, 3, high_value=0.5, low_value=-1.5)
        np.testing.assert_allclose(new.posterior["L_full"].values[..., 1], 0.5)
        np.testing.assert_allclose(new.posterior["L_full"].values[..., 3], -1.5)

    def test_input_untouched(self) -> None:
        post = _static_posterior()
        idata = _idata(post, STATIC_DIMS, STATIC_COORDS)
        identify_posterior(idata, 0, 4)
        np.testing.assert_array_equal(idata.posterior["L_full"].values, post["L_full"])

    def test_dims_and_coords_kept(self) -> None:
        idata = _idata(_static_posterior(), STATIC_DIMS, STATIC_COORDS)
        new, _ = identify_posterior(idata, 0, 4)
        assert new.posterior["L_full"].dims == ("chain", "draw", "person")
        assert list(new.posterior["person"].values) == STATIC_COORDS["person"]

    def test_missingness_hurdle_unchanged(self) -> None:
        rng = np.random.default_rng(4)
        post = _static_posterior()
        post["sigma_abs"] = rng.normal(size=(2, 50, 4))
        post["A_int"] = rng.normal(size=(2, 50, 4))
        dims = {**STATIC_DIMS, "sigma_abs": ["item"], "A_int": ["item"]}
        new, _ = identify_posterior(_idata(post, dims, STATIC_COORDS), 0, 4)

        p = new.posterior
        before = _eta(post["sigma_abs"], post["L_full"], post["A_int"])
        after = _eta(p["sigma_abs"].values, p["L_full"].values, p["A_int"].values)
        np.testing.assert_allclose(after, before, atol=1e-8)

    def test_graded_response_cutpoints_shift(self) -> None:
        rng = np.random.default_rng(5)
        post = {
            "L_full": rng.normal(size=(2, 50, 5)),
            "sigma_reg": rng.normal(size=(2, 50, 4)),
            "steps_votes_grm": np.sort(rng.normal(size=(2, 50, 4, 2)), axis=-1),
        }
        dims = {
            "L_full": ["person"],
            "sigma_reg": ["item"],
            "steps_votes_grm": ["item", "cutpoint"],
        }
        coords = {**STATIC_COORDS, "cutpoint": [0, 1]}
        new, _ = identify_posterior(_idata(post, dims, coords), 0, 4)

        p = new.posterior
        eta_before = post["sigma_reg"][..., None, :] * post["L_full"][..., :, None]
        eta_after = p["sigma_reg"].values[..., None, :] * p["L_full"].values[..., :, None]
        # Cumulative logit compares eta with each cutpoint
        diff_before = eta_before[..., None] - post["steps_votes_grm"][..., None, :, :]
        diff_after = eta_after[..., None] - p["steps_votes_grm"].values[..., None, :, :]
        np.testing.assert_allclose(diff_after, diff_before, atol=1e-8)

    def test_latent_space_positions_move_with_persons(self) -> None:
        rng = np.random.default_rng(6)
        post = _static_posterior()
        post["ls_int"] = rng.normal(size=(2, 50, 5))
        dims = {**STATIC_DIMS, "ls_int": ["person"]}
        idata = _idata(post, dims, STATIC_COORDS)
        new, result = identify_posterior(idata, 0, 4)

        assert result.mode == "sign"
        np.testing.assert_allclose(np.abs(result.scale), 1.0)
        a = result.scale.reshape(2, 50, 1)
        b = result.shift.reshape(2, 50, 1)
        np.testing.assert_allclose(new.posterior["sigma_reg"].values, a * post["sigma_reg"] + b)
        np.testing.assert_array_equal(new.posterior["B_int"].values, post["B_int"])

    def test_latent_space_distance_predictor_unchanged(self) -> None:
        rng = np.random.default_rng(9)
        post = _static_posterior()
        post["ls_int"] = rng.normal(size=(2, 50, 5))
        dims = {**STATIC_DIMS, "ls_int": ["person"]}
        new, _ = identify_posterior(_idata(post, dims, STATIC_COORDS), 0, 4, rescale=True)

        def eta(p: dict) -> np.ndarray:
            dist = np.abs(p["L_full"][..., :, None] - p["sigma_reg"][..., None, :])
            return p["ls_int"][..., :, None] + p["B_int"][..., None, :] - dist

        after = {var: new.posterior[var].values for var in post}
        np.testing.assert_allclose(eta(after), eta(post), atol=1e-8)
        assert np.all(after["L_full"][..., 0] > after["L_full"][..., 4])

    def test_random_walk_components_consistent(self) -> None:
        rng = np.random.default_rng(8)
        n_time, n_persons = 4, 5
        L_init = rng.normal(size=(2, 50, n_persons))
        L_innov = rng.normal(size=(2, 50, n_time - 1, n_persons))
        time_sd = np.abs(rng.normal(0.3, 0.05, (2, 50)))
        steps = np.concatenate([L_init[:, :, None, :], time_sd[..., None, None] * L_innov], 2)
        post = {
            "L_init": L_init,
            "L_innov": L_innov,
            "time_sd": time_sd,
            "L_tp1": np.cumsum(steps, axis=2),
            "sigma_reg": rng.normal(size=(2, 50, 4)),
            "B_int": rng.normal(size=(2, 50, 4)),
        }
        dims = {
            "L_init": ["person"],
            "L_innov": ["time_step", "person"],
            "L_tp1": ["time", "person"],
            "sigma_reg": ["item"],
            "B_int": ["item"],
        }
        coords = {
            **STATIC_COORDS,
            "time": ["1", "2", "3", "4"],
            "time_step": ["2", "3", "4"],
        }
        new, _ = identify_posterior(
            _idata(post, dims, coords), 0, 4, time_process="random_walk"
        )

        p = new.posterior
        np.testing.assert_allclose(p["L_tp1"].values[:, :, 0, 0], 1.0)
        np.testing.assert_allclose(p["L_init"].values, p["L_tp1"].values[:, :, 0, :])
        rebuilt = np.cumsum(
            np.concatenate(
                [
                    p["L_init"].values[:, :, None, :],
                    p["time_sd"].values[..., None, None] * p["L_innov"].values,
                ],
                axis=2,
            ),
            axis=2,
        )
        np.testing.assert_allclose(rebuilt, p["L_tp1"].values, atol=1e-8)
        assert np.all(p["time_sd"].values >= 0)


class TestTransformItemDraws:
    """Item adjustment for a given per-draw person transform."""

    def test_reflection_flips_discrimination(self) -> None:
        post = _idata(_static_posterior(), STATIC_DIMS, STATIC_COORDS).posterior
        a = np.full((2, 50), -1.0)
        b = np.zeros((2, 50))
        out = transform_item_draws(post, a, b)
        np.testing.assert_allclose(out["sigma_reg"], -post["sigma_reg"].values)
        np.testing.assert_allclose(out["B_int"], post["B_int"].values)

    def test_absent_variables_skipped(self) -> None:
        post = _idata(_static_posterior(), STATIC_DIMS, STATIC_COORDS).posterior
        out = transform_item_draws(post, np.ones((2, 50)), np.zeros((2, 50)))
        assert set(out) == {"sigma_reg", "B_int"}


# ── Anchor state machine ─────────────────────────────────────────────────────


def _report(mode: str, converged: bool) -> ConvergenceReport:
    problems = [] if converged else ["R-hat max 1.2000 > 1.01"]
    return ConvergenceReport(mode=mode, converged=converged, problems=problems)


class TestAnchorStateMachine:
    """UNCONSTRAINED -> HIGH_FIXED -> LOW_FIXED -> IDENTIFIED."""

    def test_happy_path(self) -> None:
        machine = AnchorStateMachine()
        ok = _report("nuts", True)
        machine.fix_high(ok)
        assert machine.state == IdentificationState.HIGH_FIXED
        machine.fix_low(ok)
        assert machine.state == IdentificationState.LOW_FIXED
        machine.finalize()
        assert machine.state == IdentificationState.IDENTIFIED

    def test_nuts_non_convergence_resets(self) -> None:
        machine = AnchorStateMachine(max_attempts=3)
        machine.fix_high(_report("nuts", True))
        with pytest.raises(ConvergenceError) as exc_info:
            machine.fix_low(_report("nuts", False))
        assert machine.state == IdentificationState.UNCONSTRAINED
        assert machine.failures == 1
        assert exc_info.value.report is not None

    def test_exhausted_attempts_raise(self) -> None:
        machine = AnchorStateMachine(max_attempts=1)
        with pytest.raises(ConvergenceError):
            machine.fix_high(_report("nuts", False))
        assert machine.exhausted
        with pytest.raises(IdentificationError, match="Gave up"):
            machine.fix_high(_report("nuts", True))

    def test_retry_after_failure(self) -> None:
        machine = AnchorStateMachine(max_attempts=2)
        with pytest.raises(ConvergenceError):
            machine.fix_high(_report("nuts", False))
        machine.fix_high(_report("nuts", True))
        machine.fix_low(_report("nuts", True))
        machine.finalize()
        assert machine.state == IdentificationState.IDENTIFIED

    def test_vb_non_convergence_warns_once(self) -> None:
        machine = AnchorStateMachine()
        bad = _report("vb", False)
        with pytest.warns(ConvergenceWarning) as record:
            machine.fix_high(bad)
            machine.fix_low(bad)
        assert len(record) == 1
        machine.finalize()
        assert machine.state == IdentificationState.IDENTIFIED

    def test_out_of_order_transition_raises(self) -> None:
        machine = AnchorStateMachine()
        with pytest.raises(IdentificationError, match="expected"):
            machine.fix_low(_report("nuts", True))
        with pytest.raises(IdentificationError):
            machine.finalize()
