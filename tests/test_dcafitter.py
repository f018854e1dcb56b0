"""Unit tests for the two-track closest-approach fitter."""

from __future__ import annotations

import math
import unittest
from unittest import mock

from hfvertexer import ConfigurationError, DCAFitter, DCAFitterConfig, TrackState
from hfvertexer import dcafitter
from hfvertexer.dcafitter import TransverseTrajectory, crossing_seeds
from hfvertexer.models import B2C
from hfvertexer.propagator import propagate_to_x

DIAG_COV = (
    1e-4,
    0.0, 1e-4,
    0.0, 0.0, 1e-6,
    0.0, 0.0, 0.0, 1e-6,
    0.0, 0.0, 0.0, 0.0, 1e-4,
)


def state_through(
    point: tuple[float, float, float],
    snp: float,
    tgl: float,
    q2pt: float,
    bz: float,
    x_shift: float = 0.0,
) -> TrackState:
    """Track passing through `point`, referenced `x_shift` away along X."""
    x = math.hypot(point[0], point[1])
    state = TrackState(
        x=x,
        alpha=math.atan2(point[1], point[0]),
        params=(0.0, point[2], snp, tgl, q2pt),
        cov=DIAG_COV,
    )
    if x_shift:
        state = propagate_to_x(state, x + x_shift, bz)
    return state


def line_state(point, direction) -> TrackState:
    """Straight track (for `bz = 0`) through `point` with direction `(1, uy, uz)`."""
    norm_xy = math.hypot(direction[0], direction[1])
    return TrackState(
        x=point[0],
        alpha=0.0,
        params=(point[1], point[2], direction[1] / norm_xy, direction[2] / norm_xy, 1.0),
        cov=DIAG_COV,
    )


def closest_points(p1, u1, p2, u2):
    """Closest points of two 3D lines by the normal equations."""
    w = [a - b for a, b in zip(p1, p2)]
    a11 = sum(v * v for v in u1)
    a12 = sum(a * b for a, b in zip(u1, u2))
    a22 = sum(v * v for v in u2)
    b1 = sum(a * b for a, b in zip(w, u1))
    b2 = sum(a * b for a, b in zip(w, u2))
    det = a11 * a22 - a12 * a12
    s = (a12 * b2 - a22 * b1) / det
    t = (a11 * b2 - a12 * b1) / det
    q1 = [p + s * u for p, u in zip(p1, u1)]
    q2 = [p + t * u for p, u in zip(p2, u2)]
    return q1, q2


class TestDCAFitter(unittest.TestCase):
    """Validate seeds, convergence, candidate counting and empty outcomes."""

    BZ = 5.0

    def _two_crossing_pair(self) -> tuple[TrackState, TrackState]:
        """Circles of radius 50 crossing at (6, 0, 0) and (34, 0, 0)."""
        q2pt = 0.02 / (self.BZ * B2C)
        track_a = TrackState(x=20.0, alpha=0.0, params=(-2.0, 0.0, 0.0, 0.0, q2pt), cov=DIAG_COV)
        track_b = TrackState(x=20.0, alpha=0.0, params=(2.0, 0.0, 0.0, 0.0, -q2pt), cov=DIAG_COV)
        return track_a, track_b

    # Straight skew lines used by several tests (bz = 0).
    P1 = (5.0, 0.0, 0.0)
    U1 = (1.0, 0.2, 0.1)
    P2 = (5.0, 3.0, 1.0)
    U2 = (1.0, -0.3, -0.2)

    def test_transverse_circle_from_state(self) -> None:
        track_a, _ = self._two_crossing_pair()
        circle = TransverseTrajectory.from_state(track_a, self.BZ)
        self.assertAlmostEqual(circle.xc, 20.0, places=9)
        self.assertAlmostEqual(circle.yc, 48.0, places=9)
        self.assertAlmostEqual(circle.radius, 50.0, places=9)

    def test_crossing_seeds_geometries(self) -> None:
        separate = crossing_seeds(
            TransverseTrajectory(0.0, 0.0, 1.0), TransverseTrajectory(5.0, 0.0, 1.0)
        )
        self.assertEqual(len(separate), 1)
        self.assertAlmostEqual(separate[0][0], 2.5, places=12)

        nested = crossing_seeds(
            TransverseTrajectory(0.0, 0.0, 10.0), TransverseTrajectory(2.0, 0.0, 3.0)
        )
        self.assertEqual(len(nested), 1)
        self.assertAlmostEqual(nested[0][0], 7.5, places=12)

        line = TransverseTrajectory(0.0, 5.0, 0.0, ux=1.0, uy=0.0)
        missed = crossing_seeds(TransverseTrajectory(0.0, 0.0, 2.0), line)
        self.assertEqual(len(missed), 1)
        self.assertAlmostEqual(missed[0][1], 3.5, places=12)

        low_line = TransverseTrajectory(0.0, 1.0, 0.0, ux=1.0, uy=0.0)
        crossed = crossing_seeds(low_line, TransverseTrajectory(0.0, 0.0, 2.0))
        self.assertEqual(len(crossed), 2)
        self.assertEqual(sorted(round(p[0], 9) for p in crossed), [-round(math.sqrt(3.0), 9), round(math.sqrt(3.0), 9)])

        concentric = crossing_seeds(
            TransverseTrajectory(1.0, 1.0, 2.0), TransverseTrajectory(1.0, 1.0, 3.0)
        )
        self.assertEqual(concentric, [])

    def test_caller_configuration_finds_single_crossing(self) -> None:
        """DCAFitter(5.0, 10.0) in absolute mode recovers a known crossing."""
        point = (3.0, 1.0, 2.0)
        track_a = state_through(point, snp=0.1, tgl=0.3, q2pt=1.0, bz=self.BZ, x_shift=-1.5)
        track_b = state_through(point, snp=-0.2, tgl=-0.1, q2pt=-0.8, bz=self.BZ, x_shift=-2.0)
        fitter = DCAFitter(5.0, 10.0)
        fitter.set_use_abs_dca(True)

        candidates = fitter.fit_pair(track_a, track_b)

        self.assertEqual(len(candidates), 1)
        for got, expected in zip(candidates[0].position, point, strict=True):
            self.assertAlmostEqual(got, expected, delta=1e-3)
        self.assertLess(candidates[0].dca, 1e-3)

    def test_two_crossings_emitted_in_seed_order(self) -> None:
        track_a, track_b = self._two_crossing_pair()
        candidates = DCAFitter(self.BZ, 200.0).fit_pair(track_a, track_b)
        self.assertEqual(len(candidates), 2)
        self.assertEqual([c.seed_index for c in candidates], [0, 1])
        self.assertAlmostEqual(candidates[0].position[0], 6.0, places=6)
        self.assertAlmostEqual(candidates[1].position[0], 34.0, places=6)
        for cand in candidates:
            self.assertAlmostEqual(cand.position[1], 0.0, places=6)
            self.assertAlmostEqual(cand.position[2], 0.0, places=6)
            self.assertLess(cand.dca, 1e-6)

    def test_max_candidates_one_limits_output(self) -> None:
        track_a, track_b = self._two_crossing_pair()
        candidates = DCAFitter(self.BZ, 200.0, max_candidates=1).fit_pair(track_a, track_b)
        self.assertEqual(len(candidates), 1)
        self.assertAlmostEqual(candidates[0].position[0], 6.0, places=6)

    def test_straight_skew_lines_match_analytic_midpoint(self) -> None:
        q1, q2 = closest_points(self.P1, self.U1, self.P2, self.U2)
        expected = [(a + b) / 2.0 for a, b in zip(q1, q2)]
        fitter = DCAFitter(0.0, 100.0, use_abs_dca=True)

        [candidate] = fitter.find_closest_approach(
            line_state(self.P1, self.U1), line_state(self.P2, self.U2)
        )

        for got, exp in zip(candidate.position, expected, strict=True):
            self.assertAlmostEqual(got, exp, delta=fitter.config.min_param_change)
        separation = math.dist(q1, q2)
        self.assertAlmostEqual(candidate.dca, separation, places=4)
        self.assertAlmostEqual(candidate.chi2, separation * separation / 2.0, places=4)

    def test_abs_and_weighted_metrics_agree_for_small_errors(self) -> None:
        # Second line shifted so that the lines pass 0.02 cm apart in z.
        p2 = (5.0, 3.0, 1.82)
        track_a = line_state(self.P1, self.U1)
        track_b = line_state(p2, self.U2)
        [weighted] = DCAFitter(0.0, 100.0).fit_pair(track_a, track_b)
        [absolute] = DCAFitter(0.0, 100.0, use_abs_dca=True).fit_pair(track_a, track_b)
        self.assertLess(math.dist(weighted.position, absolute.position), 0.05)
        self.assertLess(weighted.dca, 0.05)

    def test_crossing_beyond_max_r_gives_no_candidate(self) -> None:
        fitter = DCAFitter(0.0, 8.0, use_abs_dca=True)
        candidates = fitter.fit_pair(line_state(self.P1, self.U1), line_state(self.P2, self.U2))
        self.assertEqual(candidates, [])

    def test_parallel_tracks_give_no_candidate(self) -> None:
        direction = (1.0, 0.1, 0.05)
        candidates = DCAFitter(0.0, 100.0, use_abs_dca=True).fit_pair(
            line_state((5.0, 0.0, 0.0), direction),
            line_state((5.0, 1.0, 0.0), direction),
        )
        self.assertEqual(candidates, [])

    def test_iteration_bound_abandons_seed(self) -> None:
        fitter = DCAFitter(0.0, 100.0, use_abs_dca=True, max_iterations=1)
        candidates = fitter.fit_pair(line_state(self.P1, self.U1), line_state(self.P2, self.U2))
        self.assertEqual(candidates, [])

    def test_diverging_seed_is_dropped_and_next_seed_kept(self) -> None:
        """A step that increases chi2 abandons only the current seed."""
        track_a, track_b = self._two_crossing_pair()
        fitter = DCAFitter(self.BZ, 200.0, use_abs_dca=True)
        # First seed half a centimetre off the crossing at x = 6.
        displaced = [(6.5, 0.0), (34.0, 0.0)]
        real_step = dcafitter._newton_step
        calls = []

        def overshoot_first(*args):
            step = real_step(*args)
            calls.append(step)
            if len(calls) == 1:
                return (3.0 * step[0], 3.0 * step[1])
            return step

        with mock.patch.object(fitter, "seeds", return_value=displaced):
            plain = fitter.fit_pair(track_a, track_b)
            with mock.patch("hfvertexer.dcafitter._newton_step", side_effect=overshoot_first):
                with self.assertLogs("hfvertexer.dcafitter", level="DEBUG") as logs:
                    kept = fitter.fit_pair(track_a, track_b)

        self.assertEqual([c.seed_index for c in plain], [0, 1])
        self.assertEqual([c.seed_index for c in kept], [1])
        self.assertAlmostEqual(kept[0].position[0], 34.0, places=6)
        self.assertTrue(any("Seed 0 diverged" in line for line in logs.output))

    def test_seeds_beyond_turning_points_are_dropped(self) -> None:
        """Seeds only reachable through a turning point give an empty result."""
        q2pt = 0.02 / (self.BZ * B2C)
        # Counter-clockwise circles of radius 50 centred at (0, 50) and (0, 90).
        track_a = TrackState(x=0.0, alpha=0.0, params=(0.0, 0.0, 0.0, 0.0, q2pt), cov=DIAG_COV)
        track_b = TrackState(x=0.0, alpha=0.0, params=(40.0, 0.0, 0.0, 0.0, q2pt), cov=DIAG_COV)
        fitter = DCAFitter(self.BZ, 200.0, use_abs_dca=True, max_chi2=50.0)
        self.assertEqual(len(fitter.seeds(track_a, track_b)), 2)
        self.assertEqual(fitter.fit_pair(track_a, track_b), [])

    def test_large_z_gap_rejects_seed(self) -> None:
        track_a, track_b = self._two_crossing_pair()
        shifted = TrackState(
            x=track_b.x,
            alpha=track_b.alpha,
            params=(track_b.y, 10.0, track_b.snp, track_b.tgl, track_b.q2pt),
            cov=track_b.cov,
        )
        self.assertEqual(DCAFitter(self.BZ, 200.0).fit_pair(track_a, shifted), [])

    def test_configuration_helpers(self) -> None:
        config = DCAFitterConfig(bz=2.0, max_r=50.0, max_candidates=1)
        fitter = DCAFitter.from_config(config)
        self.assertEqual(fitter.config, config)
        fitter.set_use_abs_dca(True)
        self.assertTrue(fitter.config.use_abs_dca)
        self.assertFalse(config.use_abs_dca)
        with self.assertRaises(ConfigurationError):
            DCAFitter(5.0, 10.0, max_iterations=0)
        with self.assertRaises(ValueError):
            DCAFitterConfig(max_r=-1.0)


if __name__ == "__main__":
    unittest.main()
