"""Two-track distance-of-closest-approach (DCA) vertex fitter.

Workflow of `DCAFitter.fit_pair`:
1. Seed from the crossing(s) of the two trajectories in the transverse plane
   (circle/circle, circle/line or line/line).
2. Rotate both tracks into a common working frame (X axis along the bisector
   of their transverse directions) and propagate them to the seed X.
3. Newton iterations on the two per-track X coordinates, minimising the
   separation `d = P_a - P_b` under the metric `M = (S_a + S_b)^-1`.
4. Emit one `VertexCandidate` per converged seed passing the quality cuts.

A seed that diverges, does not converge or hits a degenerate propagation is
dropped; the remaining seeds are still tried. An empty result is normal.
"""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import logging
import math
from dataclasses import asdict, dataclass, replace

from .exceptions import DegenerateTrajectoryError
from .models import DCAFitterConfig, Matrix3x3, TrackState, VertexCandidate, Vector3
from .physics import (
    IDENTITY_3X3,
    add_3x3,
    dot3,
    invert_2x2,
    invert_3x3,
    matvec_3x3,
    quadratic_form_3,
    sub3,
    transverse_radius,
)
from .propagator import (
    LocalGeometry,
    local_geometry,
    local_to_global,
    propagate_to_x,
    rotate_to_frame,
)

logger = logging.getLogger(__name__)

# Curvature below which a track is treated as a straight line when seeding:
# 0.1 mm sagitta over a 160 cm lever arm.
MIN_CURVATURE = 8.0 * 0.01 / (160.0 * 160.0)


@dataclass(frozen=True)
class TransverseTrajectory:
    """Projection of a track on the transverse plane (global frame).

    For circles `(xc, yc)` is the centre and `radius > 0`; straight lines have
    `radius == 0`, a point `(xc, yc)` and unit direction `(ux, uy)`.
    """

    xc: float
    yc: float
    radius: float
    ux: float = 0.0
    uy: float = 0.0

    @property
    def is_line(self) -> bool:
        return self.radius == 0.0

    @classmethod
    def from_state(cls, state: TrackState, bz: float) -> "TransverseTrajectory":
        crv = state.curvature(bz)
        if abs(crv) <= MIN_CURVATURE:
            x, y, _ = state.xyz()
            ux, uy = state.direction_xy()
            return cls(xc=x, yc=y, radius=0.0, ux=ux, uy=uy)
        snp = state.snp
        csp = math.sqrt(max((1.0 - snp) * (1.0 + snp), 0.0))
        rho = 1.0 / crv
        # The signed radius puts the centre on the inner side of the bend.
        xc, yc, _ = local_to_global((state.x - snp * rho, state.y + csp * rho, 0.0), state.alpha)
        return cls(xc=xc, yc=yc, radius=abs(rho))


def crossing_seeds(
    first: TransverseTrajectory, second: TransverseTrajectory
) -> list[tuple[float, float]]:
    """Return transverse seed points ordered by increasing radius.

    Intersecting curves give up to two points; otherwise the midpoint of the
    two closest points is returned. Concentric circles give no seed.
    """
    if first.is_line and second.is_line:
        points = _line_line_seeds(first, second)
    elif first.is_line:
        points = _circle_line_seeds(second, first)
    elif second.is_line:
        points = _circle_line_seeds(first, second)
    else:
        points = _circle_circle_seeds(first, second)
    return sorted(points, key=lambda p: math.hypot(p[0], p[1]))


def _circle_circle_seeds(c1: TransverseTrajectory, c2: TransverseTrajectory) -> list[tuple[float, float]]:
    dx = c2.xc - c1.xc
    dy = c2.yc - c1.yc
    dist = math.hypot(dx, dy)
    if dist < 1e-9:
        return []
    ux = dx / dist
    uy = dy / dist
    r1 = c1.radius
    r2 = c2.radius
    if dist > r1 + r2:
        # Separate circles: halfway across the gap.
        along = r1 + 0.5 * (dist - r1 - r2)
        return [(c1.xc + ux * along, c1.yc + uy * along)]
    if dist < abs(r1 - r2):
        # One circle inside the other: closest points lie on the centre line.
        if r1 > r2:
            along = 0.5 * (r1 + dist + r2)
            return [(c1.xc + ux * along, c1.yc + uy * along)]
        along = 0.5 * (r2 + dist + r1)
        return [(c2.xc - ux * along, c2.yc - uy * along)]
    a = (dist * dist + r1 * r1 - r2 * r2) / (2.0 * dist)
    h = math.sqrt(max(r1 * r1 - a * a, 0.0))
    bx = c1.xc + a * ux
    by = c1.yc + a * uy
    if h < 1e-9:
        return [(bx, by)]
    return [(bx - h * uy, by + h * ux), (bx + h * uy, by - h * ux)]


def _circle_line_seeds(circle: TransverseTrajectory, line: TransverseTrajectory) -> list[tuple[float, float]]:
    t0 = (circle.xc - line.xc) * line.ux + (circle.yc - line.yc) * line.uy
    fx = line.xc + t0 * line.ux
    fy = line.yc + t0 * line.uy
    dist = math.hypot(fx - circle.xc, fy - circle.yc)
    if dist >= circle.radius:
        if dist < 1e-9:
            return [(fx, fy)]
        cx = circle.xc + (fx - circle.xc) * circle.radius / dist
        cy = circle.yc + (fy - circle.yc) * circle.radius / dist
        return [(0.5 * (fx + cx), 0.5 * (fy + cy))]
    h = math.sqrt(circle.radius * circle.radius - dist * dist)
    return [(fx - h * line.ux, fy - h * line.uy), (fx + h * line.ux, fy + h * line.uy)]


def _line_line_seeds(l1: TransverseTrajectory, l2: TransverseTrajectory) -> list[tuple[float, float]]:
    det = l1.ux * l2.uy - l1.uy * l2.ux
    wx = l2.xc - l1.xc
    wy = l2.yc - l1.yc
    if abs(det) < 1e-12:
        # Parallel: between the first reference point and its foot on the second line.
        t = -(wx * l2.ux + wy * l2.uy)
        fx = l2.xc + t * l2.ux
        fy = l2.yc + t * l2.uy
        return [(0.5 * (l1.xc + fx), 0.5 * (l1.yc + fy))]
    s = (wx * l2.uy - wy * l2.ux) / det
    return [(l1.xc + s * l1.ux, l1.yc + s * l1.uy)]


class DCAFitter:
    """Iterative closest-approach finder for pairs of helix track states.

    `DCAFitter(5.0, 10.0)` gives `bz = 5 kG` and `max_r = 10 cm`; any other
    `DCAFitterConfig` field can be passed by keyword. The fitter keeps no
    state between pairs.
    """

    def __init__(self, bz: float = 5.0, max_r: float = 200.0, **options) -> None:
        self.config = DCAFitterConfig(bz=bz, max_r=max_r, **options)

    @classmethod
    def from_config(cls, config: DCAFitterConfig) -> "DCAFitter":
        return cls(**asdict(config))

    def set_use_abs_dca(self, flag: bool) -> None:
        """Select the absolute-distance (True) or covariance-weighted metric."""
        self.config = replace(self.config, use_abs_dca=bool(flag))

    def seeds(self, state_a: TrackState, state_b: TrackState) -> list[tuple[float, float]]:
        """Transverse seed points within `max_r`, in emission order."""
        bz = self.config.bz
        points = crossing_seeds(
            TransverseTrajectory.from_state(state_a, bz),
            TransverseTrajectory.from_state(state_b, bz),
        )
        return [p for p in points if math.hypot(p[0], p[1]) <= self.config.max_r]

    def fit_pair(self, state_a: TrackState, state_b: TrackState) -> list[VertexCandidate]:
        """Return converged closest-approach candidates in seed order."""
        candidates: list[VertexCandidate] = []
        for seed_index, seed in enumerate(self.seeds(state_a, state_b)):
            if len(candidates) >= self.config.max_candidates:
                break
            try:
                candidate = self._fit_seed(state_a, state_b, seed, seed_index)
            except DegenerateTrajectoryError as exc:
                logger.debug("Seed %d at (%.4f, %.4f) abandoned: %s", seed_index, seed[0], seed[1], exc)
                continue
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    find_closest_approach = fit_pair

    def _fit_seed(
        self,
        state_a: TrackState,
        state_b: TrackState,
        seed: tuple[float, float],
        seed_index: int,
    ) -> VertexCandidate | None:
        cfg = self.config
        bz = cfg.bz
        alpha = _working_frame(state_a, state_b)
        ta = rotate_to_frame(state_a, alpha, bz)
        tb = rotate_to_frame(state_b, alpha, bz)
        x_seed = seed[0] * math.cos(alpha) + seed[1] * math.sin(alpha)
        ta = propagate_to_x(ta, x_seed, bz)
        tb = propagate_to_x(tb, x_seed, bz)
        if abs(ta.z - tb.z) > cfg.max_dz_ini:
            logger.debug("Seed %d rejected: dz=%.4f > %.4f", seed_index, abs(ta.z - tb.z), cfg.max_dz_ini)
            return None

        converged = False
        n_iterations = 0
        for n_iterations in range(1, cfg.max_iterations + 1):
            ga = local_geometry(ta, bz)
            gb = local_geometry(tb, bz)
            _, _, metric = self._metric(ta, ga, tb, gb)
            sep = sub3(ga.point, gb.point)
            chi2 = quadratic_form_3(sep, metric)
            step = _newton_step(sep, metric, ga, gb)
            if step is None:
                logger.debug("Seed %d abandoned: singular system (parallel tracks)", seed_index)
                return None
            na = propagate_to_x(ta, ta.x + step[0], bz)
            nb = propagate_to_x(tb, tb.x + step[1], bz)
            new_chi2 = quadratic_form_3(sub3((na.x, na.y, na.z), (nb.x, nb.y, nb.z)), metric)
            if new_chi2 > chi2 * (1.0 + 1e-6) + 1e-12:
                logger.debug(
                    "Seed %d diverged at iteration %d: chi2 %.6g -> %.6g",
                    seed_index, n_iterations, chi2, new_chi2,
                )
                return None
            ta, tb = na, nb
            if max(abs(step[0]), abs(step[1])) < cfg.min_param_change:
                converged = True
                break
        if not converged:
            logger.debug("Seed %d did not converge in %d iterations", seed_index, cfg.max_iterations)
            return None

        ga = local_geometry(ta, bz)
        gb = local_geometry(tb, bz)
        cov_a, _, metric = self._metric(ta, ga, tb, gb)
        sep = sub3(gb.point, ga.point)
        chi2 = quadratic_form_3(sep, metric)
        shift = matvec_3x3(cov_a, matvec_3x3(metric, sep))
        pca_local = (
            ga.point[0] + shift[0],
            ga.point[1] + shift[1],
            ga.point[2] + shift[2],
        )
        position = local_to_global(pca_local, alpha)
        if chi2 > cfg.max_chi2:
            logger.debug("Seed %d rejected: chi2 %.4g > %.4g", seed_index, chi2, cfg.max_chi2)
            return None
        if transverse_radius(position) > cfg.max_r:
            logger.debug("Seed %d rejected: vertex radius beyond %.2f", seed_index, cfg.max_r)
            return None
        return VertexCandidate(
            position=position,
            track_a=ta,
            track_b=tb,
            chi2=chi2,
            n_iterations=n_iterations,
            seed_index=seed_index,
        )

    def _metric(
        self,
        ta: TrackState,
        ga: LocalGeometry,
        tb: TrackState,
        gb: LocalGeometry,
    ) -> tuple[Matrix3x3, Matrix3x3, Matrix3x3]:
        """Return `(S_a, S_b, (S_a + S_b)^-1)` for the active metric policy."""
        if not self.config.use_abs_dca:
            cov_a = _position_covariance(ta, ga)
            cov_b = _position_covariance(tb, gb)
            inverse = invert_3x3(add_3x3(cov_a, cov_b))
            if inverse is not None:
                return cov_a, cov_b, inverse
            logger.debug("Weighted metric singular, using absolute distance")
        half = tuple(tuple(0.5 * v for v in row) for row in IDENTITY_3X3)
        return IDENTITY_3X3, IDENTITY_3X3, half  # type: ignore[return-value]


def _working_frame(state_a: TrackState, state_b: TrackState) -> float:
    """Frame angle along the bisector of the two transverse directions."""
    ax, ay = state_a.direction_xy()
    bx, by = state_b.direction_xy()
    sx = ax + bx
    sy = ay + by
    if math.hypot(sx, sy) < 1e-9:
        return math.atan2(ay, ax)
    return math.atan2(sy, sx)


def _position_covariance(state: TrackState, geometry: LocalGeometry) -> Matrix3x3:
    """Position covariance of the track point, transverse to its direction.

    The `(y, z)` block at fixed X is embedded in 3D and projected on the plane
    normal to the track, so sliding along the track costs nothing.
    """
    c = state.cov
    cyy, czy, czz = c[0], c[1], c[2]
    d = geometry.d1
    norm2 = dot3(d, d)
    # Columns of P E, P = I - u u^T, E = [e_y, e_z].
    cols = []
    for axis in (1, 2):
        e = (0.0, 1.0 if axis == 1 else 0.0, 1.0 if axis == 2 else 0.0)
        proj = dot3(d, e) / norm2
        cols.append((e[0] - proj * d[0], e[1] - proj * d[1], e[2] - proj * d[2]))
    ey, ez = cols
    return tuple(
        tuple(
            cyy * ey[i] * ey[j]
            + czy * (ey[i] * ez[j] + ez[i] * ey[j])
            + czz * ez[i] * ez[j]
            for j in range(3)
        )
        for i in range(3)
    )  # type: ignore[return-value]


def _newton_step(
    sep: Vector3,
    metric: Matrix3x3,
    ga: LocalGeometry,
    gb: LocalGeometry,
) -> tuple[float, float] | None:
    """Newton step on `(X_a, X_b)` for `f = d^T M d`, `d = P_a - P_b`.

    Falls back to the Gauss-Newton Hessian when the full one is not
    positive definite.
    """
    m_sep = matvec_3x3(metric, sep)
    m_da = matvec_3x3(metric, ga.d1)
    m_db = matvec_3x3(metric, gb.d1)
    grad_a = dot3(ga.d1, m_sep)
    grad_b = -dot3(gb.d1, m_sep)
    gn_aa = dot3(ga.d1, m_da)
    gn_bb = dot3(gb.d1, m_db)
    gn_ab = -dot3(ga.d1, m_db)
    h_aa = gn_aa + dot3(ga.d2, m_sep)
    h_bb = gn_bb - dot3(gb.d2, m_sep)
    hessian = ((h_aa, gn_ab), (gn_ab, h_bb))
    if h_aa <= 0.0 or h_aa * h_bb - gn_ab * gn_ab <= 0.0:
        hessian = ((gn_aa, gn_ab), (gn_ab, gn_bb))
    # Scale-aware singularity test: parallel tracks give a rank-1 system.
    if hessian[0][0] * hessian[1][1] - hessian[0][1] ** 2 <= 1e-12 * hessian[0][0] * hessian[1][1]:
        return None
    inverse = invert_2x2(hessian)
    if inverse is None:
        return None
    return (
        -(inverse[0][0] * grad_a + inverse[0][1] * grad_b),
        -(inverse[1][0] * grad_a + inverse[1][1] * grad_b),
    )
