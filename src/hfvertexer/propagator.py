"""Track-state transport: frame rotation and propagation along the helix.

Both operations return new `TrackState` values. Parameters follow the exact
helix map in a uniform field along z; the covariance is transported as
`F C F^T` with the exact analytic Jacobian `F` of that map, so round trips
restore the covariance and positive semi-definiteness is preserved.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from .exceptions import DegenerateTrajectoryError
from .models import B2C, TrackState, Vector3, bring_to_pm_pi
from .physics import congruence_sym5

ALMOST_ZERO = 1e-12
ALMOST_ONE = 1.0 - 1e-6
# Below this |curvature * dx| the path-length derivative uses its series form.
_SMALL_BENDING = 1e-3


def propagate_to_x(state: TrackState, x: float, bz: float) -> TrackState:
    """Move `state` along its helix to reference coordinate `x` (same frame).

    Raises `DegenerateTrajectoryError` when the start or target point is at
    or beyond a turning point of the trajectory in this frame.
    """
    dx = x - state.x
    if abs(dx) < ALMOST_ZERO:
        return TrackState(x=x, alpha=state.alpha, params=state.params, cov=state.cov)
    y, z, snp, tgl, q2pt = state.params
    kb = bz * B2C
    crv = q2pt * kb
    x2r = crv * dx
    f1 = snp
    f2 = f1 + x2r
    if abs(f1) > ALMOST_ONE or abs(f2) > ALMOST_ONE:
        raise DegenerateTrajectoryError(
            f"Propagation from x={state.x:.4f} to x={x:.4f} crosses a turning point "
            f"(snp {f1:.6f} -> {f2:.6f})."
        )
    r1 = math.sqrt((1.0 - f1) * (1.0 + f1))
    r2 = math.sqrt((1.0 - f2) * (1.0 + f2))
    if r1 < ALMOST_ZERO or r2 < ALMOST_ZERO:
        raise DegenerateTrajectoryError("Track is tangent to the local frame X axis.")

    rsum = r1 + r2
    ssum = f1 + f2
    dy2dx = ssum / rsum
    chord = abs(dx) * math.sqrt(1.0 + dy2dx * dy2dx)
    path = math.copysign(chord * _asinc(0.5 * chord * crv), dx)

    new_params = (y + dx * dy2dx, z + tgl * path, f2, tgl, q2pt)

    # Exact derivatives of (y, z, snp) w.r.t. (snp, tgl, q2pt) at fixed dx.
    drsum_dsnp = -f1 / r1 - f2 / r2
    dy_dsnp = dx * (2.0 * rsum - ssum * drsum_dsnp) / (rsum * rsum)
    dy_dq2pt = dx * dx * kb * (rsum + ssum * f2 / r2) / (rsum * rsum)
    dpath_dsnp = dx * ssum / (r1 * r2 * rsum)
    if abs(x2r) > _SMALL_BENDING:
        dpath_dcrv = (dx / r2 - path) / crv
    else:
        dpath_dcrv = dx * dx * f1 / (2.0 * r1**3) + crv * dx**3 * (1.0 + 2.0 * f1 * f1) / (3.0 * r1**5)
    dpath_dq2pt = kb * dpath_dcrv

    jacobian = (
        (1.0, 0.0, dy_dsnp, 0.0, dy_dq2pt),
        (0.0, 1.0, tgl * dpath_dsnp, path, tgl * dpath_dq2pt),
        (0.0, 0.0, 1.0, 0.0, kb * dx),
        (0.0, 0.0, 0.0, 1.0, 0.0),
        (0.0, 0.0, 0.0, 0.0, 1.0),
    )
    return TrackState(
        x=x,
        alpha=state.alpha,
        params=new_params,
        cov=congruence_sym5(jacobian, state.cov),
    )


def rotate_to_frame(state: TrackState, alpha: float, bz: float = 0.0) -> TrackState:
    """Express `state` in the local frame rotated by `alpha`.

    The new reference `x` is the rotated reference point. The covariance
    Jacobian is taken at fixed new `x`; the curvature term (`bz`) only enters
    the snp/y correlation and may be omitted for straight tracks.
    Raises `DegenerateTrajectoryError` when the track would move against the
    new X axis.
    """
    alpha = bring_to_pm_pi(alpha)
    y, z, snp, tgl, q2pt = state.params
    if abs(snp) > ALMOST_ONE:
        raise DegenerateTrajectoryError(f"Cannot rotate a state with snp={snp:.6f}.")
    da = alpha - state.alpha
    ca = math.cos(da)
    sa = math.sin(da)
    csp = math.sqrt((1.0 - snp) * (1.0 + snp))
    csp_new = csp * ca + snp * sa
    if csp_new < 1e-6:
        raise DegenerateTrajectoryError(
            f"Rotation by {da:.4f} rad leaves the track pointing against the X axis."
        )
    snp_new = snp * ca - csp * sa
    if abs(snp_new) > ALMOST_ONE:
        raise DegenerateTrajectoryError(f"Rotation gives snp={snp_new:.6f}.")

    crv = q2pt * bz * B2C
    jacobian = (
        (csp / csp_new, 0.0, 0.0, 0.0, 0.0),
        (-sa * tgl / csp_new, 1.0, 0.0, 0.0, 0.0),
        (-sa * crv, 0.0, csp_new / csp, 0.0, 0.0),
        (0.0, 0.0, 0.0, 1.0, 0.0),
        (0.0, 0.0, 0.0, 0.0, 1.0),
    )
    return TrackState(
        x=state.x * ca + y * sa,
        alpha=alpha,
        params=(-state.x * sa + y * ca, z, snp_new, tgl, q2pt),
        cov=congruence_sym5(jacobian, state.cov),
    )


@dataclass(frozen=True)
class LocalGeometry:
    """Track point and its first/second X-derivatives in the track frame."""

    point: Vector3
    d1: Vector3
    d2: Vector3


def local_geometry(state: TrackState, bz: float) -> LocalGeometry:
    """Return the local point `(x, y, z)` and its derivatives along X."""
    snp = state.snp
    tgl = state.tgl
    csp = math.sqrt(max((1.0 - snp) * (1.0 + snp), ALMOST_ZERO))
    crv = state.curvature(bz)
    inv_csp3 = 1.0 / (csp * csp * csp)
    return LocalGeometry(
        point=(state.x, state.y, state.z),
        d1=(1.0, snp / csp, tgl / csp),
        d2=(0.0, crv * inv_csp3, tgl * snp * crv * inv_csp3),
    )


def local_to_global(point: Sequence[float], alpha: float) -> Vector3:
    """Rotate a local-frame point into the global frame."""
    ca = math.cos(alpha)
    sa = math.sin(alpha)
    return (
        point[0] * ca - point[1] * sa,
        point[0] * sa + point[1] * ca,
        point[2],
    )


def global_to_local(point: Sequence[float], alpha: float) -> Vector3:
    """Rotate a global-frame point into the frame `alpha`."""
    ca = math.cos(alpha)
    sa = math.sin(alpha)
    return (
        point[0] * ca + point[1] * sa,
        -point[0] * sa + point[1] * ca,
        point[2],
    )


@dataclass(frozen=True)
class Propagator:
    """Track transport in a locally uniform field `bz` (kG)."""

    bz: float

    def propagate_to_x(self, state: TrackState, x: float) -> TrackState:
        return propagate_to_x(state, x, self.bz)

    def rotate(self, state: TrackState, alpha: float) -> TrackState:
        return rotate_to_frame(state, alpha, self.bz)

    def propagate_to_point(self, state: TrackState, point: Sequence[float]) -> TrackState:
        """Bring `state` to the X of `point` in the track's own direction frame.

        The track is rotated to its momentum azimuth at the reference point
        (snp = 0 there, so the rotation never fails on direction) and
        propagated to the local X of `point`. The closest point along the
        track is not searched.
        """
        alpha = state.alpha + math.asin(state.snp)
        rotated = self.rotate(state, alpha)
        return self.propagate_to_x(rotated, global_to_local(point, rotated.alpha)[0])


def _asinc(value: float) -> float:
    """`asin(v) / v`, continuous at zero."""
    v = abs(value)
    if v < 1e-4:
        v2 = v * v
        return 1.0 + v2 / 6.0 + 3.0 * v2 * v2 / 40.0
    if v >= 1.0:
        raise DegenerateTrajectoryError("Chord longer than the helix diameter.")
    return math.asin(v) / v
