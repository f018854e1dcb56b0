"""Helpers to treat fitted vertices as track-like composite objects.

This enables cascade workflows where a 2-prong candidate (e.g. a Lambda0
V0) is reused as an input "track" for a second closest-approach fit.
"""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import math
from typing import Sequence

from .models import TrackState, VertexCandidate
from .physics import sum_lorentz, track_to_lorentz
from .propagator import global_to_local


def vertex_to_track_state(
    candidate: VertexCandidate,
    masses: Sequence[float] = (0.0, 0.0),
) -> TrackState:
    """Convert one `VertexCandidate` into a track-like `TrackState`.

    The composite state uses:
    - the frame whose X axis points along the summed transverse momentum, so
      `snp = 0` and the reference point is the fitted vertex.
    - `tgl = pz / pt` and `q2pt = charge / pt` (zero for neutral composites,
      which then propagate as straight lines).
    - a covariance built from momentum-weighted daughter blocks.

    Notes:
    - The covariance is an approximation (sufficient for staged fits, not a
      full vertex fit); cross terms between parameter groups are dropped.
    - `masses` only affect the composite energy, not the state.
    """
    daughters = (candidate.track_a, candidate.track_b)
    p4 = sum_lorentz(track_to_lorentz(t, m) for t, m in zip(daughters, masses, strict=True))
    pt = p4.pt
    if pt <= 0.0:
        raise ValueError("Composite transverse momentum must be positive.")
    alpha = math.atan2(p4.py, p4.px)
    x, y, z = global_to_local(candidate.position, alpha)
    charge = sum(t.charge for t in daughters)

    w = _momentum_weights(daughters)
    var_y = sum((wi * wi) * t.cov[0] for wi, t in zip(w, daughters, strict=True))
    cov_zy = sum((wi * wi) * t.cov[1] for wi, t in zip(w, daughters, strict=True))
    var_z = sum((wi * wi) * t.cov[2] for wi, t in zip(w, daughters, strict=True))
    var_snp = sum((wi * wi) * t.cov[5] for wi, t in zip(w, daughters, strict=True))
    var_tgl = sum((wi * wi) * t.cov[9] for wi, t in zip(w, daughters, strict=True))
    var_q2pt = 0.0
    if charge != 0:
        # d(1/pt) scales as pt_i^2 / pt^2 per daughter.
        var_q2pt = sum(
            (t.pt * t.pt / (pt * pt)) ** 2 * t.cov[14] for t in daughters if math.isfinite(t.pt)
        )

    cov = (
        var_y,
        cov_zy, var_z,
        0.0, 0.0, var_snp,
        0.0, 0.0, 0.0, var_tgl,
        0.0, 0.0, 0.0, 0.0, var_q2pt,
    )
    return TrackState(
        x=x,
        alpha=alpha,
        params=(y, z, 0.0, p4.pz / pt, charge / pt),
        cov=cov,
    )


def _momentum_weights(tracks: Sequence[TrackState]) -> list[float]:
    """Return normalized positive momentum weights for covariance mixing."""
    if not tracks:
        return []
    moms = [t.p if math.isfinite(t.p) else 0.0 for t in tracks]
    total = sum(moms)
    if total <= 0.0:
        return [1.0 / len(tracks)] * len(tracks)
    return [p / total for p in moms]
