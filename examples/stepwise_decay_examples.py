"""Stepwise cascade example using a fitted V0 as a track-like input.

Demonstrated chain:
- Xi- -> Lambda0(p pi-) pi-

The key abstraction is `vertex_to_track_state`, which converts a fitted
closest-approach candidate into a new neutral `TrackState` carrying the
vertex position, the summed momentum direction and an approximate
covariance. That state is fitted again against the bachelor pion.
"""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import math

from hfvertexer import (
    DCAFitter,
    TrackState,
    make_pion,
    make_proton,
    vertex_to_track_state,
)
from hfvertexer.physics import invariant_mass
from hfvertexer.propagator import propagate_to_x

BZ = 5.0
COV = (
    1e-4,
    0.0, 1e-4,
    0.0, 0.0, 1e-6,
    0.0, 0.0, 0.0, 1e-6,
    0.0, 0.0, 0.0, 0.0, 1e-4,
)


def _track_through(point, phi, tgl, q2pt):
    alpha = math.atan2(point[1], point[0])
    x = math.hypot(point[0], point[1])
    state = TrackState(x=x, alpha=alpha, params=(0.0, point[2], math.sin(phi - alpha), tgl, q2pt), cov=COV)
    return propagate_to_x(state, x + 1.0, BZ)


def main() -> int:
    """Fit the V0, build the Lambda0 composite and fit the cascade vertex."""
    fitter = DCAFitter(BZ, 50.0)

    # 1) Lambda0 -> p pi-
    v0_point = (8.0, 1.5, 0.4)
    proton = _track_through(v0_point, phi=0.2, tgl=0.15, q2pt=0.9)
    pion = _track_through(v0_point, phi=-0.2, tgl=0.05, q2pt=-3.5)
    v0_candidates = fitter.fit_pair(proton, pion)
    if not v0_candidates:
        print("No V0 candidate found")
        return 1
    v0 = v0_candidates[0]
    masses = (make_proton().mass, make_pion().mass)
    print(f"V0 at {tuple(round(v, 4) for v in v0.position)}, m(p pi) = {invariant_mass((v0.track_a, v0.track_b), masses):.4f}")

    # 2) Lambda0 as a track-like input
    lam = vertex_to_track_state(v0, masses)

    # 3) Xi- -> Lambda0 pi- (bachelor emitted 2 cm upstream of the V0)
    p = [a + b for a, b in zip(v0.track_a.pxpypz(), v0.track_b.pxpypz())]
    norm = math.sqrt(sum(v * v for v in p))
    casc_point = tuple(v - 2.0 * c / norm for v, c in zip(v0.position, p))
    bachelor = _track_through(casc_point, phi=0.6, tgl=-0.1, q2pt=-2.5)

    cascades = fitter.fit_pair(lam, bachelor)
    # The neutral composite carries no momentum scale; use the V0 daughters instead.
    for cand in cascades:
        m_casc = invariant_mass((v0.track_a, v0.track_b, cand.track_b), (*masses, make_pion().mass))
        print(
            f"Cascade vertex {tuple(round(v, 4) for v in cand.position)} "
            f"chi2={cand.chi2:.3g} m(p pi pi)={m_casc:.4f}"
        )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
