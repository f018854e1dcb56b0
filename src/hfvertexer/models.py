"""Core data models used by the secondary-vertexing framework.

This module defines:
- the helix track parameterization (`TrackState`) in a local rotated frame
- per-event containers (`TrackRecord`, `EventInput`, `TrackTable`)
- fitter outputs (`VertexCandidate`) and persisted rows
  (`SecondaryVertexRecord`, `Cand2ProngRecord`)
- particle-mass assignment objects (`ParticleHypothesis`, `LorentzVector`)
- fitter configuration (`DCAFitterConfig`).

Units are cm, GeV/c and kG throughout.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Generic, Iterator, Sequence, TypeVar

from .exceptions import ConfigurationError, TrackLookupError

Vector3 = tuple[float, float, float]
Matrix2x2 = tuple[tuple[float, float], tuple[float, float]]
Matrix3x3 = tuple[tuple[float, float, float], tuple[float, float, float], tuple[float, float, float]]
Params5 = tuple[float, float, float, float, float]
Matrix5x5 = tuple[tuple[float, float, float, float, float], ...]

# Curvature (1/cm) per unit q/pT (c/GeV) and field (kG).
B2C = -0.299792458e-3

# Names of the 15 packed covariance entries, lower triangle row by row.
COV_LABELS = (
    "YY", "ZY", "ZZ",
    "SnpY", "SnpZ", "SnpSnp",
    "TglY", "TglZ", "TglSnp", "TglTgl",
    "Q2PtY", "Q2PtZ", "Q2PtSnp", "Q2PtTgl", "Q2PtQ2Pt",
)


def cov_index(i: int, j: int) -> int:
    """Packed position of element `(i, j)` of the symmetric 5x5 covariance."""
    if i < j:
        i, j = j, i
    return i * (i + 1) // 2 + j


def bring_to_pm_pi(angle: float) -> float:
    """Map an angle into `[-pi, pi)`."""
    return (angle + math.pi) % (2.0 * math.pi) - math.pi


@dataclass(frozen=True)
class TrackState:
    """Charged-particle helix state with covariance in a local rotated frame.

    The local frame is rotated by `alpha` around the beam (z) axis. At the
    reference coordinate `x` the state is `(y, z, snp, tgl, q2pt)`:
    lateral offset, longitudinal offset, sine of the local azimuth, tangent of
    the dip angle and signed inverse transverse momentum.
    `cov` holds the 15 packed lower-triangle covariance entries (`COV_LABELS`).
    """

    x: float
    alpha: float
    params: Params5
    cov: tuple[float, ...]

    def __post_init__(self) -> None:
        if len(self.params) != 5:
            raise ValueError("Track parameters must have 5 entries (y, z, snp, tgl, q2pt).")
        if len(self.cov) != 15:
            raise ValueError("Track covariance must have 15 packed entries.")

    @property
    def y(self) -> float:
        return self.params[0]

    @property
    def z(self) -> float:
        return self.params[1]

    @property
    def snp(self) -> float:
        return self.params[2]

    @property
    def tgl(self) -> float:
        return self.params[3]

    @property
    def q2pt(self) -> float:
        return self.params[4]

    @property
    def charge(self) -> int:
        """Sign of `q2pt`; zero for a neutral (straight) state."""
        if self.q2pt > 0.0:
            return 1
        if self.q2pt < 0.0:
            return -1
        return 0

    @property
    def pt(self) -> float:
        """Transverse momentum; infinite for `q2pt == 0`."""
        if self.q2pt == 0.0:
            return math.inf
        return 1.0 / abs(self.q2pt)

    @property
    def p(self) -> float:
        """Momentum magnitude."""
        return self.pt * math.sqrt(1.0 + self.tgl * self.tgl)

    @property
    def eta(self) -> float:
        """Pseudorapidity from the dip angle."""
        return math.asinh(self.tgl)

    @property
    def phi(self) -> float:
        """Global azimuth of the momentum direction in `[0, 2pi)`."""
        return (math.asin(self.snp) + self.alpha) % (2.0 * math.pi)

    def curvature(self, bz: float) -> float:
        """Signed transverse curvature (1/cm) for a field `bz` (kG)."""
        return self.q2pt * bz * B2C

    def xyz(self) -> Vector3:
        """Reference point in the global frame."""
        ca = math.cos(self.alpha)
        sa = math.sin(self.alpha)
        return (
            self.x * ca - self.y * sa,
            self.x * sa + self.y * ca,
            self.z,
        )

    def direction_xy(self) -> tuple[float, float]:
        """Unit transverse direction in the global frame."""
        ca = math.cos(self.alpha)
        sa = math.sin(self.alpha)
        csp = math.sqrt(max((1.0 - self.snp) * (1.0 + self.snp), 0.0))
        return csp * ca - self.snp * sa, self.snp * ca + csp * sa

    def pxpypz(self) -> Vector3:
        """Momentum vector in the global frame."""
        pt = self.pt
        ux, uy = self.direction_xy()
        return pt * ux, pt * uy, pt * self.tgl

    def cov_matrix(self) -> Matrix5x5:
        """Unpack `cov` into a full symmetric 5x5 matrix."""
        return tuple(
            tuple(self.cov[cov_index(i, j)] for j in range(5)) for i in range(5)
        )


@dataclass(frozen=True)
class TrackRecord:
    """One reconstructed track of an event, addressed by its event-local index."""

    index: int
    state: TrackState
    track_id: str = ""


@dataclass(frozen=True)
class EventInput:
    """One event payload: ordered tracks plus the local magnetic field."""

    event_id: str
    tracks: tuple[TrackRecord, ...]
    bz: float | None = None


T = TypeVar("T")


class TrackTable(Generic[T]):
    """Read-only track collection addressed by index.

    `at(index)` is the only lookup; an out-of-range index raises
    `TrackLookupError` instead of returning a neighbouring row.
    """

    def __init__(self, rows: Sequence[T], name: str = "tracks"):
        self._rows = tuple(rows)
        self.name = name

    def at(self, index: int) -> T:
        if not 0 <= index < len(self._rows):
            raise TrackLookupError(index, len(self._rows), self.name)
        return self._rows[index]

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[T]:
        return iter(self._rows)


@dataclass(frozen=True)
class VertexCandidate:
    """One converged closest-approach solution for a track pair.

    `track_a` and `track_b` are the input tracks propagated to the vertex and
    expressed in the common working frame of the fit.
    """

    position: Vector3
    track_a: TrackState
    track_b: TrackState
    chi2: float
    n_iterations: int
    seed_index: int

    @property
    def dca(self) -> float:
        """Distance between the two propagated track points."""
        pa = self.track_a.xyz()
        pb = self.track_b.xyz()
        return math.sqrt(sum((a - b) * (a - b) for a, b in zip(pa, pb, strict=True)))


@dataclass(frozen=True)
class SecondaryVertexRecord:
    """Persisted secondary-vertex row; one per accepted candidate.

    `tracky*` are the daughters' lateral offsets at the vertex. The third
    prong slot is `-1` / `-1.0` for 2-prong vertices.
    """

    posx: float
    posy: float
    posz: float
    index0: int
    index1: int
    tracky0: float
    tracky1: float
    chi2: float
    index2: int = -1
    tracky2: float = -1.0
    candidate_index: int = 0
    event_id: str | None = None


@dataclass(frozen=True)
class Cand2ProngRecord:
    """Two-prong candidate derived from one `SecondaryVertexRecord`."""

    secvtx_index: int
    mass: float
    pt: float
    hypotheses: tuple[str, str]
    event_id: str | None = None


@dataclass(frozen=True)
class ParticleHypothesis:
    """Named particle hypothesis used to derive mass-dependent observables."""

    name: str
    mass: float
    pdg_id: int | None = None


@dataclass(frozen=True)
class LorentzVector:
    """Simple 4-vector with convenience properties and addition."""

    px: float
    py: float
    pz: float
    e: float

    def __add__(self, other: "LorentzVector") -> "LorentzVector":
        return LorentzVector(
            self.px + other.px,
            self.py + other.py,
            self.pz + other.pz,
            self.e + other.e,
        )

    @property
    def p2(self) -> float:
        """Squared 3-momentum magnitude."""
        return self.px * self.px + self.py * self.py + self.pz * self.pz

    @property
    def pt(self) -> float:
        return math.sqrt(self.px * self.px + self.py * self.py)

    @property
    def mass2(self) -> float:
        """Invariant mass squared."""
        return self.e * self.e - self.p2

    @property
    def mass(self) -> float:
        """Invariant mass with signed handling for small negative mass2 values."""
        m2 = self.mass2
        return m2**0.5 if m2 >= 0.0 else -((-m2) ** 0.5)


@dataclass(frozen=True)
class DCAFitterConfig:
    """Settings of the two-track closest-approach fitter."""

    bz: float = 5.0
    max_r: float = 200.0
    max_dz_ini: float = 4.0
    max_chi2: float = 100.0
    min_param_change: float = 1e-3
    max_iterations: int = 20
    max_candidates: int = 2
    use_abs_dca: bool = False

    def __post_init__(self) -> None:
        if self.max_r <= 0.0:
            raise ConfigurationError(f"max_r must be positive, got {self.max_r}.")
        if self.max_dz_ini <= 0.0:
            raise ConfigurationError(f"max_dz_ini must be positive, got {self.max_dz_ini}.")
        if self.max_chi2 <= 0.0:
            raise ConfigurationError(f"max_chi2 must be positive, got {self.max_chi2}.")
        if self.min_param_change <= 0.0:
            raise ConfigurationError(
                f"min_param_change must be positive, got {self.min_param_change}."
            )
        if self.max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be >= 1, got {self.max_iterations}.")
        if self.max_candidates < 1:
            raise ConfigurationError(f"max_candidates must be >= 1, got {self.max_candidates}.")
