"""Physics/math helpers: kinematics and small dense matrix algebra."""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import math
from typing import Iterable, Sequence

from .models import LorentzVector, Matrix2x2, Matrix3x3, TrackState, Vector3, cov_index

IDENTITY_3X3: Matrix3x3 = ((1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.0, 0.0, 1.0))


def track_to_lorentz(track: TrackState, mass: float) -> LorentzVector:
    """Convert a track state plus mass hypothesis into a Lorentz 4-vector."""
    px, py, pz = track.pxpypz()
    energy = (px * px + py * py + pz * pz + mass * mass) ** 0.5
    return LorentzVector(px=px, py=py, pz=pz, e=energy)


def sum_lorentz(vectors: Iterable[LorentzVector]) -> LorentzVector:
    """Sum an iterable of Lorentz vectors."""
    total = LorentzVector(0.0, 0.0, 0.0, 0.0)
    for vec in vectors:
        total = total + vec
    return total


def invariant_mass(tracks: Sequence[TrackState], masses: Sequence[float]) -> float:
    """Invariant mass of a set of tracks under per-track mass hypotheses."""
    if len(tracks) != len(masses):
        raise ValueError("Mass list length must match track multiplicity.")
    return sum_lorentz(
        track_to_lorentz(t, m) for t, m in zip(tracks, masses, strict=True)
    ).mass


def invert_2x2(mat: Matrix2x2) -> Matrix2x2 | None:
    """Invert a 2x2 matrix. Return `None` if singular."""
    a, b = mat[0]
    c, d = mat[1]
    det = a * d - b * c
    if abs(det) < 1e-18:
        return None
    inv_det = 1.0 / det
    return ((d * inv_det, -b * inv_det), (-c * inv_det, a * inv_det))


def invert_3x3(a: Sequence[Sequence[float]]) -> Matrix3x3 | None:
    """Invert 3x3 matrix by Gaussian elimination with pivoting."""
    scale = max(abs(v) for row in a for v in row)
    if scale == 0.0:
        return None
    m = [[v / scale for v in row] + [1.0 if i == j else 0.0 for j in range(3)] for i, row in enumerate(a)]
    n = 3
    for col in range(n):
        pivot = max(range(col, n), key=lambda r: abs(m[r][col]))
        if abs(m[pivot][col]) < 1e-14:
            return None
        if pivot != col:
            m[col], m[pivot] = m[pivot], m[col]
        p = m[col][col]
        for j in range(col, 2 * n):
            m[col][j] /= p
        for r in range(n):
            if r == col:
                continue
            factor = m[r][col]
            for j in range(col, 2 * n):
                m[r][j] -= factor * m[col][j]
    return (
        (m[0][3] / scale, m[0][4] / scale, m[0][5] / scale),
        (m[1][3] / scale, m[1][4] / scale, m[1][5] / scale),
        (m[2][3] / scale, m[2][4] / scale, m[2][5] / scale),
    )


def add_3x3(a: Matrix3x3, b: Matrix3x3) -> Matrix3x3:
    """Element-wise sum of two 3x3 matrices."""
    return tuple(
        tuple(a[i][j] + b[i][j] for j in range(3)) for i in range(3)
    )  # type: ignore[return-value]


def matvec_3x3(a: Matrix3x3, v: Vector3) -> Vector3:
    return (
        a[0][0] * v[0] + a[0][1] * v[1] + a[0][2] * v[2],
        a[1][0] * v[0] + a[1][1] * v[1] + a[1][2] * v[2],
        a[2][0] * v[0] + a[2][1] * v[1] + a[2][2] * v[2],
    )


def quadratic_form_3(v: Vector3, metric: Matrix3x3) -> float:
    """Return `v^T M v`."""
    return dot3(v, matvec_3x3(metric, v))


def congruence_sym5(jacobian: Sequence[Sequence[float]], cov: Sequence[float]) -> tuple[float, ...]:
    """Return packed `F C F^T` for a 5x5 `F` and packed symmetric `C`."""
    full = [[cov[cov_index(i, j)] for j in range(5)] for i in range(5)]
    # FC first, then (FC) F^T restricted to the lower triangle.
    fc = [
        [sum(jacobian[i][k] * full[k][j] for k in range(5)) for j in range(5)]
        for i in range(5)
    ]
    out: list[float] = []
    for i in range(5):
        for j in range(i + 1):
            out.append(sum(fc[i][k] * jacobian[j][k] for k in range(5)))
    return tuple(out)


def is_positive_semidefinite(cov: Sequence[float], tolerance: float = 1e-12) -> bool:
    """Check a packed symmetric 5x5 matrix with an LDL^T decomposition.

    Pivots are compared against `tolerance` scaled by the largest diagonal
    entry, so tiny negative round-off does not fail the check.
    """
    a = [[cov[cov_index(i, j)] for j in range(5)] for i in range(5)]
    scale = max(max(a[i][i] for i in range(5)), 0.0)
    if scale == 0.0:
        return all(abs(v) <= tolerance for v in cov)
    eps = tolerance * scale
    d = [0.0] * 5
    lower = [[0.0] * 5 for _ in range(5)]
    for j in range(5):
        d[j] = a[j][j] - sum(lower[j][k] * lower[j][k] * d[k] for k in range(j))
        if d[j] < -eps:
            return False
        lower[j][j] = 1.0
        for i in range(j + 1, 5):
            value = a[i][j] - sum(lower[i][k] * lower[j][k] * d[k] for k in range(j))
            if d[j] <= eps:
                # Zero pivot: the column must vanish as well.
                if abs(value) > math.sqrt(eps) * math.sqrt(max(a[i][i], 0.0)) + eps:
                    return False
                lower[i][j] = 0.0
            else:
                lower[i][j] = value / d[j]
    return True


def dot3(a: Vector3, b: Vector3) -> float:
    """3D dot product."""
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]


def sub3(a: Vector3, b: Vector3) -> Vector3:
    return a[0] - b[0], a[1] - b[1], a[2] - b[2]


def transverse_radius(xyz: Sequence[float]) -> float:
    return math.hypot(xyz[0], xyz[1])
