"""Particle hypotheses and detector PID selection.

Named hypothesis builders can be used directly for mass assignment instead
of raw numeric masses. `TrackSelectorPid` turns detector n-sigma values into
a `PidStatus` for one species, and `PidMode` picks which detectors decide.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Protocol

from .exceptions import ConfigurationError
from .models import ParticleHypothesis

MASS_LAMBDA0 = 1.115683
MASS_XI_MINUS = 1.32171

_PION = ParticleHypothesis(name="pi", mass=0.13957039, pdg_id=211)
_KAON = ParticleHypothesis(name="K", mass=0.493677, pdg_id=321)
_PROTON = ParticleHypothesis(name="p", mass=0.93827208816, pdg_id=2212)
_MUON = ParticleHypothesis(name="mu", mass=0.1056583755, pdg_id=13)
_ELECTRON = ParticleHypothesis(name="e", mass=0.00051099895, pdg_id=11)
_LAMBDA = ParticleHypothesis(name="Lambda0", mass=MASS_LAMBDA0, pdg_id=3122)
_XI = ParticleHypothesis(name="Xi-", mass=MASS_XI_MINUS, pdg_id=3312)

_NAME_TO_HYPOTHESIS: dict[str, ParticleHypothesis] = {
    "pi": _PION,
    "pion": _PION,
    "k": _KAON,
    "kaon": _KAON,
    "p": _PROTON,
    "proton": _PROTON,
    "mu": _MUON,
    "muon": _MUON,
    "e": _ELECTRON,
    "electron": _ELECTRON,
    "lambda": _LAMBDA,
    "lambda0": _LAMBDA,
    "xi": _XI,
    "xi-": _XI,
}


def make_pion() -> ParticleHypothesis:
    """Return the standard charged-pion mass hypothesis."""
    return _PION


def make_kaon() -> ParticleHypothesis:
    """Return the standard charged-kaon mass hypothesis."""
    return _KAON


def make_proton() -> ParticleHypothesis:
    """Return the proton mass hypothesis."""
    return _PROTON


def make_muon() -> ParticleHypothesis:
    return _MUON


def make_electron() -> ParticleHypothesis:
    return _ELECTRON


def make_lambda() -> ParticleHypothesis:
    """Return the Lambda0 hypothesis (V0 used as a cascade daughter)."""
    return _LAMBDA


def make_xi() -> ParticleHypothesis:
    return _XI


def particle_hypothesis_from_name(name: str) -> ParticleHypothesis:
    """Resolve a short particle name (e.g. `pi`, `kaon`) into a hypothesis."""
    key = name.strip().lower()
    try:
        return _NAME_TO_HYPOTHESIS[key]
    except KeyError as exc:
        supported = ", ".join(sorted(_NAME_TO_HYPOTHESIS))
        raise ValueError(
            f"Unknown particle hypothesis name '{name}'. Supported names: {supported}"
        ) from exc


class PidStatus(enum.IntEnum):
    NOT_APPLICABLE = 0
    REJECTED = 1
    CONDITIONAL = 2
    ACCEPTED = 3


class PidMode(enum.Enum):
    """Which detectors decide the PID verdict."""

    TPC_ONLY = "tpc_only"
    TPC_OR_TOF = "tpc_or_tof"

    @classmethod
    def from_flags(cls, use_tpc_only: bool, use_tpc_tof_combined: bool) -> "PidMode":
        """Map the legacy pair of booleans onto a mode.

        Exactly one flag must be set; anything else is a configuration error.
        """
        if bool(use_tpc_only) == bool(use_tpc_tof_combined):
            raise ConfigurationError(
                "Check the PID settings: usePidTpcOnly and usePidTpcTofCombined can't have "
                f"the same value (both {bool(use_tpc_only)})."
            )
        return cls.TPC_ONLY if use_tpc_only else cls.TPC_OR_TOF


class PidInfo(Protocol):
    """Detector information a track must expose for PID selection."""

    pt: float
    has_tpc: bool
    has_tof: bool
    tpc_n_sigma_pi: float
    tpc_n_sigma_pr: float
    tof_n_sigma_pi: float
    tof_n_sigma_pr: float


# n-sigma windows wider than this on both sides disable the cut.
_DISABLED_N_SIGMA = 999.0


@dataclass(frozen=True)
class TrackSelectorPid:
    """Symmetric n-sigma PID selection for one species (`"pi"` or `"pr"`).

    A conditional window only applies when it has non-zero width; a track in
    the conditional window of one detector is accepted if it is conditional
    in the other as well.
    """

    species: str
    pt_tpc: tuple[float, float] = (-1.0, 9999.9)
    n_sigma_tpc: float = 3.0
    n_sigma_tpc_cond_tof: float = 0.0
    pt_tof: tuple[float, float] = (-1.0, 9999.9)
    n_sigma_tof: float = 3.0
    n_sigma_tof_cond_tpc: float = 0.0

    def __post_init__(self) -> None:
        if self.species not in ("pi", "pr"):
            raise ConfigurationError(f"Unsupported PID species '{self.species}', use 'pi' or 'pr'.")
        for label, (lo, hi) in (("pt_tpc", self.pt_tpc), ("pt_tof", self.pt_tof)):
            if lo > hi:
                raise ConfigurationError(f"{label} range is inverted: ({lo}, {hi}).")

    def status_tpc(self, track: PidInfo) -> PidStatus:
        if not track.has_tpc or not _in_range(track.pt, self.pt_tpc):
            return PidStatus.NOT_APPLICABLE
        n_sigma = getattr(track, f"tpc_n_sigma_{self.species}")
        return _status(n_sigma, self.n_sigma_tpc, self.n_sigma_tpc_cond_tof)

    def status_tof(self, track: PidInfo) -> PidStatus:
        if not track.has_tof or not _in_range(track.pt, self.pt_tof):
            return PidStatus.NOT_APPLICABLE
        n_sigma = getattr(track, f"tof_n_sigma_{self.species}")
        return _status(n_sigma, self.n_sigma_tof, self.n_sigma_tof_cond_tpc)

    def status_tpc_or_tof(self, track: PidInfo) -> PidStatus:
        tpc = self.status_tpc(track)
        tof = self.status_tof(track)
        if PidStatus.ACCEPTED in (tpc, tof):
            return PidStatus.ACCEPTED
        if tpc == PidStatus.CONDITIONAL and tof == PidStatus.CONDITIONAL:
            return PidStatus.ACCEPTED
        if PidStatus.REJECTED in (tpc, tof):
            return PidStatus.REJECTED
        return PidStatus.NOT_APPLICABLE

    def status(self, track: PidInfo, mode: PidMode) -> PidStatus:
        if mode is PidMode.TPC_ONLY:
            return self.status_tpc(track)
        return self.status_tpc_or_tof(track)


def _in_range(value: float, bounds: tuple[float, float]) -> bool:
    return bounds[0] <= value <= bounds[1]


def _status(n_sigma: float, n_sigma_max: float, n_sigma_cond: float) -> PidStatus:
    if n_sigma_max > _DISABLED_N_SIGMA or abs(n_sigma) <= n_sigma_max:
        return PidStatus.ACCEPTED
    if n_sigma_cond > 0.0 and abs(n_sigma) <= n_sigma_cond:
        return PidStatus.CONDITIONAL
    return PidStatus.REJECTED
