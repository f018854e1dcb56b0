"""Selection of Xic0/Omegac0 -> Xi pi candidates.

`select_xi_pi` is a pure function of one candidate, its daughter tracks and
the configuration; it returns every verdict in an `XiPiSelection`. QA
counters are filled separately by `fill_selection_qa`.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field

from .exceptions import ConfigurationError
from .models import TrackTable
from .pid import MASS_LAMBDA0, MASS_XI_MINUS, PidMode, PidStatus, TrackSelectorPid
from .qa import QASink


class PidInfoStored(enum.IntEnum):
    """Bit positions of the per-daughter detector flags."""

    PI_FROM_LAM = 0
    PR_FROM_LAM = 1
    PI_FROM_CASC = 2
    PI_FROM_CHARM = 3


@dataclass(frozen=True)
class PidTrack:
    """Track fields used by the selection: PID, TPC and ITS quality."""

    pt: float
    has_tpc: bool = True
    has_tof: bool = False
    tpc_n_sigma_pi: float = 0.0
    tpc_n_sigma_pr: float = 0.0
    tof_n_sigma_pi: float = 0.0
    tof_n_sigma_pr: float = 0.0
    tpc_n_cls_found: int = 0
    tpc_n_cls_crossed_rows: int = 0
    tpc_crossed_rows_over_findable_cls: float = 0.0
    tpc_chi2_n_cl: float = 0.0
    its_n_cls: int = 0
    its_n_cls_inner_barrel: int = 0
    its_chi2_n_cl: float = 0.0


@dataclass(frozen=True)
class XiPiCandidate:
    """Reconstructed charm-baryon candidate with its V0 and cascade fields.

    Track ids refer to the LF track table, except
    `bachelor_from_charm_baryon_id` which refers to the charm-bachelor table.
    """

    pos_track_id: int
    neg_track_id: int
    bachelor_id: int
    bachelor_from_charm_baryon_id: int
    sign_decay: int
    eta_v0_pos_dau: float
    eta_v0_neg_dau: float
    eta_bach_from_casc: float
    eta_bach_from_charm_baryon: float
    x_decay_vtx_cascade: float
    y_decay_vtx_cascade: float
    x_decay_vtx_v0: float
    y_decay_vtx_v0: float
    cos_pa_casc: float
    cos_pa_v0: float
    dca_casc_dau: float
    dca_v0_dau: float
    dca_charm_baryon_dau: float
    dca_xy_to_pv_v0_dau0: float
    dca_xy_to_pv_v0_dau1: float
    dca_xy_to_pv_casc_dau: float
    impact_par_bach_from_charm_baryon_xy: float
    impact_par_bach_from_charm_baryon_z: float
    impact_par_casc_xy: float
    impact_par_casc_z: float
    px_bach_from_casc: float
    py_bach_from_casc: float
    px_bach_from_charm_baryon: float
    py_bach_from_charm_baryon: float
    inv_mass_lambda: float
    inv_mass_cascade: float
    inv_mass_charm_baryon: float


@dataclass(frozen=True)
class XiPiSelectorConfig:
    """Thresholds of the Xi pi selection. Lengths in cm, momenta in GeV/c."""

    # LF selections
    radius_casc_min: float = 0.6
    radius_v0_min: float = 1.2
    cos_pa_v0_min: float = 0.97
    cos_pa_casc_min: float = 0.97
    dca_casc_dau_max: float = 1.0
    dca_v0_dau_max: float = 1.0
    dca_bach_to_pv_min: float = 0.04
    dca_neg_to_pv_min: float = 0.06
    dca_pos_to_pv_min: float = 0.06
    v0_mass_window: float = 0.01
    cascade_mass_window: float = 0.01
    apply_trk_sel_lf: bool = True

    inv_mass_charm_baryon_min: float = 2.0
    inv_mass_charm_baryon_max: float = 3.1

    # kinematics
    eta_track_charm_bach_max: float = 0.8
    eta_track_lf_dau_max: float = 1.0
    pt_pi_from_casc_min: float = 0.15
    pt_pi_from_charm_baryon_min: float = 0.2

    impact_parameter_xy_pi_from_charm_baryon_min: float = 0.0
    impact_parameter_xy_pi_from_charm_baryon_max: float = 10.0
    impact_parameter_z_pi_from_charm_baryon_min: float = 0.0
    impact_parameter_z_pi_from_charm_baryon_max: float = 10.0
    impact_parameter_xy_casc_min: float = 0.0
    impact_parameter_xy_casc_max: float = 10.0
    impact_parameter_z_casc_min: float = 0.0
    impact_parameter_z_casc_max: float = 10.0

    dca_charm_baryon_dau_max: float = 2.0

    # PID
    pid_mode: PidMode = PidMode.TPC_OR_TOF
    pion_pid: TrackSelectorPid = field(default_factory=lambda: TrackSelectorPid("pi"))
    proton_pid: TrackSelectorPid = field(default_factory=lambda: TrackSelectorPid("pr"))

    # detector track quality
    n_clusters_tpc_min: int = 70
    n_tpc_crossed_rows_min: int = 70
    tpc_crossed_rows_over_findable_clusters_ratio_min: float = 0.8
    tpc_chi2_per_cluster_max: float = 4.0
    n_clusters_its_min: int = 3
    n_clusters_its_inn_barr_min: int = 1
    its_chi2_per_cluster_max: float = 36.0

    def __post_init__(self) -> None:
        if not isinstance(self.pid_mode, PidMode):
            raise ConfigurationError(f"pid_mode must be a PidMode, got {self.pid_mode!r}.")
        if self.pion_pid.species != "pi" or self.proton_pid.species != "pr":
            raise ConfigurationError("pion_pid/proton_pid must select species 'pi' and 'pr'.")
        if self.inv_mass_charm_baryon_min > self.inv_mass_charm_baryon_max:
            raise ConfigurationError(
                "inv_mass_charm_baryon_min must not exceed inv_mass_charm_baryon_max "
                f"({self.inv_mass_charm_baryon_min} > {self.inv_mass_charm_baryon_max})."
            )


@dataclass(frozen=True)
class XiPiSelection:
    """Named verdicts of one candidate.

    `cuts` maps each topological, kinematic and track-quality cut to its
    outcome; `result_selections` is their conjunction.
    """

    cuts: dict[str, bool]
    sign_decay: int
    status_pid_pr_from_lam: PidStatus
    status_pid_pi_from_lam: PidStatus
    status_pid_pi_from_casc: PidStatus
    status_pid_pi_from_charm_baryon: PidStatus
    status_inv_mass_lambda: bool
    status_inv_mass_cascade: bool
    status_inv_mass_charm_baryon: bool
    inv_mass_charm_baryon: float
    info_tpc_stored: int
    info_tof_stored: int
    tpc_n_sigma_pi_from_charm_baryon: float
    tpc_n_sigma_pi_from_casc: float
    tpc_n_sigma_pi_from_lambda: float
    tpc_n_sigma_pr_from_lambda: float
    tof_n_sigma_pi_from_charm_baryon: float
    tof_n_sigma_pi_from_casc: float
    tof_n_sigma_pi_from_lambda: float
    tof_n_sigma_pr_from_lambda: float

    @property
    def result_selections(self) -> bool:
        return all(self.cuts.values())

    @property
    def status_pid_lambda(self) -> bool:
        return (
            self.status_pid_pr_from_lam == PidStatus.ACCEPTED
            and self.status_pid_pi_from_lam == PidStatus.ACCEPTED
        )

    @property
    def status_pid_cascade(self) -> bool:
        return self.status_pid_lambda and self.status_pid_pi_from_casc == PidStatus.ACCEPTED

    @property
    def status_pid_charm_baryon(self) -> bool:
        return (
            self.status_pid_cascade
            and self.status_pid_pi_from_charm_baryon == PidStatus.ACCEPTED
        )

    @property
    def status_check_level(self) -> int:
        """Number of consecutive stages passed (0-6) after the topological cuts."""
        if not self.result_selections:
            return 0
        stages = (
            self.status_pid_lambda,
            self.status_pid_cascade,
            self.status_pid_charm_baryon,
            self.status_inv_mass_lambda,
            self.status_inv_mass_cascade,
            self.status_inv_mass_charm_baryon,
        )
        level = 0
        for passed in stages:
            if not passed:
                break
            level += 1
        return level

    @property
    def is_selected(self) -> bool:
        return self.status_check_level == 6


def is_selected_track_tpc_quality(track: PidTrack, config: XiPiSelectorConfig) -> bool:
    return (
        track.tpc_n_cls_found >= config.n_clusters_tpc_min
        and track.tpc_n_cls_crossed_rows >= config.n_tpc_crossed_rows_min
        and track.tpc_crossed_rows_over_findable_cls
        >= config.tpc_crossed_rows_over_findable_clusters_ratio_min
        and track.tpc_chi2_n_cl <= config.tpc_chi2_per_cluster_max
    )


def is_selected_track_its_quality(track: PidTrack, config: XiPiSelectorConfig) -> bool:
    return (
        track.its_n_cls >= config.n_clusters_its_min
        and track.its_chi2_n_cl <= config.its_chi2_per_cluster_max
        and track.its_n_cls_inner_barrel >= config.n_clusters_its_inn_barr_min
    )


def _outside(value: float, lo: float, hi: float) -> bool:
    a = abs(value)
    return a < lo or a > hi


def select_xi_pi(
    candidate: XiPiCandidate,
    tracks: TrackTable[PidTrack],
    lf_tracks: TrackTable[PidTrack],
    config: XiPiSelectorConfig,
) -> XiPiSelection:
    """Evaluate every selection stage of one Xi pi candidate.

    V0 and cascade daughters are looked up in `lf_tracks`, the charm
    bachelor in `tracks`; unknown ids raise `TrackLookupError`. For
    `sign_decay > 0` (anti-particle decay) the positive V0 daughter is the
    pion and the negative one the proton.
    """
    cfg = config
    c = candidate
    track_v0_pos = lf_tracks.at(c.pos_track_id)
    track_v0_neg = lf_tracks.at(c.neg_track_id)
    track_pi_from_casc = lf_tracks.at(c.bachelor_id)
    track_pi_from_charm = tracks.at(c.bachelor_from_charm_baryon_id)
    if c.sign_decay > 0:
        track_pi_from_lam, track_pr_from_lam = track_v0_pos, track_v0_neg
    else:
        track_pi_from_lam, track_pr_from_lam = track_v0_neg, track_v0_pos

    pt_pi_from_casc = math.hypot(c.px_bach_from_casc, c.py_bach_from_casc)
    pt_pi_from_charm = math.hypot(c.px_bach_from_charm_baryon, c.py_bach_from_charm_baryon)

    cuts: dict[str, bool] = {
        "eta_pos_v0_dau": abs(c.eta_v0_pos_dau) <= cfg.eta_track_lf_dau_max,
        "eta_neg_v0_dau": abs(c.eta_v0_neg_dau) <= cfg.eta_track_lf_dau_max,
        "eta_pi_from_casc": abs(c.eta_bach_from_casc) <= cfg.eta_track_lf_dau_max,
        "eta_pi_from_charm": abs(c.eta_bach_from_charm_baryon) <= cfg.eta_track_charm_bach_max,
        "rad_casc": math.hypot(c.x_decay_vtx_cascade, c.y_decay_vtx_cascade) >= cfg.radius_casc_min,
        "rad_v0": math.hypot(c.x_decay_vtx_v0, c.y_decay_vtx_v0) >= cfg.radius_v0_min,
        "cos_pa_casc": c.cos_pa_casc >= cfg.cos_pa_casc_min,
        "cos_pa_v0": c.cos_pa_v0 >= cfg.cos_pa_v0_min,
        "dca_casc_dau": c.dca_casc_dau <= cfg.dca_casc_dau_max,
        "dca_v0_dau": c.dca_v0_dau <= cfg.dca_v0_dau_max,
        "dca_charm_dau": c.dca_charm_baryon_dau <= cfg.dca_charm_baryon_dau_max,
        "dca_xy_to_pv_v0_daughters": (
            abs(c.dca_xy_to_pv_v0_dau0) >= cfg.dca_pos_to_pv_min
            and abs(c.dca_xy_to_pv_v0_dau1) >= cfg.dca_neg_to_pv_min
        ),
        "dca_xy_to_pv_pi_from_casc": abs(c.dca_xy_to_pv_casc_dau) >= cfg.dca_bach_to_pv_min,
        "dca_xy_prim_pi": not _outside(
            c.impact_par_bach_from_charm_baryon_xy,
            cfg.impact_parameter_xy_pi_from_charm_baryon_min,
            cfg.impact_parameter_xy_pi_from_charm_baryon_max,
        ),
        "dca_z_prim_pi": not _outside(
            c.impact_par_bach_from_charm_baryon_z,
            cfg.impact_parameter_z_pi_from_charm_baryon_min,
            cfg.impact_parameter_z_pi_from_charm_baryon_max,
        ),
        "dca_xy_casc": not _outside(
            c.impact_par_casc_xy, cfg.impact_parameter_xy_casc_min, cfg.impact_parameter_xy_casc_max
        ),
        "dca_z_casc": not _outside(
            c.impact_par_casc_z, cfg.impact_parameter_z_casc_min, cfg.impact_parameter_z_casc_max
        ),
        "pt_pi_from_casc": pt_pi_from_casc >= cfg.pt_pi_from_casc_min,
        "pt_pi_from_charm": pt_pi_from_charm >= cfg.pt_pi_from_charm_baryon_min,
    }
    if cfg.apply_trk_sel_lf:
        cuts["tpc_quality_pi_from_lam"] = is_selected_track_tpc_quality(track_pi_from_lam, cfg)
        cuts["tpc_quality_pr_from_lam"] = is_selected_track_tpc_quality(track_pr_from_lam, cfg)
        cuts["tpc_quality_pi_from_casc"] = is_selected_track_tpc_quality(track_pi_from_casc, cfg)
    cuts["tpc_quality_pi_from_charm"] = is_selected_track_tpc_quality(track_pi_from_charm, cfg)
    cuts["its_quality_pi_from_charm"] = is_selected_track_its_quality(track_pi_from_charm, cfg)

    ordered = (
        (PidInfoStored.PI_FROM_LAM, track_pi_from_lam),
        (PidInfoStored.PR_FROM_LAM, track_pr_from_lam),
        (PidInfoStored.PI_FROM_CASC, track_pi_from_casc),
        (PidInfoStored.PI_FROM_CHARM, track_pi_from_charm),
    )
    info_tpc = 0
    info_tof = 0
    for bit, trk in ordered:
        if trk.has_tpc:
            info_tpc |= 1 << bit
        if trk.has_tof:
            info_tof |= 1 << bit

    mode = cfg.pid_mode
    return XiPiSelection(
        cuts=cuts,
        sign_decay=c.sign_decay,
        status_pid_pr_from_lam=cfg.proton_pid.status(track_pr_from_lam, mode),
        status_pid_pi_from_lam=cfg.pion_pid.status(track_pi_from_lam, mode),
        status_pid_pi_from_casc=cfg.pion_pid.status(track_pi_from_casc, mode),
        status_pid_pi_from_charm_baryon=cfg.pion_pid.status(track_pi_from_charm, mode),
        status_inv_mass_lambda=abs(c.inv_mass_lambda - MASS_LAMBDA0) < cfg.v0_mass_window,
        status_inv_mass_cascade=abs(c.inv_mass_cascade - MASS_XI_MINUS) < cfg.cascade_mass_window,
        status_inv_mass_charm_baryon=(
            cfg.inv_mass_charm_baryon_min <= c.inv_mass_charm_baryon <= cfg.inv_mass_charm_baryon_max
        ),
        inv_mass_charm_baryon=c.inv_mass_charm_baryon,
        info_tpc_stored=info_tpc,
        info_tof_stored=info_tof,
        tpc_n_sigma_pi_from_charm_baryon=track_pi_from_charm.tpc_n_sigma_pi,
        tpc_n_sigma_pi_from_casc=track_pi_from_casc.tpc_n_sigma_pi,
        tpc_n_sigma_pi_from_lambda=track_pi_from_lam.tpc_n_sigma_pi,
        tpc_n_sigma_pr_from_lambda=track_pr_from_lam.tpc_n_sigma_pr,
        tof_n_sigma_pi_from_charm_baryon=track_pi_from_charm.tof_n_sigma_pi,
        tof_n_sigma_pi_from_casc=track_pi_from_casc.tof_n_sigma_pi,
        tof_n_sigma_pi_from_lambda=track_pi_from_lam.tof_n_sigma_pi,
        tof_n_sigma_pr_from_lambda=track_pr_from_lam.tof_n_sigma_pr,
    )


_PID_QA_STAGES = (
    "pid_lambda",
    "pid_cascade",
    "pid_charm_baryon",
    "inv_mass_lambda",
    "inv_mass_cascade",
    "inv_mass_charm_baryon",
)


def fill_selection_qa(selection: XiPiSelection, sink: QASink) -> None:
    """Map one selection result onto `hSel*` style counters.

    Each cut gets a `<name>:0` (failed) or `<name>:1` (passed) counter.
    """
    if selection.sign_decay > 0:
        sink.increment("sign_decay:1")
    elif selection.sign_decay < 0:
        sink.increment("sign_decay:0")
    for name, passed in selection.cuts.items():
        sink.increment(f"{name}:{int(passed)}")
    sink.increment(f"mass_lambda:{int(selection.status_inv_mass_lambda)}")
    sink.increment(f"mass_cascade:{int(selection.status_inv_mass_cascade)}")
    sink.increment(f"mass_charm_baryon:{int(selection.status_inv_mass_charm_baryon)}")
    for level in range(selection.status_check_level):
        sink.increment(f"status_check:{level}")
    if selection.result_selections:
        flags = (
            selection.status_pid_lambda,
            selection.status_pid_cascade,
            selection.status_pid_charm_baryon,
            selection.status_inv_mass_lambda,
            selection.status_inv_mass_cascade,
            selection.status_inv_mass_charm_baryon,
        )
        for stage, passed in zip(_PID_QA_STAGES, flags, strict=True):
            sink.increment(f"sel_pid_{stage}:{int(passed)}")
    if selection.is_selected:
        sink.fill("hInvMassCharmBaryon", selection.inv_mass_charm_baryon)
