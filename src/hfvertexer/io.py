"""Input/output helpers for JSON inputs and tabular result export."""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import dataclasses
import json
import logging
from pathlib import Path
from typing import Any, Sequence

from .models import (
    COV_LABELS,
    Cand2ProngRecord,
    EventInput,
    SecondaryVertexRecord,
    TrackRecord,
    TrackState,
    TrackTable,
)
from .physics import is_positive_semidefinite
from .pid import PidMode, PidStatus, TrackSelectorPid
from .selector import PidTrack, XiPiCandidate, XiPiSelection, XiPiSelectorConfig

logger = logging.getLogger(__name__)

# Selector settings under their analysis-configuration names.
_SELECTOR_KEYS: dict[str, str] = {
    "radiusCascMin": "radius_casc_min",
    "radiusV0Min": "radius_v0_min",
    "cosPAV0Min": "cos_pa_v0_min",
    "cosPACascMin": "cos_pa_casc_min",
    "dcaCascDauMax": "dca_casc_dau_max",
    "dcaV0DauMax": "dca_v0_dau_max",
    "dcaBachToPvMin": "dca_bach_to_pv_min",
    "dcaNegToPvMin": "dca_neg_to_pv_min",
    "dcaPosToPvMin": "dca_pos_to_pv_min",
    "v0MassWindow": "v0_mass_window",
    "cascadeMassWindow": "cascade_mass_window",
    "applyTrkSelLf": "apply_trk_sel_lf",
    "invMassCharmBaryonMin": "inv_mass_charm_baryon_min",
    "invMassCharmBaryonMax": "inv_mass_charm_baryon_max",
    "etaTrackCharmBachMax": "eta_track_charm_bach_max",
    "etaTrackLFDauMax": "eta_track_lf_dau_max",
    "ptPiFromCascMin": "pt_pi_from_casc_min",
    "ptPiFromCharmBaryonMin": "pt_pi_from_charm_baryon_min",
    "impactParameterXYPiFromCharmBaryonMin": "impact_parameter_xy_pi_from_charm_baryon_min",
    "impactParameterXYPiFromCharmBaryonMax": "impact_parameter_xy_pi_from_charm_baryon_max",
    "impactParameterZPiFromCharmBaryonMin": "impact_parameter_z_pi_from_charm_baryon_min",
    "impactParameterZPiFromCharmBaryonMax": "impact_parameter_z_pi_from_charm_baryon_max",
    "impactParameterXYCascMin": "impact_parameter_xy_casc_min",
    "impactParameterXYCascMax": "impact_parameter_xy_casc_max",
    "impactParameterZCascMin": "impact_parameter_z_casc_min",
    "impactParameterZCascMax": "impact_parameter_z_casc_max",
    "dcaCharmBaryonDauMax": "dca_charm_baryon_dau_max",
    "nClustersTpcMin": "n_clusters_tpc_min",
    "nTpcCrossedRowsMin": "n_tpc_crossed_rows_min",
    "tpcCrossedRowsOverFindableClustersRatioMin": "tpc_crossed_rows_over_findable_clusters_ratio_min",
    "tpcChi2PerClusterMax": "tpc_chi2_per_cluster_max",
    "nClustersItsMin": "n_clusters_its_min",
    "nClustersItsInnBarrMin": "n_clusters_its_inn_barr_min",
    "itsChi2PerClusterMax": "its_chi2_per_cluster_max",
}

# Per-species PID settings: configuration suffix -> TrackSelectorPid field.
_PID_KEYS: dict[str, str] = {
    "PidTpcMin": "pt_tpc_min",
    "PidTpcMax": "pt_tpc_max",
    "PidTofMin": "pt_tof_min",
    "PidTofMax": "pt_tof_max",
}
_PID_SIGMA_KEYS: dict[str, str] = {
    "nSigmaTpc{s}Max": "n_sigma_tpc",
    "nSigmaTpcCombined{s}Max": "n_sigma_tpc_cond_tof",
    "nSigmaTof{s}Max": "n_sigma_tof",
    "nSigmaTofCombined{s}Max": "n_sigma_tof_cond_tpc",
}


def load_events_json(path: str | Path) -> list[EventInput]:
    """Load multi-event input JSON into `EventInput` objects.

    Expected shape:
    {
      "events": [
        {"event_id": "...", "bz": 5.0,
         "tracks": [{"index": 0, "x": ..., "alpha": ..., "params": [5], "cov": [15]}, ...]},
        ...
      ]
    }
    Track `index` is optional and must equal the position in the list.
    `cov` may also be an object keyed by `COV_LABELS` (e.g. {"YY": ..., "Q2PtQ2Pt": ...}).
    """
    data = _load_json(path)
    events_data = data.get("events")
    if not isinstance(events_data, list):
        raise ValueError("Events JSON must contain a list under key 'events'.")
    out: list[EventInput] = []
    for idx, event in enumerate(events_data):
        if not isinstance(event, dict):
            raise ValueError(f"Event entry at index {idx} must be an object.")
        event_id = str(event.get("event_id", f"evt{idx}"))
        tracks_data = event.get("tracks")
        if not isinstance(tracks_data, list):
            raise ValueError(f"Event '{event_id}' must contain a list under key 'tracks'.")
        tracks = tuple(
            _parse_track_item(item=track_item, idx=tidx, context=f"event '{event_id}'")
            for tidx, track_item in enumerate(tracks_data)
        )
        bz = event.get("bz")
        out.append(
            EventInput(event_id=event_id, tracks=tracks, bz=None if bz is None else float(bz))
        )
    logger.info("Loaded %d events from %s", len(out), path)
    return out


def load_xi_pi_json(
    path: str | Path,
) -> tuple[list[XiPiCandidate], TrackTable[PidTrack], TrackTable[PidTrack]]:
    """Load Xi pi candidates plus the charm-bachelor and LF track tables.

    Expected keys: `candidates`, `tracks` and `lf_tracks`, each a list of
    objects whose keys are the dataclass field names.
    """
    data = _load_json(path)
    sections: dict[str, list[Any]] = {}
    for key in ("candidates", "tracks", "lf_tracks"):
        value = data.get(key)
        if not isinstance(value, list):
            raise ValueError(f"Xi pi JSON must contain a list under key '{key}'.")
        sections[key] = value
    candidates = [
        _build_dataclass(XiPiCandidate, item, f"candidate {idx}")
        for idx, item in enumerate(sections["candidates"])
    ]
    tracks = TrackTable(
        [_build_dataclass(PidTrack, item, f"track {idx}") for idx, item in enumerate(sections["tracks"])],
        name="tracks",
    )
    lf_tracks = TrackTable(
        [_build_dataclass(PidTrack, item, f"LF track {idx}") for idx, item in enumerate(sections["lf_tracks"])],
        name="lf_tracks",
    )
    return candidates, tracks, lf_tracks


def load_selector_config_json(path: str | Path) -> XiPiSelectorConfig:
    """Load an `XiPiSelectorConfig` from analysis-configuration names.

    `usePidTpcOnly` / `usePidTpcTofCombined` select the PID mode and must not
    be equal; per-species PID windows use names such as `ptPiPidTpcMin` or
    `nSigmaTofCombinedPrMax`. Unknown keys are rejected.
    """
    data = _load_json(path)
    kwargs: dict[str, Any] = {}
    pid_fields: dict[str, dict[str, float]] = {"Pi": {}, "Pr": {}}
    known = set(_SELECTOR_KEYS) | {"usePidTpcOnly", "usePidTpcTofCombined"}
    for species in ("Pi", "Pr"):
        for suffix, target in _PID_KEYS.items():
            key = f"pt{species}{suffix}"
            known.add(key)
            if key in data:
                pid_fields[species][target] = float(data[key])
        for template, target in _PID_SIGMA_KEYS.items():
            key = template.format(s=species)
            known.add(key)
            if key in data:
                pid_fields[species][target] = float(data[key])
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown selector settings in {path}: {', '.join(unknown)}")
    for key, target in _SELECTOR_KEYS.items():
        if key in data:
            kwargs[target] = data[key]
    kwargs["pid_mode"] = PidMode.from_flags(
        bool(data.get("usePidTpcOnly", False)),
        bool(data.get("usePidTpcTofCombined", True)),
    )
    kwargs["pion_pid"] = _pid_selector("pi", pid_fields["Pi"])
    kwargs["proton_pid"] = _pid_selector("pr", pid_fields["Pr"])
    return XiPiSelectorConfig(**kwargs)


def write_records_table(
    path: str | Path,
    records: Sequence[SecondaryVertexRecord] | Sequence[Cand2ProngRecord] | Sequence[XiPiSelection],
) -> None:
    """Write vertex, candidate or selection rows into Parquet/CSV/Pickle table."""
    pd = _require_pandas()
    df = pd.DataFrame(_record_rows(records))
    out = Path(path)
    suffix = out.suffix.lower()
    if suffix == ".parquet":
        df.to_parquet(out, index=False)
    elif suffix in (".pkl", ".pickle"):
        df.to_pickle(out)
    elif suffix == ".csv":
        df.to_csv(out, index=False)
    else:
        raise ValueError(
            f"Unsupported output format '{suffix}'. Use .parquet, .csv, or .pkl"
        )
    logger.info("Wrote %d rows to %s", len(df), out)


def _record_rows(records: Sequence[Any]) -> list[dict[str, Any]]:
    """Flatten record objects into DataFrame-ready row dictionaries."""
    rows: list[dict[str, Any]] = []
    for rec in records:
        if isinstance(rec, XiPiSelection):
            row = {k: v for k, v in dataclasses.asdict(rec).items() if k != "cuts"}
            for name, passed in rec.cuts.items():
                row[f"cut_{name}"] = passed
            row["result_selections"] = rec.result_selections
            row["status_pid_lambda"] = rec.status_pid_lambda
            row["status_pid_cascade"] = rec.status_pid_cascade
            row["status_pid_charm_baryon"] = rec.status_pid_charm_baryon
            row["is_selected"] = rec.is_selected
            row = {k: (v.name if isinstance(v, PidStatus) else v) for k, v in row.items()}
        else:
            row = dataclasses.asdict(rec)
            if "hypotheses" in row:
                row["hypotheses"] = ",".join(row["hypotheses"])
        rows.append(row)
    return rows


def _require_pandas():
    """Import pandas lazily and provide a clear installation hint on failure."""
    try:
        import pandas as pd  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "pandas is required to write output tables. Install pandas and pyarrow."
        ) from exc
    return pd


def _pid_selector(species: str, values: dict[str, float]) -> TrackSelectorPid:
    defaults = TrackSelectorPid(species)
    return TrackSelectorPid(
        species=species,
        pt_tpc=(values.get("pt_tpc_min", defaults.pt_tpc[0]), values.get("pt_tpc_max", defaults.pt_tpc[1])),
        n_sigma_tpc=values.get("n_sigma_tpc", defaults.n_sigma_tpc),
        n_sigma_tpc_cond_tof=values.get("n_sigma_tpc_cond_tof", defaults.n_sigma_tpc_cond_tof),
        pt_tof=(values.get("pt_tof_min", defaults.pt_tof[0]), values.get("pt_tof_max", defaults.pt_tof[1])),
        n_sigma_tof=values.get("n_sigma_tof", defaults.n_sigma_tof),
        n_sigma_tof_cond_tpc=values.get("n_sigma_tof_cond_tpc", defaults.n_sigma_tof_cond_tpc),
    )


def _build_dataclass(cls, item: Any, context: str):
    """Build a flat dataclass from a JSON object, rejecting unknown keys."""
    if not isinstance(item, dict):
        raise ValueError(f"Entry for {context} must be an object.")
    names = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(item) - names)
    if unknown:
        raise ValueError(f"Unknown fields for {context}: {', '.join(unknown)}")
    try:
        return cls(**item)
    except TypeError as exc:
        raise ValueError(f"Invalid fields for {context}: {exc}") from exc


def _parse_track_item(item: Any, idx: int, context: str) -> TrackRecord:
    """Parse one track dictionary into a `TrackRecord`."""
    if not isinstance(item, dict):
        raise ValueError(f"Track entry at index {idx} in {context} must be an object.")
    index = int(item.get("index", idx))
    if index != idx:
        raise ValueError(
            f"Track at position {idx} in {context} declares index {index}; "
            "tracks must be listed in index order."
        )
    params = item.get("params")
    if not isinstance(params, list) or len(params) != 5:
        raise ValueError(f"Track {idx} in {context} must define 5 'params'.")
    cov = _parse_cov(item.get("cov"), idx, context)
    state = TrackState(
        x=float(item["x"]),
        alpha=float(item["alpha"]),
        params=tuple(float(v) for v in params),  # type: ignore[arg-type]
        cov=cov,
    )
    if not is_positive_semidefinite(state.cov, tolerance=1e-9):
        logger.warning("Track %d in %s has a covariance that is not positive semi-definite", idx, context)
    return TrackRecord(index=index, state=state, track_id=str(item.get("track_id", f"trk{idx}")))


def _parse_cov(cov: Any, idx: int, context: str) -> tuple[float, ...]:
    """Accept the 15 packed entries as a list or as an object keyed by `COV_LABELS`.

    In the object form, missing entries are zero.
    """
    if isinstance(cov, dict):
        unknown = sorted(set(cov) - set(COV_LABELS))
        if unknown:
            raise ValueError(
                f"Track {idx} in {context} has unknown covariance entries: {', '.join(unknown)}. "
                f"Supported: {', '.join(COV_LABELS)}"
            )
        return tuple(float(cov.get(label, 0.0)) for label in COV_LABELS)
    if not isinstance(cov, list) or len(cov) != len(COV_LABELS):
        raise ValueError(f"Track {idx} in {context} must define 15 packed 'cov' entries.")
    return tuple(float(v) for v in cov)


def _load_json(path: str | Path) -> dict[str, Any]:
    """Read and validate a JSON object document from disk."""
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"JSON document at {path} must be an object.")
    return data
