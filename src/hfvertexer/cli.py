"""Command-line interface for secondary vertexing and Xi pi selection."""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from typing import Sequence

from .exceptions import ConfigurationError
from .io import (
    load_events_json,
    load_selector_config_json,
    load_xi_pi_json,
    write_records_table,
)
from .models import Cand2ProngRecord, DCAFitterConfig, EventInput, TrackTable
from .pid import particle_hypothesis_from_name
from .qa import CounterSink
from .selector import XiPiSelectorConfig, fill_selection_qa, select_xi_pi
from .vertexer import CandidateBuilder2Prong, RecordCollector, Vertexer, track_qa

logger = logging.getLogger("hfvertexer")


def build_parser() -> argparse.ArgumentParser:
    """Define and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="hf-vertexer",
        description="Two-track secondary vertexing and heavy-flavour candidate selection.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v for info, -vv for debug.")
    sub = parser.add_subparsers(dest="command", required=True)

    vtx = sub.add_parser("vertex", help="Fit all track pairs of each event.")
    vtx.add_argument("--events", required=True, help="Input JSON with key 'events'.")
    vtx.add_argument("--out", required=True, help="Output table for vertices (.parquet, .csv, .pkl).")
    vtx.add_argument("--cand-out", default=None, help="Optional output table for 2-prong candidates.")
    defaults = DCAFitterConfig()
    vtx.add_argument("--bz", type=float, default=defaults.bz, help="Field in kG when the event has none.")
    vtx.add_argument("--max-r", type=float, default=defaults.max_r, help="Maximum vertex radius (cm).")
    vtx.add_argument("--max-dz-ini", type=float, default=defaults.max_dz_ini, help="Maximum seed z difference (cm).")
    vtx.add_argument("--max-chi2", type=float, default=defaults.max_chi2, help="Candidate quality threshold.")
    vtx.add_argument("--max-iterations", type=int, default=defaults.max_iterations)
    vtx.add_argument("--min-param-change", type=float, default=defaults.min_param_change, help="Convergence tolerance (cm).")
    vtx.add_argument("--max-candidates", type=int, default=defaults.max_candidates, help="Candidates per pair.")
    vtx.add_argument(
        "--use-abs-dca",
        action="store_true",
        help="Minimise the absolute distance instead of the covariance-weighted one (default: weighted).",
    )
    vtx.add_argument(
        "--task-defaults",
        action="store_true",
        help="Use the analysis-task fitter setup: bz 5 kG, max-r 10 cm, absolute distance. "
        "Overrides --bz, --max-r and --use-abs-dca.",
    )
    vtx.add_argument(
        "--hypotheses",
        default="pi,K",
        help="Comma-separated daughter hypotheses for 2-prong masses (e.g. pi,K).",
    )
    vtx.add_argument("--workers", type=int, default=1, help="Events processed in parallel.")

    sel = sub.add_parser("select-xipi", help="Apply the Xi pi candidate selection.")
    sel.add_argument("--candidates", required=True, help="JSON with 'candidates', 'tracks' and 'lf_tracks'.")
    sel.add_argument("--config", default=None, help="Selector configuration JSON.")
    sel.add_argument("--out", required=True, help="Output table for selection results.")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint; returns 2 on configuration errors."""
    args = build_parser().parse_args(argv)
    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        if args.command == "vertex":
            return run_vertex(args)
        return run_select_xi_pi(args)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 2


def fitter_config_from_args(args: argparse.Namespace) -> DCAFitterConfig:
    """Fitter settings from the `vertex` flags; `--task-defaults` wins over bz, max-r and metric."""
    config = DCAFitterConfig(
        bz=args.bz,
        max_r=args.max_r,
        max_dz_ini=args.max_dz_ini,
        max_chi2=args.max_chi2,
        min_param_change=args.min_param_change,
        max_iterations=args.max_iterations,
        max_candidates=args.max_candidates,
        use_abs_dca=args.use_abs_dca,
    )
    if args.task_defaults:
        config = replace(config, bz=5.0, max_r=10.0, use_abs_dca=True)
    return config


def run_vertex(args: argparse.Namespace) -> int:
    config = fitter_config_from_args(args)
    names = [x.strip() for x in args.hypotheses.split(",") if x.strip()]
    if len(names) != 2:
        raise ConfigurationError(f"--hypotheses needs two names, got '{args.hypotheses}'.")
    hypotheses = (particle_hypothesis_from_name(names[0]), particle_hypothesis_from_name(names[1]))

    events = load_events_json(args.events)
    sink = CounterSink()
    for event in events:
        track_qa((r.state for r in event.tracks), sink)
    collector = RecordCollector()
    records = Vertexer(fitter_config=config).process_events(
        events, max_workers=args.workers, sink=sink, collector=collector
    )
    write_records_table(args.out, records)

    if args.cand_out:
        candidates = _build_candidates(events, collector, hypotheses, config.bz)
        write_records_table(args.cand_out, candidates)
    logger.info("QA counters: %s", sink.counts())
    return 0


def _build_candidates(
    events: Sequence[EventInput],
    collector: RecordCollector,
    hypotheses,
    default_bz: float,
) -> list[Cand2ProngRecord]:
    out: list[Cand2ProngRecord] = []
    for event in events:
        bz = event.bz if event.bz is not None else default_bz
        builder = CandidateBuilder2Prong(hypotheses=hypotheses, bz=bz)
        table = TrackTable([r.state for r in event.tracks], name=f"tracks[{event.event_id}]")
        out.extend(builder.build(collector.records_for(event.event_id), table))
    return out


def run_select_xi_pi(args: argparse.Namespace) -> int:
    config = load_selector_config_json(args.config) if args.config else XiPiSelectorConfig()
    candidates, tracks, lf_tracks = load_xi_pi_json(args.candidates)
    sink = CounterSink()
    selections = []
    for candidate in candidates:
        selection = select_xi_pi(candidate, tracks, lf_tracks, config)
        fill_selection_qa(selection, sink)
        selections.append(selection)
    n_selected = sum(1 for s in selections if s.is_selected)
    logger.info("Selected %d of %d Xi pi candidates", n_selected, len(selections))
    write_records_table(args.out, selections)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
