"""Event-level secondary vertexing and 2-prong candidate building.

`Vertexer` runs the DCA fitter on every unordered track pair of an event and
emits one `SecondaryVertexRecord` per accepted candidate. Events are
independent, so `process_events` fans them out over a thread pool and merges
the rows in a `RecordCollector`. `CandidateBuilder2Prong` turns vertex rows
(or fitted candidates) into invariant-mass records.
"""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from itertools import combinations
from typing import Iterable, Sequence

from .dcafitter import DCAFitter
from .exceptions import DegenerateTrajectoryError
from .models import (
    Cand2ProngRecord,
    DCAFitterConfig,
    EventInput,
    ParticleHypothesis,
    SecondaryVertexRecord,
    TrackRecord,
    TrackState,
    TrackTable,
    VertexCandidate,
)
from .physics import sum_lorentz, track_to_lorentz
from .pid import make_kaon, make_pion
from .propagator import Propagator
from .qa import NullSink, QASink

logger = logging.getLogger(__name__)


class RecordCollector:
    """Append-only, lock-protected store of vertex rows keyed by event id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, list[SecondaryVertexRecord]] = {}

    def extend(self, event_id: str, records: Iterable[SecondaryVertexRecord]) -> None:
        records = list(records)
        with self._lock:
            self._rows.setdefault(event_id, []).extend(records)

    def records_for(self, event_id: str) -> list[SecondaryVertexRecord]:
        with self._lock:
            return list(self._rows.get(event_id, ()))

    def event_ids(self) -> list[str]:
        with self._lock:
            return list(self._rows)

    def all_records(self, order: Sequence[str] | None = None) -> list[SecondaryVertexRecord]:
        """Flatten rows, optionally following the given event order."""
        with self._lock:
            keys = list(order) if order is not None else list(self._rows)
            out: list[SecondaryVertexRecord] = []
            for key in keys:
                out.extend(self._rows.get(key, ()))
            return out

    def __len__(self) -> int:
        with self._lock:
            return sum(len(v) for v in self._rows.values())


@dataclass
class Vertexer:
    """Pairwise secondary-vertex finder over the tracks of an event.

    The field of an event (`EventInput.bz`) overrides `fitter_config.bz`
    when set.
    """

    fitter_config: DCAFitterConfig = field(default_factory=DCAFitterConfig)

    def _fitter_for(self, event: EventInput) -> DCAFitter:
        config = self.fitter_config
        if event.bz is not None and event.bz != config.bz:
            config = replace(config, bz=event.bz)
        return DCAFitter.from_config(config)

    def process_event(
        self,
        event: EventInput,
        sink: QASink | None = None,
    ) -> list[SecondaryVertexRecord]:
        """Fit all pairs `(i < j)` of `event` and return the vertex rows."""
        sink = sink if sink is not None else NullSink()
        fitter = self._fitter_for(event)
        logger.info("Tracks for event %s: %d", event.event_id, len(event.tracks))
        for record in event.tracks:
            sink.fill("hindex_0_coll", record.index)

        out: list[SecondaryVertexRecord] = []
        n_pairs = 0
        for rec0, rec1 in combinations(event.tracks, 2):
            n_pairs += 1
            sink.increment("pairs")
            candidates = fitter.fit_pair(rec0.state, rec1.state)
            if not candidates:
                logger.debug("Pair (%d, %d): no candidate", rec0.index, rec1.index)
                continue
            sink.increment("pairs_with_candidate")
            for icand, candidate in enumerate(candidates):
                logger.debug(
                    "Pair (%d, %d) candidate %d: vertex (%.4f, %.4f, %.4f) chi2=%.4g",
                    rec0.index, rec1.index, icand, *candidate.position, candidate.chi2,
                )
                sink.fill("hvtx_x", candidate.position[0])
                sink.fill("hvtx_y", candidate.position[1])
                sink.fill("hvtx_z", candidate.position[2])
                sink.increment("candidates")
                out.append(_to_record(event.event_id, rec0, rec1, candidate, icand))
        logger.info(
            "Event %s: %d pairs, %d secondary vertices", event.event_id, n_pairs, len(out)
        )
        return out

    def process_events(
        self,
        events: Sequence[EventInput],
        max_workers: int = 1,
        sink: QASink | None = None,
        collector: RecordCollector | None = None,
    ) -> list[SecondaryVertexRecord]:
        """Process independent events, in parallel when `max_workers > 1`.

        Rows are returned grouped by event in input order.
        """
        collector = collector if collector is not None else RecordCollector()

        def _run(event: EventInput) -> None:
            collector.extend(event.event_id, self.process_event(event, sink))

        if len(events) > 1 and max_workers > 1:
            with ThreadPoolExecutor(max_workers=min(max_workers, len(events))) as executor:
                list(executor.map(_run, events))
        else:
            for event in events:
                _run(event)
        return collector.all_records(order=_unique([e.event_id for e in events]))


def _unique(keys: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(keys))


def _to_record(
    event_id: str,
    rec0: TrackRecord,
    rec1: TrackRecord,
    candidate: VertexCandidate,
    candidate_index: int,
) -> SecondaryVertexRecord:
    x, y, z = candidate.position
    return SecondaryVertexRecord(
        posx=x,
        posy=y,
        posz=z,
        index0=rec0.index,
        index1=rec1.index,
        tracky0=candidate.track_a.y,
        tracky1=candidate.track_b.y,
        chi2=candidate.chi2,
        candidate_index=candidate_index,
        event_id=event_id,
    )


def track_qa(tracks: Iterable[TrackState], sink: QASink) -> int:
    """Fill per-track pt and tgl; return the number of tracks seen."""
    n = 0
    for state in tracks:
        sink.fill("hpt_nocuts", state.pt)
        sink.fill("htgl_nocuts", state.tgl)
        n += 1
    logger.debug("Track QA filled for %d tracks", n)
    return n


class CandidateBuilder2Prong:
    """Build invariant-mass records for 2-prong vertices.

    Daughter momenta are taken at the vertex: each track is transported,
    in its own direction frame, to the X of the vertex before the Lorentz sum.
    """

    def __init__(
        self,
        hypotheses: tuple[ParticleHypothesis, ParticleHypothesis] | None = None,
        bz: float = 5.0,
    ):
        self.hypotheses = hypotheses if hypotheses is not None else (make_pion(), make_kaon())
        if len(self.hypotheses) != 2:
            raise ValueError("A 2-prong candidate needs exactly two mass hypotheses.")
        self.propagator = Propagator(bz)

    @property
    def hypothesis_names(self) -> tuple[str, str]:
        return self.hypotheses[0].name, self.hypotheses[1].name

    def build(
        self,
        records: Sequence[SecondaryVertexRecord],
        tracks: TrackTable[TrackState],
    ) -> list[Cand2ProngRecord]:
        """Return one candidate per row whose daughters reach the vertex.

        Track indices are resolved with `tracks.at`, so a stale index raises
        `TrackLookupError`.
        """
        out: list[Cand2ProngRecord] = []
        for irow, row in enumerate(records):
            track0 = tracks.at(row.index0)
            track1 = tracks.at(row.index1)
            vertex = (row.posx, row.posy, row.posz)
            try:
                at_vertex = (
                    self.propagator.propagate_to_point(track0, vertex),
                    self.propagator.propagate_to_point(track1, vertex),
                )
            except DegenerateTrajectoryError as exc:
                logger.debug("Vertex row %d skipped: %s", irow, exc)
                continue
            out.append(self._make(irow, at_vertex, row.event_id))
        logger.info("Built %d 2-prong candidates from %d vertices", len(out), len(records))
        return out

    def build_from_candidates(
        self,
        candidates: Sequence[VertexCandidate],
        event_id: str | None = None,
    ) -> list[Cand2ProngRecord]:
        """Return one candidate per fitted vertex using its propagated tracks."""
        return [
            self._make(i, (cand.track_a, cand.track_b), event_id)
            for i, cand in enumerate(candidates)
        ]

    def _make(
        self,
        index: int,
        daughters: tuple[TrackState, TrackState],
        event_id: str | None,
    ) -> Cand2ProngRecord:
        p4 = sum_lorentz(
            track_to_lorentz(t, h.mass) for t, h in zip(daughters, self.hypotheses, strict=True)
        )
        return Cand2ProngRecord(
            secvtx_index=index,
            mass=p4.mass,
            pt=p4.pt,
            hypotheses=self.hypothesis_names,
            event_id=event_id,
        )
