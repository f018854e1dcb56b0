"""Unit tests for event-level vertexing, collectors and candidate building."""

from __future__ import annotations

import math
import threading
import unittest

from hfvertexer import (
    CandidateBuilder2Prong,
    CounterSink,
    DCAFitter,
    DCAFitterConfig,
    EventInput,
    RecordCollector,
    SecondaryVertexRecord,
    TrackLookupError,
    TrackRecord,
    TrackState,
    TrackTable,
    Vertexer,
    make_kaon,
    make_pion,
    make_proton,
    track_qa,
    vertex_to_track_state,
)
from hfvertexer.models import B2C
from hfvertexer.physics import invariant_mass, is_positive_semidefinite
from hfvertexer.propagator import propagate_to_x

BZ = 5.0
DIAG_COV = (
    1e-4,
    0.0, 1e-4,
    0.0, 0.0, 1e-6,
    0.0, 0.0, 0.0, 1e-6,
    0.0, 0.0, 0.0, 0.0, 1e-4,
)
Q2PT_R50 = 0.02 / (BZ * B2C)


def _track_through(point, phi, tgl, q2pt, x_shift):
    """Track through `point` with global azimuth `phi`, referenced outward."""
    alpha = math.atan2(point[1], point[0])
    x = math.hypot(point[0], point[1])
    state = TrackState(
        x=x,
        alpha=alpha,
        params=(0.0, point[2], math.sin(phi - alpha), tgl, q2pt),
        cov=DIAG_COV,
    )
    return propagate_to_x(state, x + x_shift, BZ)


def _crossing_event(event_id: str = "evt0", bz: float | None = BZ) -> EventInput:
    """Two circles of radius 50 crossing at (6, 0, 0) and (34, 0, 0), plus a far track."""
    states = (
        TrackState(x=20.0, alpha=0.0, params=(-2.0, 0.0, 0.0, 0.0, Q2PT_R50), cov=DIAG_COV),
        TrackState(x=20.0, alpha=0.0, params=(2.0, 0.0, 0.0, 0.0, -Q2PT_R50), cov=DIAG_COV),
        TrackState(x=20.0, alpha=0.0, params=(0.0, 80.0, 0.0, 0.0, 1.0), cov=DIAG_COV),
    )
    return EventInput(
        event_id=event_id,
        tracks=tuple(TrackRecord(index=i, state=s) for i, s in enumerate(states)),
        bz=bz,
    )


class TestVertexer(unittest.TestCase):
    """Validate record emission, QA fills and multi-event fan-out."""

    def test_process_event_emits_one_record_per_candidate(self) -> None:
        sink = CounterSink()
        records = Vertexer().process_event(_crossing_event(), sink)

        self.assertEqual(len(records), 2)
        self.assertEqual([(r.index0, r.index1) for r in records], [(0, 1), (0, 1)])
        self.assertEqual([r.candidate_index for r in records], [0, 1])
        self.assertAlmostEqual(records[0].posx, 6.0, places=6)
        self.assertAlmostEqual(records[1].posx, 34.0, places=6)
        for rec in records:
            self.assertEqual(rec.index2, -1)
            self.assertEqual(rec.tracky2, -1.0)
            self.assertEqual(rec.event_id, "evt0")
            self.assertAlmostEqual(rec.tracky0, 0.0, places=6)
            self.assertAlmostEqual(rec.tracky1, 0.0, places=6)

        counts = sink.counts()
        self.assertEqual(counts["pairs"], 3)
        self.assertEqual(counts["pairs_with_candidate"], 1)
        self.assertEqual(counts["candidates"], 2)
        self.assertEqual(len(sink.values("hvtx_x")), 2)
        self.assertEqual(sink.values("hindex_0_coll"), [0.0, 1.0, 2.0])

    def test_tracky_is_lateral_offset_at_vertex(self) -> None:
        event = _crossing_event()
        [rec, _] = Vertexer().process_event(event)
        [cand, _] = DCAFitter.from_config(DCAFitterConfig(bz=BZ)).fit_pair(
            event.tracks[0].state, event.tracks[1].state
        )
        self.assertEqual(rec.tracky0, cand.track_a.y)
        self.assertEqual(rec.tracky1, cand.track_b.y)
        self.assertNotEqual(rec.tracky0, event.tracks[0].state.y)

    def test_event_field_overrides_configured_field(self) -> None:
        vertexer = Vertexer(fitter_config=DCAFitterConfig(bz=0.0))
        self.assertEqual(len(vertexer.process_event(_crossing_event(bz=BZ))), 2)
        # Without the event field the tracks are straight and parallel.
        self.assertEqual(vertexer.process_event(_crossing_event(bz=None)), [])

    def test_process_events_parallel_matches_sequential(self) -> None:
        events = [_crossing_event(f"evt{i}") for i in range(6)]
        vertexer = Vertexer()
        sequential = vertexer.process_events(events, max_workers=1)
        sink = CounterSink()
        collector = RecordCollector()
        parallel = vertexer.process_events(events, max_workers=4, sink=sink, collector=collector)

        self.assertEqual(parallel, sequential)
        self.assertEqual([r.event_id for r in parallel[:2]], ["evt0", "evt0"])
        self.assertEqual(len(collector), 12)
        self.assertEqual(sorted(collector.event_ids()), sorted(e.event_id for e in events))
        self.assertEqual(sink.counts()["candidates"], 12)

    def test_record_collector_concurrent_append(self) -> None:
        collector = RecordCollector()
        row = SecondaryVertexRecord(0.0, 0.0, 0.0, 0, 1, 0.0, 0.0, 0.0)

        def _worker(key: str) -> None:
            for _ in range(200):
                collector.extend(key, [row])

        threads = [threading.Thread(target=_worker, args=(f"e{i % 3}",)) for i in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(collector), 1200)
        self.assertEqual(len(collector.records_for("e0")), 400)
        self.assertEqual(collector.records_for("missing"), [])

    def test_track_qa_fills_pt_and_tgl(self) -> None:
        sink = CounterSink()
        event = _crossing_event()
        n = track_qa((r.state for r in event.tracks), sink)
        self.assertEqual(n, 3)
        self.assertAlmostEqual(sink.values("hpt_nocuts")[2], 1.0, places=12)
        self.assertEqual(sink.values("htgl_nocuts"), [0.0, 0.0, 0.0])


class TestCandidateBuilder(unittest.TestCase):
    """Validate 2-prong masses, index lookups and cascade composites."""

    def test_masses_from_records_and_candidates_agree(self) -> None:
        event = _crossing_event()
        records = Vertexer().process_event(event)
        table = TrackTable([r.state for r in event.tracks])
        builder = CandidateBuilder2Prong(hypotheses=(make_pion(), make_kaon()), bz=BZ)

        from_records = builder.build(records, table)
        candidates = DCAFitter(BZ, 200.0).fit_pair(event.tracks[0].state, event.tracks[1].state)
        from_candidates = builder.build_from_candidates(candidates, event_id="evt0")

        self.assertEqual(len(from_records), 2)
        for a, b in zip(from_records, from_candidates, strict=True):
            self.assertAlmostEqual(a.mass, b.mass, places=9)
            self.assertEqual(a.hypotheses, ("pi", "K"))

        # At (6, 0) the momenta point along (0.96, -/+0.28) with pT = 0.075 GeV/c.
        pt = abs(1.0 / Q2PT_R50)
        p_a = (0.96 * pt, -0.28 * pt, 0.0)
        p_b = (0.96 * pt, 0.28 * pt, 0.0)
        m_pi = make_pion().mass
        m_k = make_kaon().mass
        e = math.sqrt(sum(v * v for v in p_a) + m_pi**2) + math.sqrt(sum(v * v for v in p_b) + m_k**2)
        px = p_a[0] + p_b[0]
        expected = math.sqrt(e * e - px * px)
        self.assertAlmostEqual(from_records[0].mass, expected, places=9)
        self.assertAlmostEqual(from_records[0].pt, 2 * 0.96 * pt, places=9)

    def test_wide_opening_angle_near_beam_line_builds_candidate(self) -> None:
        """A daughter moving away from the vertex azimuth still reaches the vertex."""
        phi_b = math.radians(100.0)
        ref_b = (1.0 + 2.0 * math.cos(phi_b), 2.0 * math.sin(phi_b))
        alpha_b = math.atan2(ref_b[1], ref_b[0])
        states = (
            TrackState(x=3.0, alpha=0.0, params=(0.0, 0.0, 0.0, 0.0, 1.0), cov=DIAG_COV),
            TrackState(
                x=math.hypot(*ref_b),
                alpha=alpha_b,
                params=(0.0, 0.0, math.sin(phi_b - alpha_b), 0.0, -1.0),
                cov=DIAG_COV,
            ),
        )
        event = EventInput(
            event_id="wide",
            tracks=tuple(TrackRecord(index=i, state=s) for i, s in enumerate(states)),
            bz=0.0,
        )
        records = Vertexer().process_event(event)
        self.assertEqual(len(records), 1)
        self.assertAlmostEqual(records[0].posx, 1.0, places=5)
        self.assertAlmostEqual(records[0].posy, 0.0, places=5)

        cands = CandidateBuilder2Prong(hypotheses=(make_pion(), make_kaon()), bz=0.0).build(
            records, TrackTable(list(states))
        )
        self.assertEqual(len(cands), 1)
        m_pi = make_pion().mass
        m_k = make_kaon().mass
        e = math.sqrt(1.0 + m_pi**2) + math.sqrt(1.0 + m_k**2)
        px = 1.0 + math.cos(phi_b)
        py = math.sin(phi_b)
        self.assertAlmostEqual(cands[0].mass, math.sqrt(e * e - px * px - py * py), places=6)
        self.assertAlmostEqual(cands[0].pt, 2.0 * math.cos(phi_b / 2.0), places=6)

    def test_out_of_range_index_raises(self) -> None:
        event = _crossing_event()
        table = TrackTable([r.state for r in event.tracks[:2]])
        bad = SecondaryVertexRecord(6.0, 0.0, 0.0, 0, 5, 0.0, 0.0, 0.0)
        with self.assertRaises(TrackLookupError) as ctx:
            CandidateBuilder2Prong(bz=BZ).build([bad], table)
        self.assertIsInstance(ctx.exception, IndexError)
        self.assertEqual(ctx.exception.index, 5)
        self.assertEqual(ctx.exception.size, 2)

    def test_cascade_from_v0_composite(self) -> None:
        """A Lambda0 built from a fitted V0 is refitted with a bachelor pion."""
        v0_point = (6.0, 1.0, 0.5)
        proton = _track_through(v0_point, phi=0.15, tgl=0.2, q2pt=0.8, x_shift=2.0)
        pion = _track_through(v0_point, phi=-0.25, tgl=0.1, q2pt=-3.0, x_shift=1.5)
        fitter = DCAFitter(BZ, 20.0, use_abs_dca=True)
        v0 = fitter.fit_pair(proton, pion)[0]
        for got, expected in zip(v0.position, v0_point, strict=True):
            self.assertAlmostEqual(got, expected, delta=1e-4)

        masses = (make_proton().mass, make_pion().mass)
        lam = vertex_to_track_state(v0, masses)
        self.assertEqual(lam.charge, 0)
        self.assertAlmostEqual(lam.snp, 0.0, places=12)
        self.assertTrue(is_positive_semidefinite(lam.cov))
        self.assertAlmostEqual(
            invariant_mass((v0.track_a, v0.track_b), masses),
            CandidateBuilder2Prong((make_proton(), make_pion()), bz=BZ).build_from_candidates([v0])[0].mass,
            places=12,
        )

        # The cascade decays 3 cm upstream of the V0 along the Lambda0 line.
        p = [a + b for a, b in zip(v0.track_a.pxpypz(), v0.track_b.pxpypz())]
        norm = math.sqrt(sum(v * v for v in p))
        casc_point = tuple(v - 3.0 * c / norm for v, c in zip(v0.position, p))
        bachelor = _track_through(casc_point, phi=0.7, tgl=-0.15, q2pt=-2.0, x_shift=1.0)

        cascades = fitter.fit_pair(lam, bachelor)
        self.assertGreaterEqual(len(cascades), 1)
        best = min(math.dist(c.position, casc_point) for c in cascades)
        self.assertLess(best, 1e-3)


if __name__ == "__main__":
    unittest.main()
