"""End-to-end tests of the hf-vertexer command line."""

from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

import pandas as pd

from hfvertexer.cli import build_parser, fitter_config_from_args, main
from hfvertexer.models import B2C

DIAG_COV = [1e-4, 0.0, 1e-4, 0.0, 0.0, 1e-6, 0.0, 0.0, 0.0, 1e-6, 0.0, 0.0, 0.0, 0.0, 1e-4]
Q2PT_R50 = 0.02 / (5.0 * B2C)


def _events_payload() -> dict:
    tracks = [
        {"index": 0, "x": 20.0, "alpha": 0.0, "params": [-2.0, 0.0, 0.0, 0.0, Q2PT_R50], "cov": DIAG_COV},
        {"index": 1, "x": 20.0, "alpha": 0.0, "params": [2.0, 0.0, 0.0, 0.0, -Q2PT_R50], "cov": DIAG_COV},
    ]
    return {
        "events": [
            {"event_id": "evtA", "bz": 5.0, "tracks": tracks},
            {"event_id": "evtB", "bz": 5.0, "tracks": tracks},
        ]
    }


class TestCLI(unittest.TestCase):
    """Run both subcommands against temporary inputs."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write(self, name: str, payload: dict) -> str:
        path = self.tmpdir / name
        path.write_text(json.dumps(payload), encoding="utf-8")
        return str(path)

    def test_parser_defaults(self) -> None:
        args = build_parser().parse_args(["vertex", "--events", "in.json", "--out", "out.csv"])
        self.assertEqual(args.max_r, 200.0)
        self.assertEqual(args.max_candidates, 2)
        self.assertFalse(args.use_abs_dca)
        self.assertFalse(args.task_defaults)
        self.assertEqual(args.workers, 1)

    def test_vertex_writes_vertices_and_candidates(self) -> None:
        events = self._write("events.json", _events_payload())
        out = self.tmpdir / "vertices.csv"
        cand_out = self.tmpdir / "cands.csv"
        code = main([
            "vertex", "--events", events, "--out", str(out), "--cand-out", str(cand_out),
            "--workers", "2", "--hypotheses", "pi,p",
        ])
        self.assertEqual(code, 0)

        vertices = pd.read_csv(out)
        self.assertEqual(len(vertices), 4)
        self.assertEqual(vertices["event_id"].tolist(), ["evtA", "evtA", "evtB", "evtB"])
        self.assertAlmostEqual(vertices["posx"].iloc[1], 34.0, places=5)

        cands = pd.read_csv(cand_out)
        self.assertEqual(len(cands), 4)
        self.assertEqual(set(cands["hypotheses"]), {"pi,p"})

    def test_task_defaults_flag(self) -> None:
        args = build_parser().parse_args([
            "vertex", "--events", "in.json", "--out", "out.csv", "--task-defaults", "--max-r", "50",
        ])
        config = fitter_config_from_args(args)
        self.assertEqual((config.bz, config.max_r, config.use_abs_dca), (5.0, 10.0, True))

        events = self._write("events.json", _events_payload())
        out = self.tmpdir / "vertices.csv"
        code = main(["vertex", "--events", events, "--out", str(out), "--task-defaults"])
        self.assertEqual(code, 0)
        # Only the crossing at x = 6 lies inside 10 cm.
        vertices = pd.read_csv(out)
        self.assertEqual(len(vertices), 2)
        for posx in vertices["posx"]:
            self.assertAlmostEqual(posx, 6.0, places=5)

    def test_vertex_rejects_wrong_hypothesis_count(self) -> None:
        events = self._write("events.json", _events_payload())
        code = main([
            "vertex", "--events", events, "--out", str(self.tmpdir / "v.csv"), "--hypotheses", "pi",
        ])
        self.assertEqual(code, 2)

    def test_select_xipi_conflicting_pid_flags_exit_code(self) -> None:
        config = self._write("sel.json", {"usePidTpcOnly": False, "usePidTpcTofCombined": False})
        candidates = self._write("xipi.json", {"candidates": [], "tracks": [], "lf_tracks": []})
        code = main([
            "select-xipi", "--candidates", candidates, "--config", config,
            "--out", str(self.tmpdir / "sel.csv"),
        ])
        self.assertEqual(code, 2)
        self.assertFalse((self.tmpdir / "sel.csv").exists())


if __name__ == "__main__":
    unittest.main()
