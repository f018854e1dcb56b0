"""Utility script to inspect/plot vertex and candidate tables."""

from __future__ import annotations

import argparse
from pathlib import Path


def _require_pandas():
    """Import pandas with an actionable error if not installed."""
    try:
        import pandas as pd  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "pandas is required. Install with: pip install pandas pyarrow"
        ) from exc
    return pd


def load_table(path: str):
    """Load table data from parquet/csv/pickle into a pandas DataFrame."""
    pd = _require_pandas()
    p = Path(path)
    suffix = p.suffix.lower()
    if suffix == ".parquet":
        return pd.read_parquet(p)
    if suffix == ".csv":
        return pd.read_csv(p)
    if suffix in (".pkl", ".pickle"):
        return pd.read_pickle(p)
    raise ValueError("Supported input formats: .parquet, .csv, .pkl")


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint for interactive inspection and optional quick plotting."""
    parser = argparse.ArgumentParser(description="Inspect hf-vertexer output table.")
    parser.add_argument("--input", required=True, help="Path to .parquet/.csv/.pkl output.")
    parser.add_argument("--head", type=int, default=10, help="Rows to print.")
    parser.add_argument(
        "--plot",
        action="store_true",
        help="Create a quick transverse vertex map (posx vs posy) or mass histogram (png).",
    )
    args = parser.parse_args(argv)

    df = load_table(args.input)
    print(df.head(args.head).to_string(index=False))
    print(f"\nRows={len(df)}  Columns={len(df.columns)}")

    if args.plot:
        try:
            import matplotlib.pyplot as plt  # type: ignore
        except ModuleNotFoundError:
            print("matplotlib not installed; skipping plot.")
            return 0
        out = Path(args.input).with_suffix(".png")
        if {"posx", "posy"} <= set(df.columns):
            ax = df.plot.scatter(x="posx", y="posy", alpha=0.6)
            ax.set_title("secondary vertices (xy)")
        elif "mass" in df.columns:
            ax = df["mass"].plot.hist(bins=50)
            ax.set_title("candidate mass")
        else:
            print("No posx/posy or mass column; skipping plot.")
            return 0
        plt.tight_layout()
        plt.savefig(out, dpi=120)
        print(f"Saved plot: {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
