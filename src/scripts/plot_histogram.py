"""
Histogram Plotter for Density Samples.

Bins a saved sample set into the grid of its source density and shows the
two side by side.
"""
import argparse
import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")
import matplotlib.colors as mcolors
import matplotlib.pyplot as plt
import numpy as np

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from src.density_sampler import utils


def render_histogram(result, output_path, mode="linear", cmap="Greys"):
    if result.points is None:
        raise ValueError("No sample points found.")
    if result.density is None:
        raise ValueError("No source density stored with the samples.")

    density = np.clip(np.nan_to_num(result.density), 0.0, None)
    height, width = density.shape
    counts = utils.empirical_histogram(result.points, width, height)
    print(f"Binned {len(result.points):,} samples onto {width}x{height} grid")

    # Compare as probabilities so both panels share a scale
    total = density.sum()
    expected = density / total if total > 0 else np.full_like(density, 1.0 / density.size)
    observed = counts / max(counts.sum(), 1)

    vmax = max(expected.max(), observed.max())
    if mode == "log":
        positive = np.concatenate([expected[expected > 0], observed[observed > 0]])
        vmin = positive.min() if positive.size else 1e-12
        norm = mcolors.LogNorm(vmin=vmin, vmax=vmax)
    elif mode == "linear":
        norm = mcolors.Normalize(vmin=0, vmax=vmax)
    else:
        raise ValueError(f"Unknown mode: {mode}")

    fig, axes = plt.subplots(1, 2, figsize=(12, 6))
    for ax, grid, title in (
        (axes[0], expected, "Input density"),
        (axes[1], observed, "Sample histogram"),
    ):
        masked = np.ma.masked_where(grid == 0, grid)
        im = ax.imshow(
            masked,
            cmap=cmap,
            norm=norm,
            interpolation="nearest",
            origin="lower",  # row 0 at y = 0
        )
        ax.set_title(title)
        ax.axis("off")
    fig.colorbar(im, ax=axes, label="Probability per cell")

    if output_path:
        plt.savefig(output_path, dpi=150, bbox_inches="tight")
        print(f"Saved to {output_path}")

    plt.close(fig)
    return counts


def main(argv=None):
    parser = argparse.ArgumentParser(description="Density vs. sample histogram plotter")
    parser.add_argument("file", help="Input .npz file from run_sampler.py")
    parser.add_argument("--mode", choices=["log", "linear"], default="linear", help="Color scale")
    parser.add_argument("--cmap", default="Greys", help="Matplotlib colormap (default: Greys)")
    parser.add_argument("--out", default=None, help="Output filename")

    args = parser.parse_args(argv)

    result = utils.load_sample_result(args.file)

    if args.out is None:
        input_path = Path(args.file)
        out_path = input_path.parent / (input_path.stem + f"_histogram_{args.mode}.png")
    else:
        out_path = args.out

    render_histogram(result, out_path, args.mode, args.cmap)
    return 0


if __name__ == "__main__":
    sys.exit(main())
