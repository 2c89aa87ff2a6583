#!/usr/bin/env python3
"""
Density Sampling Runner

Builds a DensitySampler from a density array (or a uniform grid), draws a
batch of samples, reports throughput and saves the points to .npz.
"""

import argparse
import logging
import sys
import time
from pathlib import Path

import numpy as np

# Add project root to path
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from src.density_sampler import DensitySampler, InvalidDensityError, utils


def parse_grid_size(text: str) -> tuple:
    """Parse 'WxH' into (width, height)."""
    try:
        w, h = text.lower().split("x")
        return int(w), int(h)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected WxH, got '{text}'")


def build_density(args, params: utils.SamplerParams) -> np.ndarray:
    """Density grid of shape (H, W) from the command-line source."""
    if args.uniform is not None:
        width, height = args.uniform
        return np.ones((height, width), dtype=np.float64)
    raw = utils.load_density(args.density)
    return utils.density_from_channel(
        raw, channel=params.channel, flip_vertically=params.flip_vertically
    )


def run_sampling(density: np.ndarray, params: utils.SamplerParams) -> tuple:
    """Build the sampler and draw `params.num_samples` points."""
    sampler = DensitySampler.from_array(
        density, seed=params.seed, strict=params.strict
    )
    start_time = time.perf_counter()
    points = sampler.sample_n(params.num_samples)
    elapsed = time.perf_counter() - start_time
    meta = {
        "width": sampler.width,
        "height": sampler.height,
        "num_samples": params.num_samples,
        "seed": params.seed,
        "elapsed": elapsed,
    }
    return points, meta


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Draw samples from a 2D density map",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--density",
        type=str,
        help="Density file (.npy, .npz with a 'density' array, .txt or .csv)",
    )
    source.add_argument(
        "--uniform",
        type=parse_grid_size,
        help="Use a uniform WxH grid instead of a file",
    )
    parser.add_argument(
        "--params",
        type=str,
        default=None,
        help="JSON/TOML file with default parameters",
    )
    parser.add_argument("--N", type=int, default=None, help="Number of samples")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument(
        "--channel",
        type=int,
        default=None,
        help="Channel to use for (H, W, C) densities (default: 0)",
    )
    parser.add_argument(
        "--flip-vertically",
        action="store_true",
        default=None,
        help="Reverse row order before sampling",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        default=None,
        help="Fail on invalid density instead of falling back to uniform",
    )
    parser.add_argument(
        "--out",
        type=str,
        default=None,
        help="Output .npz file path (auto-generated if not provided)",
    )

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    config = utils.load_params(args.params) if args.params else {}
    for key, value in (
        ("num_samples", args.N),
        ("seed", args.seed),
        ("channel", args.channel),
        ("flip_vertically", args.flip_vertically),
        ("strict", args.strict),
    ):
        if value is not None:
            config[key] = value
    params = utils.SamplerParams.from_dict(config)

    density = build_density(args, params)
    try:
        points, meta = run_sampling(density, params)
    except InvalidDensityError as e:
        print(f"Error: invalid density: {e}")
        return 1

    elapsed = meta["elapsed"]
    rate = params.num_samples / elapsed if elapsed > 0 else float("inf")
    print(
        f"Computed {params.num_samples} samples in {elapsed:.4f} seconds "
        f"({rate:.0f} samples/sec)."
    )

    if args.out is None:
        output_dir = Path("results")
        output_dir.mkdir(exist_ok=True)
        args.out = str(
            output_dir
            / f"samples_{meta['width']}x{meta['height']}_N{params.num_samples}_{utils.now_str()}.npz"
        )

    utils.save_sample_result(
        args.out,
        utils.SampleResult(points=points, density=density, meta=meta),
    )
    print(f"Output saved to: {args.out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
