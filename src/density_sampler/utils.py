# src/density_sampler/utils.py
from __future__ import annotations

import json
import os
import time
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
from numba import njit


@dataclass
class SamplerParams:
    """Run configuration shared by the sampling scripts."""

    num_samples: int = 10_000
    seed: int | None = None
    strict: bool = False
    channel: int = 0
    flip_vertically: bool = False

    @classmethod
    def from_dict(cls, config: Dict[str, Any] | None = None) -> "SamplerParams":
        params = config or {}
        return cls(
            num_samples=int(params.get("num_samples", 10_000)),
            seed=params.get("seed"),
            strict=bool(params.get("strict", False)),
            channel=int(params.get("channel", 0)),
            flip_vertically=bool(params.get("flip_vertically", False)),
        )


@dataclass
class SampleResult:
    """Container for a drawn sample set and the density it came from."""

    points: Optional[np.ndarray] = None
    density: Optional[np.ndarray] = None
    meta: Optional[Dict[str, Any]] = None

    def ensure_meta(self) -> Dict[str, Any]:
        if self.meta is None:
            self.meta = {}
        return self.meta


def make_rng(seed: int | None = None) -> np.random.Generator:
    """Fresh generator to hand to a sampler; equal seeds give equal streams."""
    return np.random.default_rng(seed)


def now_str() -> str:
    return time.strftime("%Y%m%d-%H%M%S")


def density_from_channel(
    pixels, channel: int = 0, flip_vertically: bool = False
) -> np.ndarray:
    """
    Extract a (H, W) float density from an in-memory pixel array.

    Accepts (H, W) or (H, W, C) arrays. With `flip_vertically` the first row
    of the result is the last row of the input, for images stored top-down
    that should be sampled bottom-up.
    """
    arr = np.asarray(pixels)
    if arr.ndim == 3:
        if not 0 <= channel < arr.shape[2]:
            raise ValueError(
                f"Channel {channel} out of range for array with {arr.shape[2]} channels"
            )
        arr = arr[:, :, channel]
    elif arr.ndim != 2:
        raise ValueError(f"Expected a (H, W) or (H, W, C) array, got shape {arr.shape}")
    if flip_vertically:
        arr = arr[::-1]
    return np.ascontiguousarray(arr, dtype=np.float64)


def load_density(path: str | os.PathLike[str], key: str = "density") -> np.ndarray:
    """
    Load a density array from .npy, .npz (under `key`) or a text table.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing density file: {path}")
    suffix = path.suffix.lower()
    if suffix == ".npy":
        return np.load(path)
    if suffix == ".npz":
        with np.load(path) as data:
            if key not in data:
                raise ValueError(f"{path} has no '{key}' array (found {list(data.keys())})")
            return data[key]
    if suffix in {".txt", ".dat"}:
        return np.loadtxt(path, ndmin=2)
    if suffix == ".csv":
        return np.loadtxt(path, delimiter=",", ndmin=2)
    raise ValueError(f"Unsupported density file format: {suffix}")


@njit(cache=True)
def _bin_points(x_coords, y_coords, grid):
    H, W = grid.shape
    for i in range(len(x_coords)):
        px = int(x_coords[i] * W)
        py = int(y_coords[i] * H)
        # x == 1 or y == 1 belongs to the last cell
        if px == W:
            px = W - 1
        if py == H:
            py = H - 1
        if 0 <= px < W and 0 <= py < H:
            grid[py, px] += 1


def empirical_histogram(points: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Count unit-square points per cell of a (height, width) grid.

    Row index follows y, column index follows x, matching the density layout.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    grid = np.zeros((int(height), int(width)), dtype=np.int64)
    _bin_points(
        np.ascontiguousarray(pts[:, 0]), np.ascontiguousarray(pts[:, 1]), grid
    )
    return grid


def save_sample_result(
    path: str | os.PathLike[str], result: SampleResult, *, overwrite: bool = True
) -> None:
    """Serialize a SampleResult to disk."""
    if not overwrite and Path(path).exists():
        raise FileExistsError(f"{path} already exists")
    out_dir = Path(path).parent
    out_dir.mkdir(parents=True, exist_ok=True)
    out: Dict[str, Any] = {}
    if result.points is not None:
        out["points"] = np.asarray(result.points, dtype=np.float64)
    if result.density is not None:
        out["density"] = np.asarray(result.density, dtype=np.float64)
    out["meta"] = dict(result.meta or {})
    np.savez_compressed(path, **out)


def load_sample_result(path: str | os.PathLike[str]) -> SampleResult:
    """
    Load a sample .npz into a SampleResult.
    """
    with np.load(path, allow_pickle=True) as data:
        points = data["points"].astype(float) if "points" in data else None
        density = data["density"].astype(float) if "density" in data else None
        meta: Dict[str, Any] = {}
        if "meta" in data:
            meta_raw = data["meta"]
            try:
                meta = dict(meta_raw.item())
            except (ValueError, TypeError):
                meta = {}
    return SampleResult(points=points, density=density, meta=meta)


def load_params(path: str | os.PathLike[str]) -> Dict[str, Any]:
    """
    Read `SamplerParams` fields from a JSON or TOML file.

    Keys may sit at the top level or under a `sampler` table, so the same
    file can carry settings for other tools. Unknown keys raise ValueError.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    text = path.read_bytes().decode("utf-8")
    if suffix in {".json", ""}:
        config = json.loads(text)
    elif suffix in {".toml", ".tml"}:
        config = tomllib.loads(text)
    else:
        raise ValueError(f"Unsupported parameter file format: {suffix}")

    if isinstance(config, dict) and "sampler" in config:
        config = config["sampler"]
    if not isinstance(config, dict):
        raise ValueError(f"{path}: expected a table of parameters, got {type(config).__name__}")

    known = {f.name for f in fields(SamplerParams)}
    unknown = sorted(set(config) - known)
    if unknown:
        raise ValueError(
            f"{path}: unknown sampler parameters {unknown} (expected some of {sorted(known)})"
        )
    return config
