"""
Density Sampler - 2D importance sampling from discrete density maps

This package provides:
- DensitySampler: piecewise-constant 2D sampler (marginal rows + conditional columns)
- InvalidDensityError: raised by strict construction on unusable input
- utils: parameters, sample-set persistence, density loading and histograms
"""

from .sampler2d import DensitySampler, InvalidDensityError
from . import utils

__all__ = [
    # Sampler
    "DensitySampler",
    "InvalidDensityError",
    # Utilities
    "utils",
]
