"""Interfaces, a RANSAC pipeline, local optimizers and refinement routines for robust model fitting."""

__version__ = "0.1.0"

__all__ = ["bundle_adjustment", "interfaces", "optimizers", "pipeline"]