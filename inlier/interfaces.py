"""Abstract interfaces for the components of a RANSAC pipeline.

Data is a two-dimensional array with one data point per row; samples and
inlier sets are sequences of row indices into it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Generic, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

M = TypeVar("M")
S = TypeVar("S")


class Estimator(ABC, Generic[M]):
    """Generates model hypotheses from samples of the data."""

    @abstractmethod
    def sample_size(self) -> int:
        """Number of points in a minimal sample."""

    def non_minimal_sample_size(self) -> int:
        """Number of points needed for non-minimal fitting; the minimal size by default."""
        return self.sample_size()

    @abstractmethod
    def is_valid_sample(self, data: np.ndarray, sample: Sequence[int]) -> bool:
        """Whether the sample is non-degenerate and usable for estimation."""

    @abstractmethod
    def estimate_model(self, data: np.ndarray, sample: Sequence[int]) -> List[M]:
        """Candidate models from a minimal sample; empty when estimation fails."""

    def estimate_model_nonminimal(
        self,
        data: np.ndarray,
        sample: Sequence[int],
        weights: Optional[Sequence[float]] = None,
    ) -> List[M]:
        """Candidate models fitted to a larger sample, optionally weighted.

        By default the weights are ignored and minimal estimation is used.
        """
        return self.estimate_model(data, sample)

    @abstractmethod
    def is_valid_model(
        self,
        model: M,
        data: np.ndarray,
        sample: Sequence[int],
        threshold: float,
    ) -> bool:
        """Whether a candidate model should be scored."""


class Sampler(ABC):
    """Draws samples of row indices from the data."""

    @abstractmethod
    def sample(self, data: np.ndarray, sample_size: int) -> Optional[List[int]]:
        """Draw ``sample_size`` row indices, or return None when no sample could be drawn."""

    @abstractmethod
    def update(
        self,
        sample: Sequence[int],
        sample_size: int,
        iteration: int,
        score_hint: float,
    ) -> None:
        """Adapt the sampler after an iteration that used ``sample``."""


class Scoring(ABC, Generic[M, S]):
    """Evaluates models and determines their inliers. Higher scores are better."""

    @abstractmethod
    def threshold(self) -> float:
        """Largest residual a point may have to count as an inlier."""

    @abstractmethod
    def score(self, data: np.ndarray, model: M) -> Tuple[S, List[int]]:
        """Return the score of ``model`` and the indices of its inliers."""


class LocalOptimizer(ABC, Generic[M, S]):
    """Refines a model using its inliers."""

    @abstractmethod
    def run(
        self,
        data: np.ndarray,
        inliers: Sequence[int],
        model: M,
        best_score: S,
    ) -> Tuple[M, S, List[int]]:
        """Return the refined model, its score and its inliers."""


class TerminationCriterion(ABC, Generic[S]):
    """Decides when the RANSAC loop may stop."""

    @abstractmethod
    def check(
        self,
        data: np.ndarray,
        best_score: S,
        sample_size: int,
        max_iterations: int,
    ) -> Tuple[bool, int]:
        """Return whether to stop now and the (possibly lowered) iteration budget."""


class InlierSelector(ABC, Generic[M]):
    """Pre-selects the points worth considering when scoring a model."""

    @abstractmethod
    def select(self, data: np.ndarray, model: M) -> List[int]:
        """Candidate point indices; an empty list means all points."""