"""The RANSAC pipeline together with its standard termination and inlier selectors."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from inlier.interfaces import (
    Estimator,
    InlierSelector,
    LocalOptimizer,
    Sampler,
    Scoring,
    TerminationCriterion,
)

M = TypeVar("M")
S = TypeVar("S")

_SAMPLE_ATTEMPTS = 100


@dataclass
class RansacTerminationCriterion(TerminationCriterion[Any]):
    """Lowers the iteration budget to ``log(1 - confidence) / log(1 - w^k)``.

    ``w`` is the inlier ratio of the best score, read from its
    ``inlier_count`` attribute, and ``k`` the minimal sample size. It never
    asks for immediate termination.
    """

    confidence: float

    def check(self, data, best_score, sample_size, max_iterations) -> Tuple[bool, int]:
        n = len(data)
        if n <= 0:
            return False, max_iterations

        inlier_ratio = min(1.0, max(0.0, best_score.inlier_count / n))
        if inlier_ratio <= 0.0 or inlier_ratio >= 1.0:
            return False, max_iterations

        p_good_sample = inlier_ratio**sample_size
        if p_good_sample <= 0.0 or p_good_sample >= 1.0:
            return False, max_iterations

        one_minus_conf = 1.0 - self.confidence
        if not math.isfinite(one_minus_conf) or one_minus_conf <= 0.0:
            return False, max_iterations
        log_one_minus_conf = math.log(one_minus_conf)
        log_one_minus_p = math.log(1.0 - p_good_sample)
        if not math.isfinite(log_one_minus_conf) or not math.isfinite(log_one_minus_p):
            return False, max_iterations

        required = int(max(math.ceil(log_one_minus_conf / log_one_minus_p), 1.0))
        return False, min(required, max_iterations)


class NoopInlierSelector(InlierSelector[Any]):
    """Selects nothing, meaning every point is considered."""

    def select(self, data, model) -> List[int]:
        return []


@dataclass
class SpacePartitioningInlierSelector(InlierSelector[Any]):
    """Buckets points into grid cells along one coordinate.

    Points in cells holding at least ``min_cells`` points are selected; when
    no cell qualifies, every point is selected.
    """

    coord_fn: Callable[[np.ndarray, int], float]
    cell_size: float
    min_cells: int = 1

    def select(self, data, model) -> List[int]:
        n = len(data)
        if n == 0:
            return []

        cells: Dict[int, List[int]] = {}
        for i in range(n):
            cell = math.floor(self.coord_fn(data, i) / self.cell_size)
            cells.setdefault(cell, []).append(i)

        candidates = [
            idx
            for members in cells.values()
            if len(members) >= self.min_cells
            for idx in members
        ]
        return candidates or list(range(n))


@dataclass
class SuperRansac(Generic[M, S]):
    """RANSAC loop: sample, estimate, score, locally optimise, terminate.

    After :meth:`run`, ``best_model``, ``best_score`` and ``best_inliers``
    hold the result (``best_score`` is None when no model was found) and
    ``iteration`` the number of iterations performed.
    """

    estimator: Estimator[M]
    sampler: Sampler
    scoring: Scoring[M, S]
    termination: TerminationCriterion[S]
    max_iterations: int
    min_iterations: int
    local_optimizer: Optional[LocalOptimizer[M, S]] = None
    final_optimizer: Optional[LocalOptimizer[M, S]] = None
    inlier_selector: Optional[InlierSelector[M]] = None

    best_model: Optional[M] = field(default=None, init=False)
    best_inliers: List[int] = field(default_factory=list, init=False)
    best_score: Optional[S] = field(default=None, init=False)
    iteration: int = field(default=0, init=False)

    def _hypothesize(
        self, data, sample_size: int, sample: List[int]
    ) -> Tuple[List[int], List[M]]:
        """Draw samples until one yields models; give up after a fixed number of tries."""
        for _ in range(_SAMPLE_ATTEMPTS):
            drawn = self.sampler.sample(data, sample_size)
            if drawn is None:
                self.sampler.update(sample, sample_size, self.iteration, 0.0)
                continue
            sample = list(drawn)
            if not self.estimator.is_valid_sample(data, sample):
                self.sampler.update(sample, sample_size, self.iteration, 0.0)
                continue
            models = self.estimator.estimate_model(data, sample)
            if not models:
                self.sampler.update(sample, sample_size, self.iteration, 0.0)
                continue
            return sample, list(models)
        return sample, []

    def _refine(self, optimizer: LocalOptimizer[M, S], data) -> None:
        model, score, inliers = optimizer.run(
            data, self.best_inliers, self.best_model, self.best_score
        )
        if score > self.best_score:
            self.best_model = model
            self.best_score = score
            self.best_inliers = list(inliers)

    def run(self, data) -> None:
        """Run the loop on ``data``, one data point per row."""
        sample_size = self.estimator.sample_size()
        sample = [0] * sample_size
        max_iterations = self.max_iterations

        self.best_inliers = []
        self.best_model = None
        self.best_score = None
        self.iteration = 0

        threshold = self.scoring.threshold()

        while self.iteration < max_iterations or self.iteration < self.min_iterations:
            sample, models = self._hypothesize(data, sample_size, sample)
            if not models:
                self.iteration += 1
                continue

            improved = False
            for model in models:
                if not self.estimator.is_valid_model(model, data, sample, threshold):
                    continue
                if self.inlier_selector is not None:
                    self.inlier_selector.select(data, model)
                score, inliers = self.scoring.score(data, model)
                if self.best_score is None or score > self.best_score:
                    self.best_score = score
                    self.best_model = model
                    self.best_inliers = list(inliers)
                    improved = True

            if improved:
                if self.local_optimizer is not None:
                    self._refine(self.local_optimizer, data)
                stop, max_iterations = self.termination.check(
                    data, self.best_score, sample_size, max_iterations
                )
                if stop:
                    break

            self.sampler.update(sample, sample_size, self.iteration, 0.0)
            self.iteration += 1

        if (
            self.final_optimizer is not None
            and self.best_score is not None
            and len(self.best_inliers) > sample_size
        ):
            self._refine(self.final_optimizer, data)