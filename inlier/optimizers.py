"""Local optimizers that refine a RANSAC model using its inliers."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Sequence, Tuple, TypeVar

import numpy as np

from inlier.interfaces import Estimator, LocalOptimizer

M = TypeVar("M")
S = TypeVar("S")

ResidualFn = Callable[[np.ndarray, M, int], float]


def _unchanged(model: M, best_score: S, inliers: Sequence[int]) -> Tuple[M, S, List[int]]:
    return model, best_score, list(inliers)


class NoopLocalOptimizer(LocalOptimizer[M, S]):
    """Returns the model, score and inliers unchanged."""

    def run(self, data, inliers, model, best_score):
        return _unchanged(model, best_score, inliers)


@dataclass
class LeastSquaresOptimizer(LocalOptimizer[M, S], Generic[M, S]):
    """Refits the model once to all inliers with non-minimal estimation."""

    estimator: Estimator[M]
    use_inliers: bool = True

    def run(self, data, inliers, model, best_score):
        if not self.use_inliers or len(inliers) < self.estimator.non_minimal_sample_size():
            return _unchanged(model, best_score, inliers)
        refined = self.estimator.estimate_model_nonminimal(data, inliers, None)
        if not refined:
            return _unchanged(model, best_score, inliers)
        return refined[0], best_score, list(inliers)


@dataclass
class IteratedLeastSquaresOptimizer(LocalOptimizer[M, S], Generic[M, S]):
    """Refits the model to the inliers repeatedly, up to ``max_iterations`` times."""

    estimator: Estimator[M]
    max_iterations: int = 5
    use_inliers: bool = True

    def run(self, data, inliers, model, best_score):
        if not self.use_inliers or len(inliers) < self.estimator.non_minimal_sample_size():
            return _unchanged(model, best_score, inliers)
        current_model = model
        current_inliers = list(inliers)
        for _ in range(self.max_iterations):
            refined = self.estimator.estimate_model_nonminimal(data, current_inliers, None)
            if not refined:
                break
            current_model = refined[0]
        return current_model, best_score, current_inliers


@dataclass
class NestedRansacOptimizer(LocalOptimizer[M, S], Generic[M, S]):
    """Repeatedly fits models to random subsets of the inliers.

    Each subset holds ``sample_size_multiplier`` minimal samples' worth of
    points, and always fewer points than there are inliers.
    """

    estimator: Estimator[M]
    max_iterations: int = 50
    sample_size_multiplier: int = 7
    rng: random.Random = field(default_factory=random.Random)

    def run(self, data, inliers, model, best_score):
        minimal = self.estimator.sample_size()
        if len(inliers) < minimal:
            return _unchanged(model, best_score, inliers)

        current_model = model
        current_inliers = list(inliers)
        non_minimal = self.sample_size_multiplier * minimal

        for _ in range(self.max_iterations):
            size = min(max(len(current_inliers) - 1, 0), non_minimal)
            if size < minimal:
                break
            if size == len(current_inliers):
                sample = current_inliers[:size]
            else:
                sample = self.rng.sample(current_inliers, size)
            refined = self.estimator.estimate_model_nonminimal(data, sample, None)
            if not refined:
                continue
            current_model = refined[0]

        return current_model, best_score, current_inliers


@dataclass
class IRLSOptimizer(LocalOptimizer[M, S], Generic[M, S]):
    """Iteratively reweighted least squares with MSAC-style weights."""

    estimator: Estimator[M]
    residual_fn: ResidualFn
    threshold: float
    max_iterations: int = 100
    convergence_threshold: float = 1e-6
    use_inliers: bool = True

    def compute_weights(self, data, model, indices) -> List[float]:
        """Weight ``1 - r^2 / t^2`` for residuals below the threshold, 0 otherwise."""
        thresh_sq = self.threshold * self.threshold
        weights = []
        for idx in indices:
            r_sq = self.residual_fn(data, model, idx) ** 2
            weights.append(1.0 - r_sq / thresh_sq if r_sq < thresh_sq else 0.0)
        return weights

    def run(self, data, inliers, model, best_score):
        if not self.use_inliers or len(inliers) < self.estimator.sample_size():
            return _unchanged(model, best_score, inliers)
        current_model = model
        for _ in range(self.max_iterations):
            weights = self.compute_weights(data, current_model, inliers)
            refined = self.estimator.estimate_model_nonminimal(data, inliers, weights)
            if not refined:
                break
            current_model = refined[0]
        return current_model, best_score, list(inliers)


@dataclass
class CrossValidationOptimizer(LocalOptimizer[M, S], Generic[M, S]):
    """Weights inliers by how well bootstrap models predict them, then refits.

    Each repetition fits a model to a bootstrap sample (drawn with
    replacement) and credits every inlier with ``max(0, 1 - error / threshold)``.
    The averaged credits become the weights of the final non-minimal fit.
    """

    estimator: Estimator[M]
    residual_fn: ResidualFn
    threshold: float
    repetitions: int = 100
    sample_size_multiplier: float = 0.5
    use_inliers: bool = False
    rng: random.Random = field(default_factory=random.Random)

    def __post_init__(self) -> None:
        if self.repetitions < 1:
            raise ValueError("repetitions must be at least 1")

    def run(self, data, inliers, model, best_score):
        count = len(inliers)
        minimal = self.estimator.sample_size()
        if count < minimal:
            return _unchanged(model, best_score, inliers)

        sample_size = int(max(self.sample_size_multiplier * count, float(minimal)))
        accumulated = [0.0] * count

        for _ in range(self.repetitions):
            bootstrap = [inliers[self.rng.randrange(count)] for _ in range(sample_size)]
            models = self.estimator.estimate_model(data, bootstrap)
            if not models:
                continue
            candidate = models[0]
            for i, idx in enumerate(inliers):
                error = self.residual_fn(data, candidate, idx)
                accumulated[i] += max(0.0, 1.0 - error / self.threshold)

        weights = [score / self.repetitions for score in accumulated]
        refined = self.estimator.estimate_model_nonminimal(data, inliers, weights)
        if not refined:
            return _unchanged(model, best_score, inliers)
        return refined[0], best_score, list(inliers)