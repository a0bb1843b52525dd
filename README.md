# inlier

Building blocks for robust model fitting with RANSAC-style pipelines,
built on NumPy.

## Contents

- **`inlier.interfaces`**: abstract base classes for the parts of a pipeline.
  - `Estimator` produces model hypotheses from samples. You implement
    `sample_size`, `is_valid_sample`, `estimate_model` and `is_valid_model`.
    There are two defaults you can override. `non_minimal_sample_size`
    returns `sample_size()`. `estimate_model_nonminimal` ignores the weights
    and calls `estimate_model`.
  - `Sampler.sample(data, sample_size)` returns a list of row indices, or
    `None` when no sample could be drawn. `Sampler.update(...)` is called
    after each attempt.
  - `Scoring.threshold()` returns the inlier threshold.
    `Scoring.score(data, model)` returns a pair `(score, inliers)`. Higher
    scores are better, and scores are compared with `>`.
  - `LocalOptimizer.run(data, inliers, model, best_score)` returns
    `(model, score, inliers)`.
  - `TerminationCriterion.check(data, best_score, sample_size, max_iterations)`
    returns `(stop_now, new_max_iterations)`.
  - `InlierSelector.select(data, model)` returns candidate indices. An empty
    list means all points.
- **`inlier.pipeline`**:
  - `SuperRansac` runs the loop: sample, estimate, validate, score, locally
    optimise on improvement, update the termination budget, and run a final
    optimisation at the end.
  - `RansacTerminationCriterion(confidence)` lowers the iteration budget to
    `ceil(log(1 - confidence) / log(1 - w^k))`. Here `w` is
    `best_score.inlier_count / len(data)` and `k` is the sample size.
  - `NoopInlierSelector` selects nothing, which means all points.
  - `SpacePartitioningInlierSelector(coord_fn, cell_size, min_cells=1)`
    buckets points by one coordinate into grid cells.
- **`inlier.optimizers`**:
  - `NoopLocalOptimizer`
  - `LeastSquaresOptimizer`
  - `IteratedLeastSquaresOptimizer`
  - `NestedRansacOptimizer`
  - `IRLSOptimizer` uses MSAC weights `1 - r²/t²`.
  - `CrossValidationOptimizer` uses bootstrap-averaged weights. It raises
    `ValueError` for `repetitions < 1`.

  `IRLSOptimizer` and `CrossValidationOptimizer` take a
  `residual_fn(data, model, index)`. All of these optimisers return the
  score they were given unchanged.
- **`inlier.bundle_adjustment`**:
  - `sampson_error` and `reprojection_error` compute residuals.
  - `rotation_from_axis_angle` converts an axis-angle vector to a rotation
    matrix.
  - `FactorizedFundamentalMatrix` is a rank-2 fundamental matrix stored as
    two quaternions and `sigma`.
  - `FundamentalCostFunction` and `AbsolutePoseCostFunction` compute a cost
    and its forward-difference gradient.
  - `refine_fundamental` and `refine_absolute_pose` refine a model by
    gradient descent.

## Installation

```
pip install .
```

With the test dependencies:

```
pip install ".[test]"
```

## Fitting a line

The package does not ship concrete estimators, samplers or scoring
strategies, so you write your own. A complete line-fitting pipeline:

```python
import random
from dataclasses import dataclass

import numpy as np

from inlier.interfaces import Estimator, Sampler, Scoring
from inlier.pipeline import RansacTerminationCriterion, SuperRansac


class LineEstimator(Estimator):
    def sample_size(self):
        return 2

    def is_valid_sample(self, data, sample):
        a, b = data[sample[0]], data[sample[1]]
        return np.hypot(*(a - b)) > 1e-6

    def estimate_model(self, data, sample):
        (x1, y1), (x2, y2) = data[sample[0]], data[sample[1]]
        a, b = y2 - y1, -(x2 - x1)
        c = (x2 - x1) * y1 - (y2 - y1) * x1
        norm = np.hypot(a, b)
        return [] if norm < 1e-10 else [np.array([a, b, c]) / norm]

    def is_valid_model(self, model, data, sample, threshold):
        return True


class UniformSampler(Sampler):
    def __init__(self, seed=None):
        self.rng = random.Random(seed)

    def sample(self, data, sample_size):
        if sample_size > len(data):
            return None
        return self.rng.sample(range(len(data)), sample_size)

    def update(self, sample, sample_size, iteration, score_hint):
        pass


@dataclass(order=True)
class Score:
    inlier_count: int


class LineScoring(Scoring):
    def __init__(self, threshold):
        self._threshold = threshold

    def threshold(self):
        return self._threshold

    def score(self, data, model):
        a, b, c = model
        residuals = np.abs(data @ np.array([a, b]) + c)
        inliers = np.flatnonzero(residuals <= self._threshold).tolist()
        return Score(len(inliers)), inliers


points = np.array([[x, 2.0 * x + 1.0] for x in np.linspace(-5, 5, 40)])
ransac = SuperRansac(
    estimator=LineEstimator(),
    sampler=UniformSampler(seed=0),
    scoring=LineScoring(0.5),
    termination=RansacTerminationCriterion(confidence=0.99),
    max_iterations=1000,
    min_iterations=10,
)
ransac.run(points)
print(ransac.best_model, ransac.best_score, len(ransac.best_inliers), ransac.iteration)
```

After `run`, the pipeline object holds the results:

- `best_model` is the best model found.
- `best_score` is its score, or `None` when no model was found.
- `best_inliers` lists the inlier indices.
- `iteration` is the number of iterations performed.

Each iteration tries up to 100 samples before it gives up on that
iteration. `RansacTerminationCriterion` reads the `inlier_count` attribute
of the score, which is why `Score` above has one.

You can also pass `local_optimizer`, `final_optimizer` and
`inlier_selector`. The pipeline adopts an optimiser's result only when the
returned score is strictly greater than the current best. The optimisers
in `inlier.optimizers` return the score unchanged, so their refinements
are kept only when you use your own optimiser that rescores its result.
The pipeline calls the inlier selector, but its selection does not change
how models are scored.

## Residuals and refinement

```python
import numpy as np
from inlier.bundle_adjustment import reprojection_error, sampson_error

reprojection_error(np.eye(3), np.zeros(3), np.array([0.2, 0.4]), np.array([1.0, 2.0, 5.0]))
# 0.0
```

`reprojection_error` returns `1e10` for points at or behind the camera
plane. `sampson_error` returns `0.0` when the constraint's Jacobian
vanishes.

The two refinement functions are:

- `refine_fundamental(x1, x2, f, weights, max_iterations)` returns the
  refined 3x3 matrix.
- `refine_absolute_pose(points_2d, points_3d, r, t, weights, max_iterations)`
  returns `(rotation, translation)`.

Both run gradient descent with a fixed step of 0.01. They stop when the
gradient norm falls below `1e-6`. `refine_fundamental` raises `ValueError`
when the point sets differ in length or have fewer than 8 points.
`refine_absolute_pose` raises `ValueError` when they differ in length or
have fewer than 3. `weights` may be `None`, and points beyond the given
weights get weight 1.

## What is not included

- There are no ready-made estimators for homographies, fundamental or
  essential matrices, absolute poses, rigid transforms or lines.
- There are no concrete samplers or scoring strategies.
- There are no one-call `estimate_*` functions.
- There is no command-line tool.

You build these from the interfaces above.

## Running the tests

```
pytest
```