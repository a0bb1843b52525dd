"""Residuals and gradient-descent refinement for fundamental matrices and poses."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

_ZERO_JACOBIAN = 1e-10
_BEHIND_CAMERA_PENALTY = 1e10
_GRADIENT_STEP = 1e-8
_LEARNING_RATE = 0.01
_GRADIENT_TOLERANCE = 1e-6
_SMALL_ANGLE = 1e-10


def _vec(values, size: int) -> np.ndarray:
    arr = np.asarray(values, dtype=float).reshape(-1)
    if arr.shape[0] != size:
        raise ValueError(f"expected a vector of length {size}, got {arr.shape[0]}")
    return arr


def _points(values, dim: int) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return arr.reshape(0, dim)
    return arr.reshape(-1, dim)


def _weight_vector(weights: Optional[Sequence[float]], count: int) -> np.ndarray:
    """Per-point weights; points beyond the supplied weights get weight 1."""
    result = np.ones(count)
    if weights is not None:
        given = np.asarray(weights, dtype=float).reshape(-1)[:count]
        result[: given.shape[0]] = given
    return result


def _diagonal_sum(m: np.ndarray) -> float:
    return float(m[0, 0] + m[1, 1] + m[2, 2])


def sampson_error(f, x1, x2) -> float:
    """Signed Sampson distance of the correspondence ``x1 <-> x2`` under ``f``."""
    f = np.asarray(f, dtype=float)
    x1_h = np.append(_vec(x1, 2), 1.0)
    x2_h = np.append(_vec(x2, 2), 1.0)
    constraint = float(x2_h @ f @ x1_h)

    jacobian = np.concatenate((f[:, :2].T @ x2_h, f[:2, :] @ x1_h))
    norm = float(np.linalg.norm(jacobian))
    if norm < _ZERO_JACOBIAN:
        return 0.0
    return constraint / norm


def reprojection_error(r, t, x_2d, x_3d) -> float:
    """Distance between ``x_2d`` and the projection of ``r @ x_3d + t``.

    Points at or behind the camera plane get a large fixed penalty.
    """
    p = np.asarray(r, dtype=float) @ _vec(x_3d, 3) + _vec(t, 3)
    if p[2] <= 0.0:
        return _BEHIND_CAMERA_PENALTY
    projected = p[:2] / p[2]
    return float(np.linalg.norm(projected - _vec(x_2d, 2)))


def rotation_from_axis_angle(axis_angle) -> np.ndarray:
    """Rotation matrix of an axis-angle vector (Rodrigues' formula)."""
    v = _vec(axis_angle, 3)
    angle = float(np.linalg.norm(v))
    if angle < _SMALL_ANGLE:
        return np.eye(3)
    ax, ay, az = v / angle
    k = np.array([[0.0, -az, ay], [az, 0.0, -ax], [-ay, ax, 0.0]])
    return np.eye(3) + math.sin(angle) * k + (1.0 - math.cos(angle)) * (k @ k)


def _axis_angle_from_rotation(r: np.ndarray) -> Optional[tuple[np.ndarray, float]]:
    """Unit axis and angle of ``r``, or None when the axis is undefined."""
    axis = np.array([r[2, 1] - r[1, 2], r[0, 2] - r[2, 0], r[1, 0] - r[0, 1]])
    norm = float(np.linalg.norm(axis))
    if norm <= np.finfo(float).eps:
        return None
    cos_angle = (_diagonal_sum(r) - 1.0) / 2.0
    angle = math.acos(min(1.0, max(-1.0, cos_angle)))
    return axis / norm, angle


def _quaternion_from_rotation(m: np.ndarray) -> np.ndarray:
    """Unit quaternion ``(w, x, y, z)`` of a rotation matrix."""
    diag = _diagonal_sum(m)
    if diag > 0.0:
        denom = math.sqrt(diag + 1.0) * 2.0
        q = (
            0.25 * denom,
            (m[2, 1] - m[1, 2]) / denom,
            (m[0, 2] - m[2, 0]) / denom,
            (m[1, 0] - m[0, 1]) / denom,
        )
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        denom = math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2]) * 2.0
        q = (
            (m[2, 1] - m[1, 2]) / denom,
            0.25 * denom,
            (m[0, 1] + m[1, 0]) / denom,
            (m[0, 2] + m[2, 0]) / denom,
        )
    elif m[1, 1] > m[2, 2]:
        denom = math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2]) * 2.0
        q = (
            (m[0, 2] - m[2, 0]) / denom,
            (m[0, 1] + m[1, 0]) / denom,
            0.25 * denom,
            (m[1, 2] + m[2, 1]) / denom,
        )
    else:
        denom = math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1]) * 2.0
        q = (
            (m[1, 0] - m[0, 1]) / denom,
            (m[0, 2] + m[2, 0]) / denom,
            (m[1, 2] + m[2, 1]) / denom,
            0.25 * denom,
        )
    arr = np.array(q, dtype=float)
    return arr / np.linalg.norm(arr)


def _rotation_from_quaternion(q: np.ndarray) -> np.ndarray:
    w, x, y, z = q / np.linalg.norm(q)
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


def _quaternion_from_imaginary(imag: np.ndarray) -> np.ndarray:
    w = math.sqrt(max(0.0, 1.0 - float(imag @ imag)))
    q = np.concatenate(([w], imag))
    return q / np.linalg.norm(q)


def _identity_quaternion() -> np.ndarray:
    return np.array([1.0, 0.0, 0.0, 0.0])


@dataclass
class FactorizedFundamentalMatrix:
    """Rank-2 fundamental matrix ``F = U diag(1, sigma, 0) V^T``.

    ``q_u`` and ``q_v`` are unit quaternions ``(w, x, y, z)`` for ``U`` and ``V``.
    """

    q_u: np.ndarray = field(default_factory=_identity_quaternion)
    q_v: np.ndarray = field(default_factory=_identity_quaternion)
    sigma: float = 1.0

    @classmethod
    def from_fundamental(cls, f) -> "FactorizedFundamentalMatrix":
        """Factorise a 3x3 matrix via its SVD, normalising the largest singular value to 1."""
        u, s, vt = np.linalg.svd(np.asarray(f, dtype=float))
        v = vt.T
        if np.linalg.det(u) < 0.0:
            u = -u
        if np.linalg.det(v) < 0.0:
            v = -v
        sigma = float(s[1] / s[0]) if s[0] > _ZERO_JACOBIAN else 1.0
        return cls(_quaternion_from_rotation(u), _quaternion_from_rotation(v), sigma)

    @classmethod
    def from_params(cls, params) -> "FactorizedFundamentalMatrix":
        """Rebuild from seven parameters; shorter vectors give the identity factorisation.

        The quaternion real parts are taken to be non-negative.
        """
        p = np.asarray(params, dtype=float).reshape(-1)
        if p.shape[0] < 7:
            return cls()
        return cls(
            _quaternion_from_imaginary(p[0:3]),
            _quaternion_from_imaginary(p[3:6]),
            float(p[6]),
        )

    def to_fundamental(self) -> np.ndarray:
        u = _rotation_from_quaternion(np.asarray(self.q_u, dtype=float))
        v = _rotation_from_quaternion(np.asarray(self.q_v, dtype=float))
        return np.outer(u[:, 0], v[:, 0]) + self.sigma * np.outer(u[:, 1], v[:, 1])

    def to_params(self) -> np.ndarray:
        """Imaginary parts of both quaternions followed by sigma (7 values)."""
        q_u = np.asarray(self.q_u, dtype=float)
        q_v = np.asarray(self.q_v, dtype=float)
        return np.concatenate((q_u[1:4], q_v[1:4], [self.sigma]))


def _forward_difference(cost, params) -> np.ndarray:
    p = np.asarray(params, dtype=float).reshape(-1)
    base = cost(p)
    grad = np.zeros_like(p)
    for i in range(p.shape[0]):
        shifted = p.copy()
        shifted[i] += _GRADIENT_STEP
        grad[i] = (cost(shifted) - base) / _GRADIENT_STEP
    return grad


@dataclass
class FundamentalCostFunction:
    """Weighted sum of squared Sampson errors of a factorised fundamental matrix."""

    x1: np.ndarray
    x2: np.ndarray
    weights: Optional[Sequence[float]] = None

    def __post_init__(self) -> None:
        self.x1 = _points(self.x1, 2)
        self.x2 = _points(self.x2, 2)
        self._weights = _weight_vector(self.weights, self.x1.shape[0])

    def cost(self, params) -> float:
        f = FactorizedFundamentalMatrix.from_params(params).to_fundamental()
        return float(
            sum(
                w * sampson_error(f, p1, p2) ** 2
                for p1, p2, w in zip(self.x1, self.x2, self._weights)
            )
        )

    def gradient(self, params) -> np.ndarray:
        """Forward-difference gradient of :meth:`cost`."""
        return _forward_difference(self.cost, params)


@dataclass
class AbsolutePoseCostFunction:
    """Weighted sum of squared reprojection errors of an axis-angle pose."""

    points_2d: np.ndarray
    points_3d: np.ndarray
    weights: Optional[Sequence[float]] = None

    def __post_init__(self) -> None:
        self.points_2d = _points(self.points_2d, 2)
        self.points_3d = _points(self.points_3d, 3)
        self._weights = _weight_vector(self.weights, self.points_2d.shape[0])

    def cost(self, params) -> float:
        """Cost of ``[rx, ry, rz, tx, ty, tz]``; infinite for fewer than six values."""
        p = np.asarray(params, dtype=float).reshape(-1)
        if p.shape[0] < 6:
            return math.inf
        r = rotation_from_axis_angle(p[0:3])
        t = p[3:6]
        return float(
            sum(
                w * reprojection_error(r, t, p2, p3) ** 2
                for p2, p3, w in zip(self.points_2d, self.points_3d, self._weights)
            )
        )

    def gradient(self, params) -> np.ndarray:
        """Forward-difference gradient of :meth:`cost`."""
        return _forward_difference(self.cost, params)


def _descend(cost_function, params: np.ndarray, max_iterations: int) -> np.ndarray:
    current = params
    for _ in range(max_iterations):
        grad = cost_function.gradient(current)
        if np.linalg.norm(grad) < _GRADIENT_TOLERANCE:
            break
        current = current - _LEARNING_RATE * grad
    return current


def refine_fundamental(x1, x2, f, weights, max_iterations) -> np.ndarray:
    """Refine ``f`` on correspondences by gradient descent on the Sampson cost.

    Returns the refined rank-2 matrix. Raises ValueError when the point sets
    differ in length or hold fewer than eight correspondences.
    """
    pts1 = _points(x1, 2)
    pts2 = _points(x2, 2)
    if pts1.shape[0] != pts2.shape[0] or pts1.shape[0] < 8:
        raise ValueError("need at least 8 correspondences of equal count")
    cost = FundamentalCostFunction(pts1, pts2, weights)
    params = FactorizedFundamentalMatrix.from_fundamental(f).to_params()
    refined = _descend(cost, params, max_iterations)
    return FactorizedFundamentalMatrix.from_params(refined).to_fundamental()


def refine_absolute_pose(points_2d, points_3d, r, t, weights, max_iterations):
    """Refine the pose ``(r, t)`` by gradient descent on the reprojection cost.

    Returns ``(rotation, translation)``. Raises ValueError when the point sets
    differ in length or hold fewer than three correspondences.
    """
    pts2 = _points(points_2d, 2)
    pts3 = _points(points_3d, 3)
    if pts2.shape[0] != pts3.shape[0] or pts2.shape[0] < 3:
        raise ValueError("need at least 3 correspondences of equal count")

    rotation = np.asarray(r, dtype=float).copy()
    params = np.zeros(6)
    axis_angle = _axis_angle_from_rotation(rotation)
    if axis_angle is not None:
        axis, angle = axis_angle
        params[0:3] = axis * angle
    params[3:6] = _vec(t, 3)

    cost = AbsolutePoseCostFunction(pts2, pts3, weights)
    refined = _descend(cost, params, max_iterations)

    if np.linalg.norm(refined[0:3]) > _SMALL_ANGLE:
        rotation = rotation_from_axis_angle(refined[0:3])
    return rotation, refined[3:6].copy()