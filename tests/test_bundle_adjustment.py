import math

import numpy as np
import pytest

from inlier.bundle_adjustment import (
    AbsolutePoseCostFunction,
    FactorizedFundamentalMatrix,
    FundamentalCostFunction,
    refine_absolute_pose,
    refine_fundamental,
    reprojection_error,
    rotation_from_axis_angle,
    sampson_error,
)

# Fundamental matrix of a pure translation along x: corresponding points share y.
F_TRANSLATE_X = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, -1.0], [0.0, 1.0, 0.0]])


def _horizontal_correspondences(count=10):
    x1 = [(0.1 * i, 0.05 * i - 0.2) for i in range(count)]
    x2 = [(0.1 * i + 0.3, 0.05 * i - 0.2) for i in range(count)]
    return x1, x2


def _pose_data(r, t):
    pts3 = np.array(
        [[-1.0, -0.5, 4.0], [0.5, 0.3, 5.0], [1.0, -1.0, 6.0], [0.2, 0.8, 4.5], [-0.7, 0.6, 5.5]]
    )
    cam = pts3 @ r.T + t
    pts2 = cam[:, :2] / cam[:, 2:3]
    return pts2, pts3


def test_sampson_error_zero_for_consistent_pair():
    assert sampson_error(F_TRANSLATE_X, (1.0, 2.0), (3.0, 2.0)) == pytest.approx(0.0)


def test_sampson_error_sign_flips_with_offset():
    above = sampson_error(F_TRANSLATE_X, (1.0, 2.0), (3.0, 2.5))
    below = sampson_error(F_TRANSLATE_X, (1.0, 2.0), (3.0, 1.5))
    assert above == pytest.approx(-below)
    assert abs(above) > 0.0


def test_sampson_error_degenerate_jacobian_is_zero():
    assert sampson_error(np.zeros((3, 3)), (1.0, 2.0), (3.0, 4.0)) == 0.0


def test_reprojection_error_exact_projection():
    assert reprojection_error(np.eye(3), np.zeros(3), (1.0, 2.0), (2.0, 4.0, 2.0)) == pytest.approx(0.0)


def test_reprojection_error_distance():
    err = reprojection_error(np.eye(3), np.zeros(3), (1.3, 2.4), (2.0, 4.0, 2.0))
    assert err == pytest.approx(math.hypot(0.3, 0.4))


def test_reprojection_error_behind_camera_penalty():
    assert reprojection_error(np.eye(3), np.zeros(3), (0.0, 0.0), (1.0, 1.0, -1.0)) == 1e10
    assert reprojection_error(np.eye(3), np.zeros(3), (0.0, 0.0), (1.0, 1.0, 0.0)) == 1e10


def test_rotation_from_axis_angle_zero_is_identity():
    assert np.allclose(rotation_from_axis_angle((0.0, 0.0, 0.0)), np.eye(3))


def test_rotation_from_axis_angle_quarter_turn_about_z():
    r = rotation_from_axis_angle((0.0, 0.0, math.pi / 2))
    assert np.allclose(r @ np.array([1.0, 0.0, 0.0]), [0.0, 1.0, 0.0])


def test_rotation_from_axis_angle_is_orthonormal():
    r = rotation_from_axis_angle((0.3, -0.7, 1.1))
    assert np.allclose(r.T @ r, np.eye(3))
    assert np.linalg.det(r) == pytest.approx(1.0)


def test_factorized_round_trip_up_to_sign():
    rng = np.random.default_rng(3)
    u, _, vt = np.linalg.svd(rng.normal(size=(3, 3)))
    f = u @ np.diag([2.0, 0.8, 0.0]) @ vt
    rebuilt = FactorizedFundamentalMatrix.from_fundamental(f).to_fundamental()
    normalised = f / 2.0
    diff = min(np.linalg.norm(rebuilt - normalised), np.linalg.norm(rebuilt + normalised))
    assert diff < 1e-9


def test_factorized_sigma_is_singular_value_ratio():
    f = np.diag([4.0, 1.0, 0.0])
    assert FactorizedFundamentalMatrix.from_fundamental(f).sigma == pytest.approx(0.25)


def test_to_fundamental_is_rank_two_with_expected_singular_values():
    fact = FactorizedFundamentalMatrix(
        q_u=np.array([0.9, 0.1, 0.2, 0.3]) / np.linalg.norm([0.9, 0.1, 0.2, 0.3]),
        q_v=np.array([0.8, -0.1, 0.3, 0.2]) / np.linalg.norm([0.8, -0.1, 0.3, 0.2]),
        sigma=0.5,
    )
    s = np.linalg.svd(fact.to_fundamental(), compute_uv=False)
    assert np.allclose(s, [1.0, 0.5, 0.0], atol=1e-12)


def test_params_round_trip_with_positive_real_parts():
    fact = FactorizedFundamentalMatrix(
        q_u=np.array([0.9, 0.1, 0.2, 0.3]) / np.linalg.norm([0.9, 0.1, 0.2, 0.3]),
        q_v=np.array([0.8, -0.1, 0.3, 0.2]) / np.linalg.norm([0.8, -0.1, 0.3, 0.2]),
        sigma=0.5,
    )
    params = fact.to_params()
    assert params.shape == (7,)
    rebuilt = FactorizedFundamentalMatrix.from_params(params)
    assert np.allclose(rebuilt.to_fundamental(), fact.to_fundamental())
    assert rebuilt.sigma == 0.5


def test_from_params_short_vector_gives_identity():
    fact = FactorizedFundamentalMatrix.from_params([0.1, 0.2])
    assert np.allclose(fact.to_fundamental(), np.diag([1.0, 1.0, 0.0]))


def test_fundamental_cost_zero_on_consistent_points():
    x1, x2 = _horizontal_correspondences()
    fact = FactorizedFundamentalMatrix.from_fundamental(F_TRANSLATE_X)
    cost = FundamentalCostFunction(x1, x2)
    assert cost.cost(fact.to_params()) == pytest.approx(0.0, abs=1e-18)


def test_fundamental_cost_weights_scale():
    x1, x2 = _horizontal_correspondences()
    x2 = [(x, y + 0.1) for x, y in x2]
    params = FactorizedFundamentalMatrix.from_fundamental(F_TRANSLATE_X).to_params()
    plain = FundamentalCostFunction(x1, x2).cost(params)
    doubled = FundamentalCostFunction(x1, x2, [2.0] * len(x1)).cost(params)
    assert plain > 0.0
    assert doubled == pytest.approx(2.0 * plain)


def test_fundamental_gradient_descends():
    x1, x2 = _horizontal_correspondences()
    x2 = [(x, y + 0.05 * (i % 3)) for i, (x, y) in enumerate(x2)]
    params = FactorizedFundamentalMatrix.from_fundamental(F_TRANSLATE_X).to_params()
    cost = FundamentalCostFunction(x1, x2)
    grad = cost.gradient(params)
    assert grad.shape == (7,)
    assert cost.cost(params - 1e-4 * grad) < cost.cost(params)


def test_absolute_pose_cost_short_params_is_infinite():
    pts2, pts3 = _pose_data(np.eye(3), np.zeros(3))
    assert AbsolutePoseCostFunction(pts2, pts3).cost([0.0, 0.0]) == math.inf


def test_absolute_pose_cost_zero_at_truth_and_positive_elsewhere():
    axis_angle = np.array([0.1, 0.2, 0.3])
    t = np.array([0.1, -0.2, 0.5])
    pts2, pts3 = _pose_data(rotation_from_axis_angle(axis_angle), t)
    cost = AbsolutePoseCostFunction(pts2, pts3)
    truth = np.concatenate((axis_angle, t))
    assert cost.cost(truth) == pytest.approx(0.0, abs=1e-20)
    assert cost.cost(truth + 0.05) > 0.0


def test_refine_fundamental_rejects_few_points():
    x1, x2 = _horizontal_correspondences(5)
    with pytest.raises(ValueError):
        refine_fundamental(x1, x2, F_TRANSLATE_X, None, 10)


def test_refine_fundamental_rejects_mismatched_counts():
    x1, x2 = _horizontal_correspondences(10)
    with pytest.raises(ValueError):
        refine_fundamental(x1, x2[:9], F_TRANSLATE_X, None, 10)


def test_refine_fundamental_keeps_rank_two():
    x1, x2 = _horizontal_correspondences()
    x2 = [(x, y + 0.02 * (i % 2)) for i, (x, y) in enumerate(x2)]
    refined = refine_fundamental(x1, x2, F_TRANSLATE_X, None, 20)
    assert refined.shape == (3, 3)
    assert abs(np.linalg.det(refined)) < 1e-9
    sigma = np.linalg.svd(refined, compute_uv=False)
    assert sigma[0] == pytest.approx(1.0)


def test_refine_absolute_pose_rejects_few_points():
    with pytest.raises(ValueError):
        refine_absolute_pose([(0.0, 0.0)] * 2, [(0.0, 0.0, 1.0)] * 2, np.eye(3), np.zeros(3), None, 5)


def test_refine_absolute_pose_identity_stays_put():
    t = np.array([0.0, 0.0, 1.0])
    pts2, pts3 = _pose_data(np.eye(3), t)
    r_out, t_out = refine_absolute_pose(pts2, pts3, np.eye(3), t, None, 50)
    assert np.allclose(r_out, np.eye(3))
    assert np.allclose(t_out, t, atol=1e-6)


def test_refine_absolute_pose_recovers_rotation_at_optimum():
    r = rotation_from_axis_angle((0.1, 0.2, 0.3))
    t = np.array([0.1, -0.2, 0.5])
    pts2, pts3 = _pose_data(r, t)
    r_out, t_out = refine_absolute_pose(pts2, pts3, r, t, None, 50)
    assert np.allclose(r_out, r, atol=1e-6)
    assert np.allclose(t_out, t, atol=1e-6)