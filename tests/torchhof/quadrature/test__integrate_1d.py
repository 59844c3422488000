# tests/torchhof/quadrature/test__integrate_1d.py
import math

import mpmath
import pytest
import torch

from torchhof.functional import EvaluationError
from torchhof.quadrature import (
    QuadratureConvergenceError,
    integrate_1d,
    integrate_1d_info,
)

INF = math.inf


def _theta(*values, requires_grad=False):
    return torch.tensor(values, dtype=torch.float64, requires_grad=requires_grad)


def _no_theta():
    return torch.zeros(0, dtype=torch.float64)


class TestIntegrate1dValues:
    def test_polynomial(self):
        def cubic(x, xc, theta, x_r, x_i):
            return x**3

        result = integrate_1d(cubic, 0.0, 2.0, _no_theta())
        torch.testing.assert_close(
            result, torch.tensor(4.0, dtype=torch.float64), rtol=1e-10, atol=1e-12
        )

    def test_range_through_zero(self):
        def square(x, xc, theta, x_r, x_i):
            return x**2

        result = integrate_1d(square, -1.0, 2.0, _no_theta())
        torch.testing.assert_close(
            result, torch.tensor(3.0, dtype=torch.float64), rtol=1e-10, atol=1e-12
        )

    def test_gaussian_real_line(self):
        def gaussian(x, xc, theta, x_r, x_i):
            return torch.exp(-theta[0] * x**2)

        result = integrate_1d(gaussian, -INF, INF, _theta(1.0))
        torch.testing.assert_close(
            result, torch.tensor(math.sqrt(math.pi), dtype=torch.float64), rtol=1e-8, atol=0.0
        )

    @pytest.mark.parametrize(
        "a, b, expected",
        [
            (0.0, INF, 1.0),
            (2.0, INF, math.exp(-2.0)),
            (-1.0, INF, math.e),
        ],
    )
    def test_exponential_upper_tail(self, a, b, expected):
        def exponential(x, xc, theta, x_r, x_i):
            return torch.exp(-x)

        result = integrate_1d(exponential, a, b, _no_theta())
        torch.testing.assert_close(
            result, torch.tensor(expected, dtype=torch.float64), rtol=1e-8, atol=0.0
        )

    def test_exponential_lower_tail(self):
        def exponential(x, xc, theta, x_r, x_i):
            return torch.exp(x)

        result = integrate_1d(exponential, -INF, 1.0, _no_theta())
        torch.testing.assert_close(
            result, torch.tensor(math.e, dtype=torch.float64), rtol=1e-8, atol=0.0
        )

    def test_endpoint_singularity_with_complement(self):
        """int_0^1 1/sqrt(1 - x) dx = 2, using xc = 1 - x near x = 1."""

        def singular(x, xc, theta, x_r, x_i):
            distance = torch.where(xc > 0, xc, 1 - x)
            return 1 / torch.sqrt(distance)

        result = integrate_1d(singular, 0.0, 1.0, _no_theta())
        torch.testing.assert_close(
            result, torch.tensor(2.0, dtype=torch.float64), rtol=1e-7, atol=0.0
        )

    def test_beta_kernel_matches_mpmath(self):
        def kernel(x, xc, theta, x_r, x_i):
            return x ** (theta[0] - 1) * (1 - x) ** (theta[1] - 1)

        result = integrate_1d(kernel, 0.0, 1.0, _theta(2.5, 3.5))
        expected = float(mpmath.beta(2.5, 3.5))
        torch.testing.assert_close(
            result, torch.tensor(expected, dtype=torch.float64), rtol=1e-8, atol=0.0
        )

    def test_data_arguments(self):
        def scaled(x, xc, theta, x_r, x_i):
            return x_r[0] * x ** x_i[0].to(x.dtype)

        result = integrate_1d(scaled, 0.0, 1.0, _no_theta(), [3.0], [2])
        torch.testing.assert_close(
            result, torch.tensor(1.0, dtype=torch.float64), rtol=1e-10, atol=1e-12
        )

    def test_empty_range(self):
        def constant(x, xc, theta, x_r, x_i):
            return torch.ones_like(x)

        value, error, info = integrate_1d_info(constant, 1.5, 1.5, _no_theta())
        assert value.item() == 0.0
        assert error.item() == 0.0
        assert info["n_evaluations"] == 0

    def test_python_control_flow_without_vectorize(self):
        def sine(x, xc, theta, x_r, x_i):
            return torch.tensor(math.sin(x.item()), dtype=torch.float64)

        result = integrate_1d(sine, 0.0, math.pi, _no_theta(), vectorize=False)
        torch.testing.assert_close(
            result, torch.tensor(2.0, dtype=torch.float64), rtol=1e-8, atol=0.0
        )

    def test_info(self):
        def gaussian(x, xc, theta, x_r, x_i):
            return torch.exp(-(x**2))

        value, error, info = integrate_1d_info(gaussian, -1.0, 1.0, _no_theta())
        assert set(info) == {"levels", "n_evaluations", "l1_norm", "converged"}
        assert info["converged"]
        assert info["n_evaluations"] > 0
        assert 3 <= info["levels"] <= 15
        assert info["l1_norm"] == pytest.approx(value.item(), rel=1e-6)
        assert error.item() <= 1e-8 * info["l1_norm"]


class TestComplement:
    def test_complement_is_distance_to_nearest_endpoint(self):
        seen = []

        def record(x, xc, theta, x_r, x_i):
            seen.append((x.item(), xc.item()))
            return torch.ones((), dtype=torch.float64)

        integrate_1d(record, 1.0, 3.0, _no_theta(), vectorize=False)

        for x, xc in seen:
            if x < 2.0:
                assert xc == pytest.approx(1.0 - x, abs=1e-12)
            elif x > 2.0:
                assert xc == pytest.approx(3.0 - x, abs=1e-12)

    def test_complement_is_nan_on_infinite_range(self):
        seen = []

        def record(x, xc, theta, x_r, x_i):
            seen.append(xc.item())
            return torch.exp(-x)

        integrate_1d(record, 0.0, INF, _no_theta(), vectorize=False)
        assert seen
        assert all(math.isnan(xc) for xc in seen)

    def test_nodes_on_endpoint_keep_nonzero_complement(self):
        seen = []

        def record(x, xc, theta, x_r, x_i):
            seen.append((x.item(), xc.item()))
            return torch.ones((), dtype=torch.float64)

        integrate_1d(record, 0.0, 1.0, _no_theta(), vectorize=False)
        assert all(xc != 0.0 for _, xc in seen)
        assert all(0.0 <= x <= 1.0 for x, _ in seen)
        # Near b the abscissa rounds to 1.0 while xc still resolves the gap
        assert any(x == 1.0 and xc > 0.0 for x, xc in seen)

    def test_strong_singularity_through_complement(self):
        """int_1^2 (x - 1)^-0.9 dx = 10, with x - 1 taken from xc."""

        def singular(x, xc, theta, x_r, x_i):
            return torch.where(xc < 0, -xc, 1 - xc) ** -0.9

        value, _, info = integrate_1d_info(
            singular, 1.0, 2.0, _no_theta(), rtol=1e-8
        )
        assert info["converged"]
        assert value.item() == pytest.approx(10.0, rel=1e-8)
        torch.testing.assert_close(
            integrate_1d(singular, 1.0, 2.0, _no_theta(), rtol=1e-8),
            torch.tensor(10.0, dtype=torch.float64),
            rtol=1e-8,
            atol=0.0,
        )


class TestIntegrate1dErrors:
    def test_reversed_limits(self):
        with pytest.raises(ValueError, match="must not exceed"):
            integrate_1d(lambda x, xc, theta, x_r, x_i: x, 1.0, 0.0, _no_theta())

    def test_nan_limit(self):
        with pytest.raises(ValueError, match="NaN"):
            integrate_1d(lambda x, xc, theta, x_r, x_i: x, math.nan, 1.0, _no_theta())

    def test_non_finite_integrand(self):
        def bad(x, xc, theta, x_r, x_i):
            return torch.sqrt(x - 0.5)

        with pytest.raises(EvaluationError, match="non-finite"):
            integrate_1d(bad, 0.0, 1.0, _no_theta())

    def test_non_scalar_integrand(self):
        def vector(x, xc, theta, x_r, x_i):
            return torch.stack([x, x])

        with pytest.raises(EvaluationError, match="scalar"):
            integrate_1d(vector, 0.0, 1.0, _no_theta())

    def test_non_convergence(self):
        def oscillating(x, xc, theta, x_r, x_i):
            return torch.sin(x)

        value, error, info = integrate_1d_info(oscillating, 0.0, 1e5, _no_theta())
        assert not info["converged"]
        assert info["levels"] == 15

        with pytest.raises(QuadratureConvergenceError) as excinfo:
            integrate_1d(oscillating, 0.0, 1e5, _no_theta())
        assert excinfo.value.interval == (0.0, 1e5)
        assert excinfo.value.error > 0

    def test_data_with_grad_rejected(self):
        x_r = torch.ones(1, dtype=torch.float64, requires_grad=True)
        with pytest.raises(ValueError, match="data-only"):
            integrate_1d(lambda x, xc, theta, x_r, x_i: x, 0.0, 1.0, _no_theta(), x_r)


class TestIntegrate1dGradient:
    def test_parameter_gradient_finite_range(self):
        """d/dtheta (e^theta - 1)/theta."""

        def exponential(x, xc, theta, x_r, x_i):
            return torch.exp(theta[0] * x)

        theta = _theta(0.5, requires_grad=True)
        integrate_1d(exponential, 0.0, 1.0, theta).backward()

        t = 0.5
        expected = (t * math.exp(t) - math.exp(t) + 1) / t**2
        torch.testing.assert_close(
            theta.grad, _theta(expected), rtol=1e-8, atol=0.0
        )

    def test_parameter_gradient_real_line(self):
        def gaussian(x, xc, theta, x_r, x_i):
            return torch.exp(-theta[0] * x**2)

        theta = _theta(2.0, requires_grad=True)
        integrate_1d(gaussian, -INF, INF, theta).backward()

        expected = -0.5 * math.sqrt(math.pi) * 2.0**-1.5
        torch.testing.assert_close(theta.grad, _theta(expected), rtol=1e-7, atol=0.0)

    def test_limit_gradients(self):
        def square(x, xc, theta, x_r, x_i):
            return x**2

        a = torch.tensor(-1.0, dtype=torch.float64, requires_grad=True)
        b = torch.tensor(2.0, dtype=torch.float64, requires_grad=True)
        integrate_1d(square, a, b, _no_theta()).backward()

        torch.testing.assert_close(a.grad, torch.tensor(-1.0, dtype=torch.float64))
        torch.testing.assert_close(b.grad, torch.tensor(4.0, dtype=torch.float64))

    def test_finite_limit_of_infinite_range(self):
        """int_a^inf exp(-theta x) dx = exp(-theta a) / theta."""

        def exponential(x, xc, theta, x_r, x_i):
            return torch.exp(-theta[0] * x)

        a = torch.tensor(0.5, dtype=torch.float64, requires_grad=True)
        theta = _theta(2.0, requires_grad=True)
        integrate_1d(exponential, a, INF, theta).backward()

        torch.testing.assert_close(
            a.grad, torch.tensor(-math.exp(-1.0), dtype=torch.float64), rtol=1e-10, atol=0.0
        )
        # d/dtheta exp(-theta a)/theta = -exp(-theta a) (a/theta + 1/theta^2)
        expected = -math.exp(-1.0) * (0.5 / 2.0 + 1 / 4.0)
        torch.testing.assert_close(theta.grad, _theta(expected), rtol=1e-8, atol=0.0)

    def test_gradient_matches_mpmath(self):
        def damped(x, xc, theta, x_r, x_i):
            return torch.exp(-theta[0] * x**2) * torch.cos(theta[1] * x)

        theta = _theta(0.7, 1.3, requires_grad=True)
        value = integrate_1d(damped, 0.0, 2.0, theta)
        value.backward()

        p, q = mpmath.mpf("0.7"), mpmath.mpf("1.3")
        ref_value = mpmath.quad(lambda x: mpmath.exp(-p * x**2) * mpmath.cos(q * x), [0, 2])
        ref_p = mpmath.quad(
            lambda x: -(x**2) * mpmath.exp(-p * x**2) * mpmath.cos(q * x), [0, 2]
        )
        ref_q = mpmath.quad(
            lambda x: -x * mpmath.exp(-p * x**2) * mpmath.sin(q * x), [0, 2]
        )

        torch.testing.assert_close(
            value.detach(), torch.tensor(float(ref_value), dtype=torch.float64), rtol=1e-9, atol=0.0
        )
        torch.testing.assert_close(
            theta.grad, _theta(float(ref_p), float(ref_q)), rtol=1e-8, atol=1e-12
        )

    def test_gradient_matches_finite_differences(self):
        def logistic(x, xc, theta, x_r, x_i):
            return 1 / (1 + torch.exp(-theta[0] * (x - theta[1])))

        theta0 = _theta(1.5, 0.3)
        theta = theta0.clone().requires_grad_(True)
        integrate_1d(logistic, -2.0, 3.0, theta).backward()

        eps = 1e-5
        fd = torch.zeros(2, dtype=torch.float64)
        for j in range(2):
            e = torch.zeros(2, dtype=torch.float64)
            e[j] = eps
            plus = integrate_1d(logistic, -2.0, 3.0, theta0 + e, rtol=1e-12)
            minus = integrate_1d(logistic, -2.0, 3.0, theta0 - e, rtol=1e-12)
            fd[j] = (plus - minus) / (2 * eps)

        torch.testing.assert_close(theta.grad, fd, rtol=1e-6, atol=1e-8)

    def test_no_graph_without_grad(self):
        result = integrate_1d(
            lambda x, xc, theta, x_r, x_i: theta[0] * x, 0.0, 1.0, _theta(2.0)
        )
        assert not result.requires_grad
