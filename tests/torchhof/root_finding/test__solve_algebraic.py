# tests/torchhof/root_finding/test__solve_algebraic.py
import math

import pytest
import torch

from torchhof.functional import DimensionMismatchError, EvaluationError
from torchhof.root_finding import NonConvergenceError, solve_algebraic


def circle(y, theta, x_r, x_i):
    """x^2 + y^2 = r^2 intersected with the line y = x."""
    return torch.stack([y[0] ** 2 + y[1] ** 2 - theta[0] ** 2, y[0] - y[1]])


def linear(y, theta, x_r, x_i):
    """A y = theta with A stored row-major in x_r."""
    A = x_r.reshape(2, 2)
    return A @ y - theta


class TestSolveAlgebraicBasic:
    @pytest.mark.parametrize("guess", [[1.0, 1.0], [3.0, 0.5], [10.0, 10.0], [0.2, 0.1]])
    def test_circle_root(self, guess):
        theta = torch.tensor([2.0], dtype=torch.float64)
        y0 = torch.tensor(guess, dtype=torch.float64)

        root = solve_algebraic(circle, y0, theta)

        expected = torch.full((2,), math.sqrt(2.0), dtype=torch.float64)
        torch.testing.assert_close(root, expected, rtol=1e-6, atol=1e-6)
        residual = circle(root, theta, None, None)
        assert torch.linalg.vector_norm(residual) <= 1e-6

    def test_linear_system(self):
        A = torch.tensor([[3.0, 1.0], [1.0, 2.0]], dtype=torch.float64)
        theta = torch.tensor([9.0, 8.0], dtype=torch.float64)

        root = solve_algebraic(
            linear, torch.zeros(2, dtype=torch.float64), theta, A.reshape(-1)
        )

        torch.testing.assert_close(
            root, torch.linalg.solve(A, theta), rtol=1e-8, atol=1e-8
        )

    def test_scalar_cubic(self):
        def cubic(y, theta, x_r, x_i):
            return y**3 - theta

        theta = torch.tensor([27.0], dtype=torch.float64)
        root = solve_algebraic(cubic, torch.tensor([1.0], dtype=torch.float64), theta)
        torch.testing.assert_close(
            root, torch.tensor([3.0], dtype=torch.float64), rtol=1e-7, atol=1e-7
        )

    def test_integer_data_passed_through(self):
        def shifted(y, theta, x_r, x_i):
            return y - theta * x_i.to(y.dtype)

        root = solve_algebraic(
            shifted,
            torch.zeros(2, dtype=torch.float64),
            torch.tensor([0.5], dtype=torch.float64),
            (),
            [2, 4],
        )
        torch.testing.assert_close(
            root, torch.tensor([1.0, 2.0], dtype=torch.float64)
        )

    def test_does_not_mutate_inputs(self):
        y0 = torch.tensor([1.0, 1.0], dtype=torch.float64)
        theta = torch.tensor([2.0], dtype=torch.float64)
        solve_algebraic(circle, y0, theta)
        torch.testing.assert_close(y0, torch.tensor([1.0, 1.0], dtype=torch.float64))


class TestSolveAlgebraicErrors:
    def test_non_convergence(self):
        def no_root(y, theta, x_r, x_i):
            return y**2 + theta

        with pytest.raises(NonConvergenceError, match="maximum number of iterations"):
            solve_algebraic(
                no_root,
                torch.tensor([1.0], dtype=torch.float64),
                torch.tensor([1.0], dtype=torch.float64),
                max_steps=5,
            )

    def test_empty_guess(self):
        with pytest.raises(DimensionMismatchError):
            solve_algebraic(circle, torch.zeros(0, dtype=torch.float64), [1.0])

    def test_output_length_mismatch(self):
        def too_long(y, theta, x_r, x_i):
            return torch.cat([y, y])

        with pytest.raises(DimensionMismatchError, match="must match"):
            solve_algebraic(too_long, torch.ones(2, dtype=torch.float64), [1.0])

    def test_non_finite_guess(self):
        with pytest.raises(ValueError, match="finite"):
            solve_algebraic(circle, [math.nan, 1.0], [1.0])

    def test_data_with_grad_rejected(self):
        x_r = torch.ones(4, dtype=torch.float64, requires_grad=True)
        with pytest.raises(ValueError, match="data-only"):
            solve_algebraic(linear, torch.zeros(2, dtype=torch.float64), [1.0, 1.0], x_r)

    def test_non_finite_residual(self):
        def log_system(y, theta, x_r, x_i):
            return torch.log(y) - theta

        with pytest.raises(EvaluationError):
            solve_algebraic(
                log_system,
                torch.tensor([-1.0], dtype=torch.float64),
                torch.tensor([0.0], dtype=torch.float64),
            )

    @pytest.mark.parametrize("kwargs", [{"rtol": 0.0}, {"ftol": -1.0}, {"max_steps": 0}])
    def test_bad_tolerances(self, kwargs):
        with pytest.raises(ValueError):
            solve_algebraic(
                circle, torch.ones(2, dtype=torch.float64), [2.0], **kwargs
            )


class TestSolveAlgebraicGradient:
    def test_circle_gradient(self):
        """Root is r / sqrt(2) in each component."""
        theta = torch.tensor([2.0], dtype=torch.float64, requires_grad=True)
        root = solve_algebraic(circle, torch.tensor([1.0, 1.0], dtype=torch.float64), theta)
        root.sum().backward()
        torch.testing.assert_close(
            theta.grad,
            torch.tensor([math.sqrt(2.0)], dtype=torch.float64),
            rtol=1e-6,
            atol=1e-6,
        )

    def test_linear_gradient_matches_inverse(self):
        A = torch.tensor([[3.0, 1.0], [1.0, 2.0]], dtype=torch.float64)
        theta = torch.tensor([9.0, 8.0], dtype=torch.float64, requires_grad=True)
        w = torch.tensor([1.0, -2.0], dtype=torch.float64)

        root = solve_algebraic(linear, torch.zeros(2, dtype=torch.float64), theta, A.reshape(-1))
        (w @ root).backward()

        expected = torch.linalg.solve(A.T, w)
        torch.testing.assert_close(theta.grad, expected, rtol=1e-8, atol=1e-8)

    def test_gradient_matches_finite_differences(self):
        def system(y, theta, x_r, x_i):
            return torch.stack(
                [
                    y[0] - theta[0] * torch.cos(y[1]),
                    y[1] - theta[1] * torch.sin(y[0]),
                ]
            )

        theta = torch.tensor([0.5, 0.3], dtype=torch.float64, requires_grad=True)
        y0 = torch.zeros(2, dtype=torch.float64)

        root = solve_algebraic(system, y0, theta, rtol=1e-12, ftol=1e-12)
        grads = torch.stack(
            [
                torch.autograd.grad(root[i], theta, retain_graph=True)[0]
                for i in range(2)
            ]
        )

        eps = 1e-6
        fd = torch.zeros(2, 2, dtype=torch.float64)
        for j in range(2):
            e = torch.zeros(2, dtype=torch.float64)
            e[j] = eps
            plus = solve_algebraic(system, y0, theta.detach() + e, rtol=1e-12, ftol=1e-12)
            minus = solve_algebraic(system, y0, theta.detach() - e, rtol=1e-12, ftol=1e-12)
            fd[:, j] = (plus - minus) / (2 * eps)

        torch.testing.assert_close(grads, fd, rtol=1e-6, atol=1e-7)

    def test_no_graph_without_grad(self):
        theta = torch.tensor([2.0], dtype=torch.float64)
        root = solve_algebraic(circle, torch.ones(2, dtype=torch.float64), theta)
        assert not root.requires_grad

    def test_guess_gradient_ignored(self):
        y0 = torch.ones(2, dtype=torch.float64, requires_grad=True)
        root = solve_algebraic(circle, y0, torch.tensor([2.0], dtype=torch.float64))
        assert not root.requires_grad
