# tests/torchhof/functional/test__differentiation.py
import torch

from torchhof.functional import compute_jacobian, compute_vjp


def product(x, y):
    return torch.stack([x[0] * y[0], x[1] + y[0] ** 2])


class TestComputeJacobian:
    def test_single_argument(self):
        x = torch.tensor([2.0, 3.0], dtype=torch.float64)
        y = torch.tensor([5.0], dtype=torch.float64)

        out, (jac,) = compute_jacobian(product, (x, y), argnums=0)

        torch.testing.assert_close(out, torch.tensor([10.0, 28.0], dtype=torch.float64))
        torch.testing.assert_close(
            jac, torch.tensor([[5.0, 0.0], [0.0, 1.0]], dtype=torch.float64)
        )

    def test_several_arguments(self):
        x = torch.tensor([2.0, 3.0], dtype=torch.float64)
        y = torch.tensor([5.0], dtype=torch.float64)

        _, (jac_x, jac_y) = compute_jacobian(product, (x, y), argnums=(0, 1))

        assert jac_x.shape == (2, 2)
        torch.testing.assert_close(
            jac_y, torch.tensor([[2.0], [10.0]], dtype=torch.float64)
        )

    def test_scalar_output(self):
        x = torch.tensor([1.0, 2.0], dtype=torch.float64)
        _, (grad,) = compute_jacobian(lambda v: (v**2).sum(), (x,))
        torch.testing.assert_close(grad, 2 * x)

    def test_detaches_inputs(self):
        x = torch.tensor([2.0, 3.0], dtype=torch.float64, requires_grad=True)
        y = torch.tensor([5.0], dtype=torch.float64)
        out, (jac,) = compute_jacobian(product, (x, y))
        assert not out.requires_grad
        assert not jac.requires_grad


class TestComputeVJP:
    def test_matches_jacobian_product(self):
        x = torch.tensor([2.0, 3.0], dtype=torch.float64)
        y = torch.tensor([5.0], dtype=torch.float64)
        v = torch.tensor([1.0, -2.0], dtype=torch.float64)

        g_x, g_y = compute_vjp(product, (x, y), v, argnums=(0, 1))
        _, (jac_x, jac_y) = compute_jacobian(product, (x, y), argnums=(0, 1))

        torch.testing.assert_close(g_x, v @ jac_x)
        torch.testing.assert_close(g_y, v @ jac_y)

    def test_only_requested_argument(self):
        x = torch.tensor([2.0, 3.0], dtype=torch.float64)
        y = torch.tensor([5.0], dtype=torch.float64)
        result = compute_vjp(product, (x, y), torch.ones(2, dtype=torch.float64), argnums=1)
        assert len(result) == 1
        torch.testing.assert_close(result[0], torch.tensor([12.0], dtype=torch.float64))
