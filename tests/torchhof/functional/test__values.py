# tests/torchhof/functional/test__values.py
import math

import pytest
import torch

from torchhof.functional import (
    DataBlock,
    as_data,
    as_integer_data,
    as_parameter,
    is_dual,
)


class TestAsParameter:
    def test_list_becomes_1d_tensor(self):
        x = as_parameter([1.0, 2.0, 3.0])
        assert x.shape == (3,)
        assert x.dtype.is_floating_point

    def test_scalar_becomes_length_one(self):
        x = as_parameter(torch.tensor(2.0, dtype=torch.float64))
        assert x.shape == (1,)
        assert x.dtype == torch.float64

    def test_keeps_autograd_history(self):
        theta = torch.tensor([1.0, 2.0], dtype=torch.float64, requires_grad=True)
        x = as_parameter(theta)
        assert x.requires_grad
        (2 * x).sum().backward()
        torch.testing.assert_close(
            theta.grad, torch.tensor([2.0, 2.0], dtype=torch.float64)
        )

    def test_integer_tensor_promoted(self):
        x = as_parameter(torch.tensor([1, 2]))
        assert x.dtype == torch.get_default_dtype()

    def test_rejects_non_finite(self):
        with pytest.raises(ValueError, match="finite"):
            as_parameter([1.0, math.nan])

    def test_rejects_matrix(self):
        with pytest.raises(ValueError, match="one-dimensional"):
            as_parameter(torch.zeros(2, 2))

    def test_empty_is_allowed(self):
        assert as_parameter(()).shape == (0,)

    def test_list_takes_requested_dtype(self):
        x = as_parameter([0.1, 1e-12], dtype=torch.float64)
        assert x.dtype == torch.float64
        assert x[0].item() == 0.1

    def test_tensor_dtype_wins_over_requested(self):
        x = as_parameter(torch.tensor([1.0], dtype=torch.float32), dtype=torch.float64)
        assert x.dtype == torch.float32


class TestAsData:
    def test_rejects_requires_grad(self):
        x = torch.tensor([1.0], requires_grad=True)
        with pytest.raises(ValueError, match="data-only"):
            as_data(x, "x_r")

    def test_accepts_plain_tensor(self):
        x = as_data(torch.tensor([1.0, 2.0], dtype=torch.float64))
        assert not x.requires_grad
        assert x.dtype == torch.float64

    def test_rejects_inf(self):
        with pytest.raises(ValueError, match="finite"):
            as_data([math.inf])

    def test_list_takes_requested_dtype(self):
        assert as_data([0.1], dtype=torch.float64)[0].item() == 0.1


class TestAsIntegerData:
    def test_int64(self):
        assert as_integer_data([1, 2, 3]).dtype == torch.int64

    def test_integral_floats_accepted(self):
        x = as_integer_data(torch.tensor([1.0, 4.0]))
        assert x.tolist() == [1, 4]

    def test_fractional_rejected(self):
        with pytest.raises(ValueError, match="integers"):
            as_integer_data([1.5])


class TestDataBlock:
    def test_defaults_are_empty(self):
        block = DataBlock.from_arrays()
        assert block.x_r.shape == (0,)
        assert block.x_i.shape == (0,)
        assert block.x_i.dtype == torch.int64

    def test_dtype_applied_to_real_data(self):
        block = DataBlock.from_arrays([1.0], [2], dtype=torch.float64)
        assert block.x_r.dtype == torch.float64

    def test_is_frozen(self):
        block = DataBlock.from_arrays([1.0])
        with pytest.raises(AttributeError):
            block.x_r = torch.zeros(1)


class TestIsDual:
    def test_plain_values(self):
        assert not is_dual(1.0)
        assert not is_dual(torch.ones(2))

    def test_requires_grad(self):
        assert is_dual(torch.ones(2, requires_grad=True))
