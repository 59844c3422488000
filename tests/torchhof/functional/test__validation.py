# tests/torchhof/functional/test__validation.py
import math

import pytest
import torch

from torchhof.functional import (
    DimensionMismatchError,
    TorchHOFError,
    check_finite,
    check_nondecreasing,
    check_nonempty,
    check_rectangular,
    check_size_match,
)


class TestChecks:
    def test_nonempty(self):
        check_nonempty("op", "x", torch.ones(1))
        with pytest.raises(DimensionMismatchError, match="op: x has size 0"):
            check_nonempty("op", "x", torch.ones(0))

    def test_size_match(self):
        check_size_match("op", "a", 2, "b", 2)
        with pytest.raises(DimensionMismatchError, match=r"size of a \(2\)"):
            check_size_match("op", "a", 2, "b", 3)

    def test_dimension_mismatch_is_value_error(self):
        assert issubclass(DimensionMismatchError, ValueError)
        assert issubclass(DimensionMismatchError, TorchHOFError)

    def test_finite(self):
        check_finite("op", "x", [1.0, 2.0])
        with pytest.raises(ValueError, match="finite"):
            check_finite("op", "x", torch.tensor([1.0, math.inf]))

    def test_nondecreasing(self):
        check_nondecreasing("op", "ts", torch.tensor([1.0, 1.0, 2.0]))
        with pytest.raises(ValueError, match="sorted"):
            check_nondecreasing("op", "ts", torch.tensor([1.0, 0.5]))


class TestCheckRectangular:
    def test_tensor(self):
        check_rectangular("op", "thetas", torch.zeros(3, 2), 3)

    def test_nested_lists(self):
        check_rectangular("op", "x_rs", [[1.0], [2.0]], 2)

    def test_wrong_row_count(self):
        with pytest.raises(DimensionMismatchError, match="expected 3"):
            check_rectangular("op", "x_rs", [[1.0], [2.0]], 3)

    def test_ragged(self):
        with pytest.raises(DimensionMismatchError, match="ragged"):
            check_rectangular("op", "x_rs", [[1.0], [2.0, 3.0]], 2)

    def test_tensor_must_be_2d(self):
        with pytest.raises(DimensionMismatchError, match="two-dimensional"):
            check_rectangular("op", "thetas", torch.zeros(3), 3)
