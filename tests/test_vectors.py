"""Tests for vector spaces, vectors and simple linear operators."""

import math

import numpy as np
import pytest
import torch

from invlib.linalg import (
    DenseOperator,
    DiagonalOperator,
    IdentityOperator,
    IncorrectSpaceError,
    Job,
    LinearEndomorphism,
    VectorSpace,
)


class TestVectorSpace:
    """Tests for VectorSpace construction and membership."""

    def test_int_shape(self):
        space = VectorSpace(5)
        assert space.shape == (5,)
        assert space.rank == 1
        assert space.size == 5
        assert space.dtype == torch.float64

    def test_invalid_dimensions(self):
        with pytest.raises(ValueError):
            VectorSpace((3, 0))
        with pytest.raises(ValueError):
            VectorSpace(())

    def test_invalid_dtype(self):
        with pytest.raises(ValueError):
            VectorSpace(3, dtype=torch.int32)

    def test_equality(self):
        a = VectorSpace((2, 3))
        b = VectorSpace((2, 3))
        c = VectorSpace((2, 3), dtype=torch.float32)
        assert a == b
        assert hash(a) == hash(b)
        assert a != c

    def test_owns_equal_space(self):
        a = VectorSpace(4)
        b = VectorSpace(4)
        assert a.owns(b.create())
        assert not a.owns(VectorSpace(5).create())

    def test_check_raises(self):
        space = VectorSpace(4)
        other = VectorSpace(4, dtype=torch.float32)
        with pytest.raises(IncorrectSpaceError):
            space.check(space.create(), other.create())


class TestVectorFactories:
    """Tests for create, wrap and clone."""

    def test_create_filled(self):
        x = VectorSpace((2, 2)).create(3.0)
        assert torch.all(x.data == 3.0)

    def test_wrap_shares_storage(self):
        space = VectorSpace(4)
        t = torch.zeros(4, dtype=torch.float64)
        x = space.wrap(t)
        x.data[0] = 7.0
        assert t[0] == 7.0

    def test_wrap_numpy_shares_storage(self):
        space = VectorSpace((2, 2))
        arr = np.zeros((2, 2))
        x = space.wrap(arr)
        x.fill(1.5)
        np.testing.assert_array_equal(arr, 1.5)

    def test_wrap_converts_dtype(self):
        space = VectorSpace(3)
        t = torch.ones(3, dtype=torch.float32)
        x = space.wrap(t)
        assert x.data.dtype == torch.float64
        x.data[0] = 2.0
        assert t[0] == 1.0

    def test_wrap_reshapes(self):
        x = VectorSpace((2, 3)).wrap(torch.arange(6, dtype=torch.float64))
        assert x.data.shape == (2, 3)

    def test_wrap_wrong_size(self):
        with pytest.raises(IncorrectSpaceError):
            VectorSpace(4).wrap(torch.zeros(5, dtype=torch.float64))

    def test_wrap_copy(self):
        space = VectorSpace(3)
        t = torch.zeros(3, dtype=torch.float64)
        x = space.wrap(t, copy=True)
        x.fill(1.0)
        assert torch.all(t == 0)

    def test_clone_is_independent(self):
        x = VectorSpace(3).create(1.0)
        y = x.clone()
        y.fill(2.0)
        assert torch.all(x.data == 1.0)


class TestVectorOperations:
    """Tests for reductions and in-place operations."""

    def setup_method(self):
        self.space = VectorSpace(3)
        self.x = self.space.wrap(torch.tensor([1.0, -2.0, 2.0], dtype=torch.float64))
        self.y = self.space.wrap(torch.tensor([0.5, 1.0, 3.0], dtype=torch.float64))

    def test_norms(self):
        assert self.x.norm1() == pytest.approx(5.0)
        assert self.x.norm2() == pytest.approx(3.0)
        assert self.x.norm_inf() == pytest.approx(2.0)

    def test_dot(self):
        assert self.x.dot(self.y) == pytest.approx(0.5 - 2.0 + 6.0)

    def test_dot_is_squared_norm(self):
        assert self.x.dot(self.x) == pytest.approx(self.x.norm2() ** 2)

    def test_triple_product(self):
        w = self.space.wrap(torch.tensor([2.0, 0.0, -1.0], dtype=torch.float64))
        assert self.space.dot3(w, self.x, self.y) == pytest.approx(1.0 + 0.0 - 6.0)

    def test_triple_product_checks_spaces(self):
        other = VectorSpace(3, dtype=torch.float32).create(1.0)
        with pytest.raises(IncorrectSpaceError):
            self.space.dot3(other, self.x, self.y)

    def test_combine_self_difference_is_zero(self):
        dst = self.space.create(7.0)
        self.space.combine(1.0, self.x, -1.0, self.x, dst)
        assert torch.all(dst.data == 0)

    def test_multiply(self):
        dst = self.space.create()
        self.space.multiply(self.x, self.y, dst)
        torch.testing.assert_close(
            dst.data, torch.tensor([0.5, -2.0, 6.0], dtype=torch.float64)
        )
        # in place into the second operand by default
        self.space.multiply(self.x, self.y)
        torch.testing.assert_close(self.y.data, dst.data)

    def test_fill(self):
        self.space.fill(self.x, 4.5)
        assert torch.all(self.x.data == 4.5)
        self.y.fill(-1.0)
        assert torch.all(self.y.data == -1.0)

    def test_combine_defaults_to_y(self):
        self.space.combine(2.0, self.x, -1.0, self.y)
        torch.testing.assert_close(
            self.y.data, torch.tensor([1.5, -5.0, 1.0], dtype=torch.float64)
        )

    def test_combine_zero_coefficient_discards_nan(self):
        self.y.data[1] = math.nan
        dst = self.space.create()
        self.space.combine(1.0, self.x, 0.0, self.y, dst)
        torch.testing.assert_close(dst.data, self.x.data)

    def test_vector_combine_stores_in_self(self):
        z = self.space.create()
        z.combine(1.0, self.x, 1.0, self.y)
        torch.testing.assert_close(z.data, self.x.data + self.y.data)

    def test_scale_zero_clears_nan(self):
        self.x.data[0] = math.nan
        self.x.scale(0.0)
        assert torch.all(self.x.data == 0)

    def test_copy_from(self):
        self.x.copy_from(self.y)
        torch.testing.assert_close(self.x.data, self.y.data)

    def test_swap(self):
        x0, y0 = self.x.data.clone(), self.y.data.clone()
        self.space.swap(self.x, self.y)
        torch.testing.assert_close(self.x.data, y0)
        torch.testing.assert_close(self.y.data, x0)

    def test_numpy(self):
        np.testing.assert_allclose(self.x.numpy(), [1.0, -2.0, 2.0])

    def test_foreign_operand(self):
        other = VectorSpace(3, dtype=torch.float32).create()
        with pytest.raises(IncorrectSpaceError):
            self.space.dot(self.x, other)


class TestSimpleOperators:
    """Tests for identity, diagonal and dense operators."""

    def test_identity(self):
        space = VectorSpace(3)
        x = space.create(2.0)
        y = IdentityOperator(space)(x)
        torch.testing.assert_close(y.data, x.data)

    def test_diagonal_inverse(self):
        space = VectorSpace(3)
        d = space.wrap(torch.tensor([1.0, 2.0, 4.0], dtype=torch.float64))
        op = DiagonalOperator(d)
        x = space.create(4.0)
        y = op(x, Job.INVERSE)
        torch.testing.assert_close(y.data, torch.tensor([4.0, 2.0, 1.0], dtype=torch.float64))

    def test_dense_adjoint(self):
        torch.manual_seed(42)
        a = VectorSpace(3)
        b = VectorSpace(2)
        m = torch.randn(2, 3, dtype=torch.float64)
        op = DenseOperator(m, a, b)
        x = a.wrap(torch.randn(3, dtype=torch.float64))
        y = b.wrap(torch.randn(2, dtype=torch.float64))
        lhs = op(x).dot(y)
        rhs = x.dot(op(y, Job.ADJOINT))
        assert lhs == pytest.approx(rhs, rel=1e-12)

    def test_dense_wrong_shape(self):
        with pytest.raises(ValueError):
            DenseOperator(torch.zeros(3, 3), VectorSpace(3), VectorSpace(2))

    def test_apply_checks_spaces(self):
        a = VectorSpace(3)
        b = VectorSpace(2)
        op = DenseOperator(torch.zeros(2, 3, dtype=torch.float64), a, b)
        with pytest.raises(IncorrectSpaceError):
            op.apply(a.create(), a.create())

    def test_rectangular_inverse(self):
        a = VectorSpace(3)
        b = VectorSpace(2)
        op = DenseOperator(torch.ones(2, 3, dtype=torch.float64), a, b)
        with pytest.raises(NotImplementedError):
            op(b.create(), Job.INVERSE)

    def test_endomorphism_rejects_distinct_spaces(self):
        with pytest.raises(IncorrectSpaceError):
            LinearEndomorphism(VectorSpace(3), VectorSpace(4))
