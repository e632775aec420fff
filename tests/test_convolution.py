"""Tests for FFT convolution operators and the convolution cost.

Uses the dot-product test to verify adjoint correctness:
    ⟨A(x), y⟩ = ⟨x, A^T(y)⟩
"""

import numpy as np
import pytest
import torch

from invlib.deconvolution import (
    ConvolutionOperator,
    WeightedConvolutionCost,
    WeightedConvolutionOperator,
    best_fft_length,
    output_window,
)
from invlib.linalg import IncorrectSpaceError, Job, VectorSpace


def dot_product_test(op, rtol: float = 1e-10) -> float:
    """Check ⟨A x, y⟩ = ⟨x, Aᵀ y⟩ for random x and y and return the error."""
    torch.manual_seed(42)
    x = op.input_space.wrap(torch.randn(op.input_space.shape, dtype=torch.float64))
    y = op.output_space.wrap(torch.randn(op.output_space.shape, dtype=torch.float64))
    lhs = op(x).dot(y)
    rhs = x.dot(op(y, Job.ADJOINT))
    rel_error = abs(lhs - rhs) / (0.5 * (abs(lhs) + abs(rhs)) + 1e-12)
    assert rel_error < rtol, (
        f"Dot-product test failed: ⟨Ax, y⟩ = {lhs:.12e}, ⟨x, A^T y⟩ = {rhs:.12e}, "
        f"relative error = {rel_error:.2e}"
    )
    return rel_error


def gaussian_psf(shape, sigma: float = 1.5) -> torch.Tensor:
    grids = torch.meshgrid(
        *[torch.arange(n, dtype=torch.float64) - n // 2 for n in shape], indexing="ij"
    )
    r2 = sum(g * g for g in grids)
    return torch.exp(-0.5 * r2 / sigma ** 2)


class TestBestFFTLength:
    """Tests for best_fft_length."""

    @pytest.mark.parametrize(
        "n, expected",
        [(0, 1), (1, 1), (7, 8), (11, 12), (97, 100), (128, 128), (1001, 1024)],
    )
    def test_values(self, n, expected):
        assert best_fft_length(n) == expected


class TestOutputWindow:
    """Tests for output_window."""

    def test_centred(self):
        assert output_window((10, 9), (4, 9)) == (slice(3, 7), slice(0, 9))

    def test_explicit_offset(self):
        assert output_window((10,), (4,), offset=(6,)) == (slice(6, 10),)

    def test_too_large(self):
        with pytest.raises(ValueError):
            output_window((4,), (5,))

    def test_outside(self):
        with pytest.raises(ValueError):
            output_window((10,), (4,), offset=(7,))

    def test_rank_mismatch(self):
        with pytest.raises(ValueError):
            output_window((10, 10), (4,))


class TestConvolutionOperator:
    """Tests for ConvolutionOperator."""

    def test_centred_delta_is_identity(self):
        space = VectorSpace(8)
        H = ConvolutionOperator(space)
        psf = torch.zeros(5, dtype=torch.float64)
        psf[2] = 1.0
        H.set_psf(psf)
        x = space.wrap(torch.randn(8, dtype=torch.float64))
        torch.testing.assert_close(H(x).data, x.data)

    def test_off_centre_delta_shifts(self):
        space = VectorSpace(8)
        H = ConvolutionOperator(space)
        psf = np.zeros(5)
        psf[3] = 1.0
        H.set_psf(psf)
        x = space.wrap(torch.arange(8, dtype=torch.float64))
        torch.testing.assert_close(H(x).data, torch.roll(x.data, 1))

    def test_explicit_centre(self):
        space = VectorSpace(8)
        H = ConvolutionOperator(space)
        psf = torch.zeros(5, dtype=torch.float64)
        psf[0] = 1.0
        H.set_psf(psf, center=(0,))
        x = space.wrap(torch.arange(8, dtype=torch.float64))
        torch.testing.assert_close(H(x).data, x.data)

    def test_normalize(self):
        space = VectorSpace((6, 6))
        H = ConvolutionOperator(space)
        H.set_psf(3.0 * gaussian_psf((5, 5)), normalize=True)
        x = space.create(2.0)
        torch.testing.assert_close(H(x).data, x.data)

    def test_cropped_window(self):
        obj = VectorSpace((12, 10))
        data = VectorSpace((8, 7))
        H = ConvolutionOperator(obj, data)
        psf = torch.zeros(3, 3, dtype=torch.float64)
        psf[1, 1] = 1.0
        H.set_psf(psf)
        x = obj.wrap(torch.randn(12, 10, dtype=torch.float64))
        torch.testing.assert_close(H(x).data, x.data[2:10, 2:9])
        assert H.offset == (2, 2)

    @pytest.mark.parametrize(
        "obj_shape, data_shape",
        [((32,), (32,)), ((32,), (25,)), ((16, 18), (11, 18)), ((8, 10, 12), (5, 7, 9))],
    )
    def test_adjoint(self, obj_shape, data_shape):
        H = ConvolutionOperator(VectorSpace(obj_shape), VectorSpace(data_shape))
        H.set_psf(gaussian_psf(tuple(min(n, 5) for n in obj_shape)))
        dot_product_test(H)

    def test_single_precision(self):
        obj = VectorSpace((16, 16), dtype=torch.float32)
        H = ConvolutionOperator(obj)
        H.set_psf(gaussian_psf((5, 5)), normalize=True)
        y = H(obj.create(1.0))
        assert y.data.dtype == torch.float32
        torch.testing.assert_close(y.data, torch.ones(16, 16), atol=1e-5, rtol=0)

    def test_otf_is_cached(self):
        H = ConvolutionOperator(VectorSpace(8))
        H.set_psf(gaussian_psf((3,)))
        assert H.otf is H.otf

    def test_no_psf(self):
        H = ConvolutionOperator(VectorSpace(8))
        with pytest.raises(RuntimeError):
            H(VectorSpace(8).create())

    def test_invalid_psf(self):
        H = ConvolutionOperator(VectorSpace(8))
        with pytest.raises(ValueError):
            H.set_psf(torch.ones(9, dtype=torch.float64))
        with pytest.raises(ValueError):
            H.set_psf(torch.ones(3, 3, dtype=torch.float64))
        with pytest.raises(ValueError):
            H.set_psf(torch.zeros(3, dtype=torch.float64), normalize=True)

    def test_no_inverse(self):
        space = VectorSpace(8)
        H = ConvolutionOperator(space)
        H.set_psf(gaussian_psf((3,)))
        with pytest.raises(NotImplementedError):
            H(space.create(), Job.INVERSE)

    def test_precision_mismatch(self):
        with pytest.raises(ValueError):
            ConvolutionOperator(VectorSpace(8), VectorSpace(8, dtype=torch.float32))


class TestWeightedConvolutionOperator:
    """Tests for WeightedConvolutionOperator."""

    def test_adjoint(self):
        torch.manual_seed(1)
        obj = VectorSpace((12, 12))
        data = VectorSpace((9, 10))
        A = WeightedConvolutionOperator(obj, data, weights=torch.rand(9, 10, dtype=torch.float64))
        A.set_psf(gaussian_psf((5, 5)))
        dot_product_test(A)

    def test_weighting(self):
        space = VectorSpace(4)
        w = torch.tensor([4.0, 1.0, 0.0, 9.0], dtype=torch.float64)
        A = WeightedConvolutionOperator(space, weights=w)
        A.set_psf(torch.tensor([0.0, 1.0, 0.0], dtype=torch.float64))
        y = A(space.create(1.0))
        torch.testing.assert_close(y.data, torch.tensor([2.0, 1.0, 0.0, 3.0], dtype=torch.float64))

    def test_negative_weights(self):
        with pytest.raises(ValueError):
            WeightedConvolutionOperator(
                VectorSpace(3), weights=torch.tensor([1.0, -1.0, 1.0], dtype=torch.float64)
            )


class TestWeightedConvolutionCost:
    """Tests for the fused convolution cost."""

    def setup_method(self):
        torch.manual_seed(2)
        self.obj = VectorSpace((14, 13))
        self.data = VectorSpace((10, 9))
        self.psf = gaussian_psf((5, 5))
        self.y = torch.randn(10, 9, dtype=torch.float64)
        self.w = torch.rand(10, 9, dtype=torch.float64)

    def make_cost(self):
        f = WeightedConvolutionCost(self.obj, self.data)
        f.set_data(self.y)
        f.set_weights(self.w)
        f.set_psf(self.psf, normalize=True)
        return f

    def test_value(self):
        f = self.make_cost()
        H = ConvolutionOperator(self.obj, self.data)
        H.set_psf(self.psf, normalize=True)
        x = self.obj.wrap(torch.randn(14, 13, dtype=torch.float64))
        r = H(x).data - self.y
        expected = 0.5 * float(torch.sum(self.w * r * r))
        assert f.evaluate(2.0, x) == pytest.approx(2.0 * expected)
        assert f.evaluations == 1

    def test_gradient(self):
        f = self.make_cost()
        x = self.obj.wrap(torch.randn(14, 13, dtype=torch.float64))
        gx = self.obj.create()
        fx = f.compute_cost_and_gradient(1.0, x, gx)
        assert fx == pytest.approx(f.evaluate(1.0, x))
        h = 1e-6
        d = self.obj.wrap(torch.randn(14, 13, dtype=torch.float64))
        xp = self.obj.wrap(x.data + h * d.data)
        xm = self.obj.wrap(x.data - h * d.data)
        numeric = (f.evaluate(1.0, xp) - f.evaluate(1.0, xm)) / (2 * h)
        assert gx.dot(d) == pytest.approx(numeric, rel=1e-6)

    def test_accumulated_gradient(self):
        f = self.make_cost()
        x = self.obj.wrap(torch.randn(14, 13, dtype=torch.float64))
        g1 = self.obj.create()
        f.compute_cost_and_gradient(1.0, x, g1)
        g2 = self.obj.create(1.0)
        f.compute_cost_and_gradient(1.0, x, g2, clear=False)
        torch.testing.assert_close(g2.data, g1.data + 1.0)

    def test_spaces(self):
        f = self.make_cost()
        assert f.input_space == self.obj
        assert f.data_space == self.data
        with pytest.raises(IncorrectSpaceError):
            f.evaluate(1.0, self.data.create())

    def test_reset_timers(self):
        f = self.make_cost()
        f.evaluate(1.0, self.obj.create())
        f.reset_timers()
        assert f.evaluations == 0
        assert f.elapsed_time == 0.0

    def test_precision_mismatch(self):
        with pytest.raises(IncorrectSpaceError):
            WeightedConvolutionCost(self.obj, VectorSpace((10, 9), dtype=torch.float32))
