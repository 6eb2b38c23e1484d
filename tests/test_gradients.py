import numpy as np
import pytest

from dicimage import AccessError, Image
from dicimage.config import GRAD_C1, GRAD_C2
from reference import reference_gradients

RTOL = 1e-9


def _ramp(width, height, a, b, c):
    y, x = np.mgrid[0:height, 0:width].astype(np.float64)
    return a * x + b * y + c


def test_stencil_coefficients():
    # 4th-order central difference (f(-2) - 8 f(-1) + 8 f(1) - f(2)) / 12
    assert GRAD_C1 == pytest.approx(1.0 / 12.0)
    assert GRAD_C2 == pytest.approx(8.0 / 12.0)


@pytest.mark.parametrize("hierarchical", [False, True])
def test_linear_ramp_gradient_is_constant(hierarchical):
    a, b = 1.5, -0.75
    img = Image.from_array(_ramp(12, 10, a, b, 10.0), 12, 10)
    img.compute_gradients(use_hierarchical_parallelism=hierarchical, team_size=8)
    gx, gy = img.gradients()

    np.testing.assert_allclose(gx[2:-2, 2:-2], a, rtol=RTOL)
    np.testing.assert_allclose(gy[2:-2, 2:-2], b, rtol=RTOL)
    # every stencil is exact on a linear field
    np.testing.assert_allclose(gx, a, rtol=RTOL)
    np.testing.assert_allclose(gy, b, rtol=RTOL)


def test_boundary_stencils_on_cubic():
    # I = x^3: the 4th-order stencil is exact (3x^2), the 2-point central
    # difference is off by +1, the edges use one-sided differences
    w, h = 7, 5
    data = np.tile(np.arange(w, dtype=np.float64) ** 3, (h, 1))
    img = Image.from_array(data, w, h)
    img.compute_gradients()

    # y = 2 is the only interior row
    assert img.grad_x(2, 2) == pytest.approx(12.0)
    assert img.grad_x(3, 2) == pytest.approx(27.0)
    assert img.grad_x(4, 2) == pytest.approx(48.0)

    # within two pixels of an edge
    assert img.grad_x(1, 2) == pytest.approx(4.0)
    assert img.grad_x(5, 2) == pytest.approx(76.0)
    assert img.grad_x(2, 0) == pytest.approx(13.0)
    assert img.grad_x(3, 1) == pytest.approx(28.0)
    assert img.grad_x(3, 4) == pytest.approx(28.0)

    # first and last columns
    assert img.grad_x(0, 2) == pytest.approx(1.0)
    assert img.grad_x(6, 2) == pytest.approx(216.0 - 125.0)

    np.testing.assert_array_equal(img.gradients()[1], 0.0)


def test_one_sided_difference_on_edge_rows():
    data = np.array([[0.0, 0.0], [1.0, 10.0], [4.0, 30.0]])
    img = Image.from_array(data, 2, 3)
    img.compute_gradients()
    gx, gy = img.gradients()

    np.testing.assert_allclose(gx[:, 0], [0.0, 9.0, 26.0])
    np.testing.assert_allclose(gx[:, 1], [0.0, 9.0, 26.0])
    np.testing.assert_allclose(gy[:, 0], [1.0, 2.0, 3.0])
    np.testing.assert_allclose(gy[:, 1], [10.0, 15.0, 20.0])


def test_single_column_has_zero_x_gradient():
    img = Image.from_array([1.0, 5.0, 2.0, 8.0], 1, 4)
    img.compute_gradients()
    gx, gy = img.gradients()
    np.testing.assert_array_equal(gx, 0.0)
    np.testing.assert_allclose(gy[:, 0], [4.0, 0.5, 1.5, 6.0])


@pytest.mark.parametrize("hierarchical", [False, True])
def test_spike_gradient_is_local(spike_image, hierarchical):
    img = Image.from_array(spike_image, 10, 10)
    img.compute_gradients(use_hierarchical_parallelism=hierarchical, team_size=4)
    gx, gy = img.gradients()

    neighborhood = np.zeros((10, 10), dtype=bool)
    neighborhood[3:8, 3:8] = True
    assert np.count_nonzero(gx) > 0
    assert np.count_nonzero(gy) > 0
    assert not gx[~neighborhood].any()
    assert not gy[~neighborhood].any()

    assert img.grad_x(3, 5) == pytest.approx(-100.0 / 12.0)
    assert img.grad_x(4, 5) == pytest.approx(800.0 / 12.0)
    assert img.grad_x(5, 5) == pytest.approx(0.0)
    assert img.grad_x(6, 5) == pytest.approx(-800.0 / 12.0)
    assert img.grad_x(7, 5) == pytest.approx(100.0 / 12.0)
    assert img.grad_y(5, 4) == pytest.approx(800.0 / 12.0)
    assert img.grad_y(5, 7) == pytest.approx(100.0 / 12.0)


def test_matches_reference(noise_image):
    h, w = noise_image.shape
    img = Image.from_array(noise_image, w, h)
    img.compute_gradients()
    gx_ref, gy_ref = reference_gradients(noise_image)
    gx, gy = img.gradients()
    np.testing.assert_allclose(gx, gx_ref, rtol=RTOL, atol=1e-12)
    np.testing.assert_allclose(gy, gy_ref, rtol=RTOL, atol=1e-12)


@pytest.mark.parametrize("team_size", [1, 5, 8, 256])
def test_flat_and_hierarchical_agree(noise_image, team_size):
    h, w = noise_image.shape
    flat = Image.from_array(noise_image, w, h)
    flat.compute_gradients()
    team = Image.from_array(noise_image, w, h)
    team.compute_gradients(use_hierarchical_parallelism=True, team_size=team_size)

    for a, b in zip(flat.gradients(), team.gradients()):
        np.testing.assert_allclose(b, a, rtol=RTOL, atol=1e-12)


def test_gradient_access_requires_computation(noise_image):
    h, w = noise_image.shape
    img = Image.from_array(noise_image, w, h)
    assert not img.has_gradients
    with pytest.raises(AccessError):
        img.grad_x(0, 0)
    with pytest.raises(AccessError):
        img.grad_y(0, 0)
    with pytest.raises(AccessError):
        img.gradients()

    img.compute_gradients()
    assert img.has_gradients
    with pytest.raises(AccessError):
        img.grad_x(w, 0)
    with pytest.raises(AccessError):
        img.grad_y(0, h)


def test_gradients_follow_in_place_writes(noise_image):
    h, w = noise_image.shape
    img = Image.from_array(noise_image, w, h)
    img.compute_gradients()
    img.intensities()[:] = _ramp(w, h, 2.0, 3.0, 0.0)
    img.compute_gradients()
    np.testing.assert_allclose(img.gradients()[0], 2.0, rtol=RTOL)
    np.testing.assert_allclose(img.gradients()[1], 3.0, rtol=RTOL)
