import numpy as np
import pytest

from dicimage import ConstructionError, FormatError, Image, SubRegionError
from dicimage.io import read_image, read_rawi, read_rawi_dimensions, write_rawi, write_tiff


def test_rawi_round_trip_is_exact(tmp_path, noise_image):
    h, w = noise_image.shape
    img = Image.from_array(noise_image, w, h)
    path = tmp_path / "noise.rawi"
    img.write_rawi(path)

    assert read_rawi_dimensions(path) == (w, h)
    back = read_rawi(path)
    assert back.dtype == np.float64
    np.testing.assert_array_equal(back, noise_image)

    loaded = Image.from_file(path)
    assert (loaded.width, loaded.height) == (w, h)
    np.testing.assert_array_equal(loaded.intensities(), img.intensities())


def test_rawi_layout(tmp_path):
    path = tmp_path / "small.rawi"
    write_rawi(path, np.array([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]]))
    raw = path.read_bytes()
    assert np.frombuffer(raw[:12], dtype="<u4").tolist() == [3, 2, 8]
    assert np.frombuffer(raw[12:], dtype="<f8").tolist() == [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]


def test_rawi_bad_header(tmp_path):
    short = tmp_path / "short.rawi"
    short.write_bytes(b"\x01\x00")
    with pytest.raises(FormatError):
        read_rawi(short)

    wrong_width = tmp_path / "f32.rawi"
    np.array([2, 2, 4], dtype="<u4").tofile(wrong_width)
    with pytest.raises(FormatError):
        read_rawi_dimensions(wrong_width)

    truncated = tmp_path / "truncated.rawi"
    with open(truncated, "wb") as f:
        np.array([4, 4, 8], dtype="<u4").tofile(f)
        np.zeros(5, dtype="<f8").tofile(f)
    with pytest.raises(FormatError):
        read_rawi(truncated)


def test_file_region(tmp_path):
    data = np.arange(2500, dtype=np.float64).reshape(50, 50)
    path = tmp_path / "parent.rawi"
    write_rawi(path, data)

    sub = Image.from_file(path, 5, 5, 20, 20)
    assert (sub.offset_x, sub.offset_y) == (5, 5)
    assert (sub.width, sub.height) == (20, 20)
    np.testing.assert_array_equal(sub.intensities(), data[5:25, 5:25])

    with pytest.raises(SubRegionError):
        Image.from_file(path, 5, 5, 50, 20)
    with pytest.raises(FormatError):
        Image.from_file(path, 5, 5, 20, 50)
    with pytest.raises(ConstructionError):
        Image.from_file(path, 5, 5, 20)


def test_tiff_is_truncated_to_8_bit(tmp_path):
    data = np.array([[0.4, 1.7, 254.99], [300.0, -5.0, 128.5]])
    img = Image.from_array(data, 3, 2)
    path = tmp_path / "out.tif"
    img.write_tiff(path)

    back = read_image(path)
    assert back.dtype == np.float64
    np.testing.assert_array_equal(back, [[0.0, 1.0, 254.0], [255.0, 0.0, 128.0]])

    loaded = Image.from_file(path, 1, 0, 2, 2)
    assert loaded.at(0, 0) == 1.0
    assert loaded.at(1, 1) == 128.0


def test_undecodable_file(tmp_path):
    path = tmp_path / "junk.png"
    path.write_bytes(b"definitely not an image")
    with pytest.raises(FormatError):
        Image.from_file(path)
    with pytest.raises(FormatError):
        Image.from_file(tmp_path / "missing.tif")


def test_unwritable_target(tmp_path):
    img = Image.from_array(np.zeros(4), 2, 2)
    with pytest.raises(FormatError):
        img.write_rawi(tmp_path / "no_such_dir" / "a.rawi")
    with pytest.raises(FormatError):
        img.write_tiff(tmp_path / "no_such_dir" / "a.tif")
    with pytest.raises(FormatError):
        write_tiff(tmp_path / "a.tif", np.zeros((0, 0)))
