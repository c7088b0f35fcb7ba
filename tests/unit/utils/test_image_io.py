# tests/unit/utils/test_image_io.py
"""Tests for the image I/O collaborator."""

import numpy as np
import pytest
import tifffile

from stackwarp.utils.image_io import ImageIO, has_extension


@pytest.fixture
def image_io():
    return ImageIO()


class TestListing:
    """Tests for directory listing."""

    def test_sorted_and_filtered(self, image_io, tmp_path):
        for name in ["b.tif", "a.PNG", "c.txt", "README", "d.xml"]:
            (tmp_path / name).write_bytes(b"")
        (tmp_path / "sub.tif").mkdir()

        assert image_io.list_files(tmp_path, (".tif", ".png")) == ["a.PNG", "b.tif"]
        assert image_io.list_files(tmp_path, (".xml",)) == ["d.xml"]

    def test_missing_directory(self, image_io, tmp_path):
        with pytest.raises(FileNotFoundError):
            image_io.list_files(tmp_path / "missing", (".tif",))

    def test_has_extension(self):
        assert has_extension("x.TIFF", (".tiff",))
        assert not has_extension("tiff", (".tiff",))


class TestReadWrite:
    """Tests for reading and writing pixel buffers."""

    def test_tiff_keeps_bit_depth(self, image_io, tmp_path):
        image = np.arange(12 * 10, dtype=np.uint16).reshape(12, 10) * 300
        path = image_io.write_image(tmp_path / "gray.tif", image)

        loaded = image_io.read_image(path)

        assert loaded.dtype == np.uint16
        np.testing.assert_array_equal(loaded, image)
        assert image_io.read_image_size(path) == (10, 12)

    def test_tiff_float(self, image_io, tmp_path):
        image = np.linspace(-1, 1, 30, dtype=np.float32).reshape(5, 6)
        path = image_io.write_image(tmp_path / "float.tif", image)

        np.testing.assert_array_equal(image_io.read_image(path), image)

    def test_png_keeps_channel_order(self, image_io, tmp_path):
        image = np.zeros((4, 5, 3), dtype=np.uint8)
        image[..., 0] = 255  # red
        path = image_io.write_image(tmp_path / "red.png", image)

        loaded = image_io.read_image(path)

        np.testing.assert_array_equal(loaded, image)
        assert image_io.read_image_size(path) == (5, 4)

    def test_rgb_tiff(self, image_io, tmp_path):
        rng = np.random.default_rng(1)
        image = rng.integers(0, 255, size=(6, 7, 3), dtype=np.uint8)
        path = image_io.write_image(tmp_path / "rgb.tif", image)

        np.testing.assert_array_equal(tifffile.imread(str(path)), image)

    def test_unreadable_image(self, image_io, tmp_path):
        path = tmp_path / "broken.png"
        path.write_bytes(b"not an image")

        with pytest.raises(OSError):
            image_io.read_image(path)

    def test_unreadable_tiff(self, image_io, tmp_path):
        path = tmp_path / "broken.tif"
        path.write_bytes(b"not a tiff at all")

        with pytest.raises(OSError):
            image_io.read_image(path)
        with pytest.raises(OSError):
            image_io.read_image_size(path)
