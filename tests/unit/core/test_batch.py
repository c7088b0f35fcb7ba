# tests/unit/core/test_batch.py
"""Tests for the batch driver."""

import numpy as np
import pytest
import tifffile

from conftest import make_descriptor, write_stack
from stackwarp.core.batch import BatchDriver, check_range, transform_stack
from stackwarp.core.errors import (
    ConfigError,
    CountMismatchError,
    InvalidParameterError,
    OutputError,
    ParseError,
    RangeError,
)
from stackwarp.utils.config import BatchConfig
from stackwarp.utils.image_io import ImageIO


def make_config(tmp_path, source_dir, transform_dir, **overrides):
    values = dict(
        source_dir=source_dir,
        output_dir=tmp_path / "output",
        transform_dir=transform_dir,
        interpolate=False,
        mesh_resolution=4,
        max_workers=2,
    )
    values.update(overrides)
    return BatchConfig(**values)


class FailingWriteIO(ImageIO):
    """ImageIO whose writes fail for one file name."""

    def __init__(self, failing_name):
        self.failing_name = failing_name

    def write_image(self, path, image):
        if path.name == self.failing_name:
            raise OSError("disk full")
        return super().write_image(path, image)


class TestBatchDriver:
    """Tests for BatchDriver.run."""

    def test_identity_stack(self, tmp_path):
        source_dir, transform_dir, images = write_stack(tmp_path, 3)
        config = make_config(tmp_path, source_dir, transform_dir)

        results = BatchDriver(config).run()

        assert [r.index for r in results] == [0, 1, 2]
        for result, image in zip(results, images):
            assert result.output_path.name == f"slice_{result.index:03d}.tif"
            np.testing.assert_array_equal(tifffile.imread(str(result.output_path)), image)

    def test_count_mismatch_writes_nothing(self, tmp_path):
        source_dir, transform_dir, _ = write_stack(tmp_path, 3, n_transforms=2)
        config = make_config(tmp_path, source_dir, transform_dir)

        with pytest.raises(CountMismatchError) as exc_info:
            BatchDriver(config).run()

        assert exc_info.value.n_sources == 3
        assert exc_info.value.n_transforms == 2
        assert not (tmp_path / "output").exists()

    def test_sub_range(self, tmp_path):
        source_dir, transform_dir, _ = write_stack(tmp_path, 5)
        config = make_config(tmp_path, source_dir, transform_dir, first=1, last=3)

        results = BatchDriver(config).run()

        assert [r.index for r in results] == [1, 2]
        written = sorted(p.name for p in (tmp_path / "output").iterdir())
        assert written == ["slice_001.tif", "slice_002.tif"]

    @pytest.mark.parametrize("first,last", [(-1, 2), (3, 1), (1, 5), (0, 7)])
    def test_invalid_range(self, tmp_path, first, last):
        source_dir, transform_dir, _ = write_stack(tmp_path, 5)
        config = make_config(tmp_path, source_dir, transform_dir, first=first, last=last)

        with pytest.raises(RangeError):
            BatchDriver(config).run()

        assert not (tmp_path / "output").exists()

    def test_unknown_kind_aborts_before_writing(self, tmp_path):
        source_dir, transform_dir, _ = write_stack(tmp_path, 3)
        (transform_dir / "slice_001.xml").write_text(make_descriptor([("CurvedModel2D", "1 2")]))
        config = make_config(tmp_path, source_dir, transform_dir)

        with pytest.raises(ParseError, match="slice_001.xml"):
            BatchDriver(config).run()

        assert not (tmp_path / "output" / "slice_001.tif").exists()
        assert not (tmp_path / "output").exists()

    def test_bad_descriptor_outside_range_aborts(self, tmp_path):
        source_dir, transform_dir, _ = write_stack(tmp_path, 5)
        (transform_dir / "slice_004.xml").write_text(make_descriptor([("TranslationModel2D", "1 x")]))
        config = make_config(tmp_path, source_dir, transform_dir, first=0, last=2)

        with pytest.raises(ParseError, match="slice_004.xml") as exc_info:
            BatchDriver(config).run()

        assert exc_info.value.index == 4
        assert not (tmp_path / "output").exists()

    @pytest.mark.parametrize("data", ["nan 0", "inf 0"])
    def test_non_finite_payload_is_invalid_parameter(self, tmp_path, data):
        source_dir, transform_dir, _ = write_stack(tmp_path, 2)
        (transform_dir / "slice_001.xml").write_text(make_descriptor([("TranslationModel2D", data)]))
        config = make_config(tmp_path, source_dir, transform_dir)

        with pytest.raises(InvalidParameterError, match="slice_001.xml") as exc_info:
            BatchDriver(config).run()

        assert exc_info.value.index == 1
        assert not (tmp_path / "output").exists()

    def test_overflowing_mesh_is_parse_error(self, tmp_path):
        source_dir, transform_dir, _ = write_stack(tmp_path, 2)
        (transform_dir / "slice_000.xml").write_text(
            make_descriptor([("AffineModel2D", "1e308 0 0 1 0 0")])
        )
        config = make_config(tmp_path, source_dir, transform_dir)

        with pytest.raises(ParseError, match="non-finite") as exc_info:
            BatchDriver(config).run()

        assert exc_info.value.index == 0
        assert "slice_000.xml" in str(exc_info.value)
        assert not (tmp_path / "output").exists()

    def test_common_frame(self, tmp_path):
        source_dir, transform_dir, images = write_stack(
            tmp_path, 2, size=(10, 8), transforms=["0 0", "5 -2"]
        )
        config = make_config(tmp_path, source_dir, transform_dir)

        results = BatchDriver(config).run()

        first = tifffile.imread(str(results[0].output_path))
        second = tifffile.imread(str(results[1].output_path))
        # Union of (0, 0, 10, 8) and (5, -2, 10, 8)
        assert first.shape == second.shape == (10, 15)
        np.testing.assert_array_equal(first[2:10, 0:10], images[0])
        np.testing.assert_array_equal(second[0:8, 5:15], images[1])
        assert not first[0:2, :].any()

    def test_own_bounds_without_common_frame(self, tmp_path):
        source_dir, transform_dir, images = write_stack(
            tmp_path, 2, size=(10, 8), transforms=["0 0", "5.5 -2"]
        )
        config = make_config(tmp_path, source_dir, transform_dir, common_frame=False)

        results = BatchDriver(config).run()

        assert tifffile.imread(str(results[0].output_path)).shape == (8, 10)
        assert tifffile.imread(str(results[1].output_path)).shape == (8, 11)
        assert results[1].bbox.origin == (5, -2)

    def test_output_failure_is_reported(self, tmp_path):
        source_dir, transform_dir, _ = write_stack(tmp_path, 3)
        config = make_config(tmp_path, source_dir, transform_dir, max_workers=1)

        with pytest.raises(OutputError, match="disk full") as exc_info:
            BatchDriver(config, image_io=FailingWriteIO("slice_001.tif")).run()

        assert exc_info.value.index == 1
        assert (tmp_path / "output" / "slice_000.tif").exists()

    def test_cancel(self, tmp_path):
        source_dir, transform_dir, _ = write_stack(tmp_path, 2)
        config = make_config(tmp_path, source_dir, transform_dir)

        with pytest.raises(InterruptedError):
            BatchDriver(config, cancel_flag=lambda: True).run()

    def test_progress_reported(self, tmp_path):
        source_dir, transform_dir, _ = write_stack(tmp_path, 2)
        config = make_config(tmp_path, source_dir, transform_dir)
        updates = []

        BatchDriver(config, progress_callback=lambda p, m: updates.append(p)).run()

        assert updates[0] == 0
        assert updates[-1] == 100
        assert updates == sorted(updates)

    def test_default_worker_count(self, tmp_path):
        source_dir, transform_dir, _ = write_stack(tmp_path, 2)
        config = make_config(tmp_path, source_dir, transform_dir, max_workers=None)

        assert len(BatchDriver(config).run()) == 2

    def test_missing_directory(self, tmp_path):
        source_dir, _, _ = write_stack(tmp_path, 1)
        config = make_config(tmp_path, source_dir, tmp_path / "nowhere")

        with pytest.raises(ConfigError, match="does not exist"):
            BatchDriver(config).run()

    def test_output_name_collision(self, tmp_path):
        source_dir, transform_dir, images = write_stack(tmp_path, 1)
        tifffile.imwrite(str(source_dir / "slice_000.tiff"), images[0])
        (transform_dir / "slice_001.xml").write_text(make_descriptor([("TranslationModel2D", "0 0")]))
        config = make_config(tmp_path, source_dir, transform_dir)

        with pytest.raises(OutputError, match="would both be written"):
            BatchDriver(config).run()

    def test_transform_stack(self, tmp_path):
        source_dir, transform_dir, _ = write_stack(tmp_path, 2)

        assert transform_stack(source_dir, tmp_path / "out", transform_dir, interpolate=True, max_workers=1)
        assert sorted(p.name for p in (tmp_path / "out").iterdir()) == ["slice_000.tif", "slice_001.tif"]


class TestCheckRange:
    """Tests for sub-range validation."""

    def test_valid(self):
        check_range(0, 0, 1)
        check_range(1, 3, 5)

    def test_last_must_be_below_count(self):
        with pytest.raises(RangeError, match="wrong indexes|Wrong indexes"):
            check_range(0, 5, 5)
