"""Shared fixtures for stackwarp tests."""

from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import pytest
import tifffile


def make_descriptor(segments: Sequence[tuple]) -> str:
    """Descriptor text for (kind, data) segments."""
    lines = ["<ict_transform_list>"]
    for kind, data in segments:
        lines.append(
            f'\t<iict_transform class="mpicbg.trakem2.transform.{kind}" data="{data}" />'
        )
    lines.append("</ict_transform_list>")
    return "\n".join(lines) + "\n"


def write_stack(
    root: Path,
    n_images: int,
    n_transforms: Optional[int] = None,
    size=(24, 16),
    transforms: Optional[List[str]] = None,
):
    """Create source and transform folders with identity-like descriptors.

    Returns:
        (source_dir, transform_dir, images)
    """
    source_dir = root / "source"
    transform_dir = root / "transforms"
    source_dir.mkdir()
    transform_dir.mkdir()

    width, height = size
    rng = np.random.default_rng(42)
    images = []
    for i in range(n_images):
        image = rng.integers(0, 255, size=(height, width), dtype=np.uint8)
        tifffile.imwrite(str(source_dir / f"slice_{i:03d}.tif"), image)
        images.append(image)

    n_transforms = n_images if n_transforms is None else n_transforms
    for i in range(n_transforms):
        data = transforms[i] if transforms else "0.0 0.0"
        (transform_dir / f"slice_{i:03d}.xml").write_text(
            make_descriptor([("TranslationModel2D", data)])
        )
    return source_dir, transform_dir, images


@pytest.fixture
def gradient_image():
    """Float image with distinct values per pixel."""
    h, w = 16, 20
    y, x = np.mgrid[0:h, 0:w]
    return (x * 1.5 + y * 7.25).astype(np.float64)


@pytest.fixture
def random_uint8_image():
    rng = np.random.default_rng(7)
    return rng.integers(0, 255, size=(18, 22), dtype=np.uint8)
