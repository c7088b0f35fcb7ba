"""
Image and file listing I/O for the batch driver

TIFF files go through tifffile so 16/32-bit and multi-channel data keep their
depth; other formats go through OpenCV. Color arrays are RGB(A) in memory.
"""

import logging
from pathlib import Path
from typing import Iterable, List, Tuple, Union

import cv2
import numpy as np
import tifffile
from PIL import Image

logger = logging.getLogger(__name__)

TIFF_EXTENSIONS = ('.tif', '.tiff')

PathLike = Union[str, Path]


def has_extension(name: str, extensions: Iterable[str]) -> bool:
    """Case-insensitive check of the last suffix"""
    suffix = Path(name).suffix.lower()
    return bool(suffix) and suffix in {e.lower() for e in extensions}


class ImageIO:
    """File-system collaborator used by the batch driver"""

    def list_files(self, directory: PathLike, extensions: Iterable[str]) -> List[str]:
        """
        List file names with a recognized extension

        Args:
            directory: Directory to scan (not recursive)
            extensions: Accepted suffixes, e.g. ('.tif', '.png')

        Returns:
            Lexicographically sorted file names
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise FileNotFoundError(f"Directory does not exist: {directory}")
        extensions = tuple(extensions)
        return sorted(
            p.name for p in directory.iterdir()
            if p.is_file() and has_extension(p.name, extensions)
        )

    def read_image(self, path: PathLike) -> np.ndarray:
        """
        Load an image keeping its bit depth

        Returns:
            (H, W) or (H, W, C) array
        """
        path = Path(path)
        if path.suffix.lower() in TIFF_EXTENSIONS:
            try:
                image = tifffile.imread(str(path), key=0)
            except tifffile.TiffFileError as e:
                raise OSError(f"Could not load image: {path} ({e})") from e
        else:
            image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
            if image is None:
                raise OSError(f"Could not load image: {path}")
            if image.ndim == 3 and image.shape[2] == 3:
                image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
            elif image.ndim == 3 and image.shape[2] == 4:
                image = cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
        logger.debug(f"Loaded {path.name}: shape={image.shape}, dtype={image.dtype}")
        return image

    def read_image_size(self, path: PathLike) -> Tuple[int, int]:
        """
        Read image (width, height) from the file header only
        """
        path = Path(path)
        if path.suffix.lower() in TIFF_EXTENSIONS:
            try:
                with tifffile.TiffFile(str(path)) as tif:
                    page = tif.pages[0]
                    return int(page.imagewidth), int(page.imagelength)
            except tifffile.TiffFileError as e:
                raise OSError(f"Could not read image header: {path} ({e})") from e
        with Image.open(str(path)) as img:
            return img.size

    def write_image(self, path: PathLike, image: np.ndarray) -> Path:
        """
        Save an image, format chosen by suffix

        Raises:
            OSError: The file could not be written
        """
        path = Path(path)
        if path.suffix.lower() in TIFF_EXTENSIONS:
            is_color = image.ndim == 3 and image.shape[2] in (3, 4)
            tifffile.imwrite(
                str(path),
                image,
                photometric='rgb' if is_color else 'minisblack'
            )
        else:
            if image.ndim == 3 and image.shape[2] == 3:
                image = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)
            elif image.ndim == 3 and image.shape[2] == 4:
                image = cv2.cvtColor(image, cv2.COLOR_RGBA2BGRA)
            if not cv2.imwrite(str(path), image):
                raise OSError(f"OpenCV could not write {path}")
        logger.debug(f"Saved {path.name}: shape={image.shape}, dtype={image.dtype}")
        return path
