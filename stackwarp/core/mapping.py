"""
Pixel mapping through a transform mesh

Each mesh triangle carries the affine map between its source and target
corners. Target pixels inside a triangle are pulled back through that map
and sampled from the source image, either nearest-neighbor or bilinear.
Pixels covered by no triangle keep the background value.
"""

import logging
import math
from typing import Optional, Tuple

import numpy as np

from .mesh import DEFAULT_MESH_RESOLUTION, Mesh, MeshBuilder, WorldBoundingBox
from .transforms import CompositeTransform, CoordinateTransform

logger = logging.getLogger(__name__)

# Tolerance on barycentric coordinates so pixels on shared edges are covered
_EDGE_EPSILON = 1e-9
# Triangles with smaller target area (times two) contribute no pixels
_DEGENERATE_AREA = 1e-9
# Source coordinates are snapped to this many decimals before pixel rounding
_COORDINATE_DECIMALS = 9


def _sample_nearest(source: np.ndarray, sx: np.ndarray, sy: np.ndarray) -> np.ndarray:
    h, w = source.shape[:2]
    ix = np.clip(np.floor(sx + 0.5), 0, w - 1).astype(np.intp)
    iy = np.clip(np.floor(sy + 0.5), 0, h - 1).astype(np.intp)
    return source[iy, ix]


def _sample_bilinear(source: np.ndarray, sx: np.ndarray, sy: np.ndarray) -> np.ndarray:
    h, w = source.shape[:2]
    sx = np.clip(sx, 0, w - 1)
    sy = np.clip(sy, 0, h - 1)
    x0 = np.floor(sx).astype(np.intp)
    y0 = np.floor(sy).astype(np.intp)
    x1 = np.minimum(x0 + 1, w - 1)
    y1 = np.minimum(y0 + 1, h - 1)

    # Broadcast weights over trailing channel axes
    shape = (-1,) + (1,) * (source.ndim - 2)
    fx = (sx - x0).reshape(shape)
    fy = (sy - y0).reshape(shape)

    top = source[y0, x0] * (1.0 - fx) + source[y0, x1] * fx
    bottom = source[y1, x0] * (1.0 - fx) + source[y1, x1] * fx
    values = top * (1.0 - fy) + bottom * fy

    if np.issubdtype(source.dtype, np.integer):
        info = np.iinfo(source.dtype)
        values = np.clip(np.rint(values), info.min, info.max)
    return values.astype(source.dtype)


class PixelMapper:
    """Renders a source image through a transform mesh"""

    def __init__(self, background: float = 0):
        """
        Args:
            background: Value of target pixels not covered by any triangle
        """
        self.background = background

    def map(
        self,
        mesh: Mesh,
        source: np.ndarray,
        interpolate: bool = True,
        bbox: Optional[WorldBoundingBox] = None
    ) -> np.ndarray:
        """
        Map a source image into world space

        Args:
            mesh: Mesh built for the source image size
            source: (H, W) or (H, W, C) pixel array
            interpolate: Bilinear sampling if True, nearest-neighbor otherwise
            bbox: World region to render, defaults to the mesh bounding box

        Returns:
            Array of ``bbox`` size with the source dtype; index (0, 0) is the
            bounding box origin
        """
        source = np.asarray(source)
        h, w = source.shape[:2]
        if (w, h) != (mesh.width, mesh.height):
            raise ValueError(
                f"Image size {w}x{h} does not match mesh size {mesh.width}x{mesh.height}"
            )
        if bbox is None:
            bbox = mesh.bounding_box()

        target = np.full((bbox.height, bbox.width) + source.shape[2:], self.background, dtype=source.dtype)
        src_vertices = mesh.source_vertices()
        dst_vertices = mesh.target_vertices() - np.array(bbox.origin, dtype=np.float64)

        skipped = 0
        for triangle in mesh.triangles():
            if not self._map_triangle(
                source, target, src_vertices[triangle], dst_vertices[triangle], interpolate
            ):
                skipped += 1

        if skipped:
            logger.debug(f"Skipped {skipped} degenerate triangle(s)")
        return target

    def _map_triangle(
        self,
        source: np.ndarray,
        target: np.ndarray,
        src_tri: np.ndarray,
        dst_tri: np.ndarray,
        interpolate: bool
    ) -> bool:
        """Fill the target pixels of one triangle; False if it is degenerate"""
        corners = np.column_stack([dst_tri, np.ones(3)])
        if abs(np.linalg.det(corners)) < _DEGENERATE_AREA:
            return False
        # Rows of [x, y, 1] times these matrices give barycentric and source coordinates
        to_barycentric = np.linalg.inv(corners)
        to_source = to_barycentric @ src_tri

        th, tw = target.shape[:2]
        x_min = max(0, int(math.floor(dst_tri[:, 0].min())))
        x_max = min(tw - 1, int(math.ceil(dst_tri[:, 0].max())))
        y_min = max(0, int(math.floor(dst_tri[:, 1].min())))
        y_max = min(th - 1, int(math.ceil(dst_tri[:, 1].max())))
        if x_min > x_max or y_min > y_max:
            return True

        ys, xs = np.mgrid[y_min:y_max + 1, x_min:x_max + 1]
        xs = xs.ravel()
        ys = ys.ravel()
        pixels = np.column_stack([xs, ys, np.ones(len(xs))])

        weights = pixels @ to_barycentric
        inside = np.all(weights >= -_EDGE_EPSILON, axis=1)
        if not inside.any():
            return True

        src_points = np.round(pixels[inside] @ to_source, _COORDINATE_DECIMALS)
        sample = _sample_bilinear if interpolate else _sample_nearest
        target[ys[inside], xs[inside]] = sample(source, src_points[:, 0], src_points[:, 1])
        return True


def place_in_frame(
    image: np.ndarray,
    bbox: WorldBoundingBox,
    frame: WorldBoundingBox,
    background: float = 0
) -> np.ndarray:
    """
    Paste a mapped image into a larger world frame

    Args:
        image: Image rendered for ``bbox``
        bbox: World bounds of ``image``
        frame: Enclosing world bounds of the output

    Returns:
        Array of ``frame`` size
    """
    canvas = np.full((frame.height, frame.width) + image.shape[2:], background, dtype=image.dtype)
    ox = bbox.x - frame.x
    oy = bbox.y - frame.y
    if ox < 0 or oy < 0 or ox + bbox.width > frame.width or oy + bbox.height > frame.height:
        raise ValueError(f"Bounds {bbox} do not fit inside frame {frame}")
    canvas[oy:oy + bbox.height, ox:ox + bbox.width] = image
    return canvas


def apply_coordinate_transform(
    image: np.ndarray,
    transform,
    mesh_resolution: int = DEFAULT_MESH_RESOLUTION,
    interpolate: bool = True
) -> Tuple[np.ndarray, Tuple[int, int]]:
    """
    Transform a single image

    Args:
        image: Source pixel array
        transform: CompositeTransform or a single CoordinateTransform
        mesh_resolution: Vertices per row of the transform mesh
        interpolate: Bilinear sampling if True

    Returns:
        Tuple of (transformed image, world origin (x, y) of its top-left pixel)
    """
    if isinstance(transform, CoordinateTransform):
        transform = CompositeTransform([transform])
    h, w = image.shape[:2]
    mesh, bbox = MeshBuilder().build(transform, w, h, mesh_resolution)
    result = PixelMapper(background=0).map(mesh, image, interpolate=interpolate, bbox=bbox)
    return result, bbox.origin
