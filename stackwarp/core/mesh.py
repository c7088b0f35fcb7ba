"""
Piecewise-affine approximation of a coordinate transform

The source rectangle is sampled by a regular grid of vertices, each mapped
once through the transform. Every grid cell is split into two triangles, so
the pixel mapper only has to interpolate an affine map per triangle instead
of evaluating (or inverting) the transform per pixel.
"""

import logging
import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .transforms import CompositeTransform

logger = logging.getLogger(__name__)

DEFAULT_MESH_RESOLUTION = 32


@dataclass(frozen=True)
class WorldBoundingBox:
    """Integer envelope of a transformed image in world coordinates"""

    x: int
    y: int
    width: int
    height: int

    @property
    def x_max(self) -> int:
        return self.x + self.width

    @property
    def y_max(self) -> int:
        return self.y + self.height

    @property
    def origin(self) -> Tuple[int, int]:
        return self.x, self.y

    def union(self, other: "WorldBoundingBox") -> "WorldBoundingBox":
        x = min(self.x, other.x)
        y = min(self.y, other.y)
        return WorldBoundingBox(
            x, y,
            max(self.x_max, other.x_max) - x,
            max(self.y_max, other.y_max) - y,
        )

    @classmethod
    def enclosing(cls, points: np.ndarray) -> "WorldBoundingBox":
        """Floor/ceil envelope of an Nx2 point array"""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        x_min = int(math.floor(points[:, 0].min()))
        y_min = int(math.floor(points[:, 1].min()))
        x_max = int(math.ceil(points[:, 0].max()))
        y_max = int(math.ceil(points[:, 1].max()))
        return cls(x_min, y_min, max(1, x_max - x_min), max(1, y_max - y_min))


@dataclass(frozen=True, eq=False)
class Mesh:
    """
    Regular triangulated grid over ``[0, width) x [0, height)``

    Attributes:
        width: Source image width
        height: Source image height
        source: (rows, cols, 2) source vertex coordinates (x, y)
        target: (rows, cols, 2) mapped vertex coordinates (x', y')
    """

    width: int
    height: int
    source: np.ndarray
    target: np.ndarray

    @property
    def rows(self) -> int:
        return self.source.shape[0]

    @property
    def cols(self) -> int:
        return self.source.shape[1]

    def vertex_index(self, row: int, col: int) -> int:
        return row * self.cols + col

    def triangles(self) -> np.ndarray:
        """
        Vertex index triples, two per grid cell

        Cell (r, c) yields (r,c) (r,c+1) (r+1,c) and (r,c+1) (r+1,c+1) (r+1,c).
        """
        r, c = np.meshgrid(
            np.arange(self.rows - 1), np.arange(self.cols - 1), indexing="ij"
        )
        top_left = (r * self.cols + c).ravel()
        top_right = top_left + 1
        bottom_left = top_left + self.cols
        bottom_right = bottom_left + 1
        upper = np.stack([top_left, top_right, bottom_left], axis=1)
        lower = np.stack([top_right, bottom_right, bottom_left], axis=1)
        return np.stack([upper, lower], axis=1).reshape(-1, 3)

    def source_vertices(self) -> np.ndarray:
        return self.source.reshape(-1, 2)

    def target_vertices(self) -> np.ndarray:
        return self.target.reshape(-1, 2)

    def bounding_box(self) -> WorldBoundingBox:
        return WorldBoundingBox.enclosing(self.target_vertices())


class MeshBuilder:
    """Builds transform meshes"""

    def build(
        self,
        composite: CompositeTransform,
        width: int,
        height: int,
        resolution: int = DEFAULT_MESH_RESOLUTION
    ) -> Tuple[Mesh, WorldBoundingBox]:
        """
        Sample a composite transform on a regular grid

        Args:
            composite: Transform chain to approximate
            width: Source image width in pixels
            height: Source image height in pixels
            resolution: Vertices per row and per column (>= 2)

        Returns:
            Tuple of (mesh, world bounding box)
        """
        if resolution < 2:
            raise ValueError(f"Mesh resolution must be at least 2, got {resolution}")
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid image size {width}x{height}")

        xs = np.linspace(0.0, float(width), resolution)
        ys = np.linspace(0.0, float(height), resolution)
        gx, gy = np.meshgrid(xs, ys, indexing="xy")
        source = np.stack([gx, gy], axis=-1)

        target = np.array(composite.apply(source.reshape(-1, 2)), dtype=np.float64).reshape(source.shape)
        if not np.all(np.isfinite(target)):
            raise ValueError("Transform produced non-finite vertex coordinates")

        source.setflags(write=False)
        target.setflags(write=False)
        mesh = Mesh(int(width), int(height), source, target)
        bbox = mesh.bounding_box()

        logger.debug(
            f"Built {resolution}x{resolution} mesh for {width}x{height} image, "
            f"world bounds: ({bbox.x}, {bbox.y}) {bbox.width}x{bbox.height}"
        )
        return mesh, bbox
