# tests/unit/core/test_mesh.py
"""Tests for transform mesh construction."""

import numpy as np
import pytest

from stackwarp.core.mesh import MeshBuilder, WorldBoundingBox
from stackwarp.core.transforms import (
    CompositeTransform,
    RigidModel2D,
    TranslationModel2D,
)


@pytest.fixture
def builder():
    return MeshBuilder()


class TestMeshBuilder:
    """Tests for MeshBuilder.build."""

    def test_identity_bounds_match_image(self, builder):
        mesh, bbox = builder.build(CompositeTransform(), 40, 30, 8)

        assert bbox == WorldBoundingBox(0, 0, 40, 30)
        np.testing.assert_array_equal(mesh.source, mesh.target)

    def test_grid_shape_and_corners(self, builder):
        mesh, _ = builder.build(CompositeTransform(), 40, 30, 5)

        assert (mesh.rows, mesh.cols) == (5, 5)
        np.testing.assert_array_equal(mesh.source[0, 0], [0, 0])
        np.testing.assert_array_equal(mesh.source[-1, -1], [40, 30])
        np.testing.assert_array_almost_equal(mesh.source[0, 1], [10, 0])

    def test_vertices_mapped_through_composite(self, builder):
        composite = CompositeTransform([RigidModel2D(0.3, 5.0, -2.0), TranslationModel2D(1.0, 1.0)])
        mesh, _ = builder.build(composite, 20, 10, 4)

        for (x, y), (tx, ty) in zip(mesh.source_vertices(), mesh.target_vertices()):
            assert (tx, ty) == pytest.approx(composite.map_point(x, y))

    def test_fractional_translation_bounds(self, builder):
        composite = CompositeTransform([TranslationModel2D(2.5, -3.25)])
        _, bbox = builder.build(composite, 10, 10, 3)

        # floor(2.5) = 2, ceil(12.5) = 13; floor(-3.25) = -4, ceil(6.75) = 7
        assert bbox == WorldBoundingBox(2, -4, 11, 11)

    def test_triangles(self, builder):
        mesh, _ = builder.build(CompositeTransform(), 10, 10, 3)
        triangles = mesh.triangles()

        assert triangles.shape == (8, 3)
        np.testing.assert_array_equal(triangles[0], [0, 1, 3])
        np.testing.assert_array_equal(triangles[1], [1, 4, 3])
        assert triangles.max() == mesh.rows * mesh.cols - 1
        assert mesh.vertex_index(2, 2) == 8

    def test_deterministic(self, builder):
        composite = CompositeTransform([RigidModel2D(0.7, 1.0, 2.0)])
        first, bbox1 = builder.build(composite, 33, 17, 6)
        second, bbox2 = builder.build(composite, 33, 17, 6)

        np.testing.assert_array_equal(first.target, second.target)
        assert bbox1 == bbox2

    def test_mesh_is_read_only(self, builder):
        mesh, _ = builder.build(CompositeTransform(), 10, 10, 2)

        with pytest.raises(ValueError):
            mesh.target[0, 0, 0] = 5.0

    @pytest.mark.parametrize("resolution", [0, 1])
    def test_resolution_too_small(self, builder, resolution):
        with pytest.raises(ValueError, match="at least 2"):
            builder.build(CompositeTransform(), 10, 10, resolution)

    def test_invalid_size(self, builder):
        with pytest.raises(ValueError, match="Invalid image size"):
            builder.build(CompositeTransform(), 0, 10, 4)


class TestWorldBoundingBox:
    """Tests for bounding box helpers."""

    def test_union(self):
        a = WorldBoundingBox(0, 0, 10, 10)
        b = WorldBoundingBox(-5, 3, 10, 20)

        assert a.union(b) == WorldBoundingBox(-5, 0, 15, 23)

    def test_enclosing(self):
        bbox = WorldBoundingBox.enclosing(np.array([[0.2, -1.5], [9.1, 4.0]]))

        assert bbox == WorldBoundingBox(0, -2, 10, 6)
        assert bbox.x_max == 10
        assert bbox.y_max == 4
        assert bbox.origin == (0, -2)
