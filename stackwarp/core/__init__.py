"""
Transform decoding, mesh building and pixel mapping
"""

from .descriptor import TransformDescriptorParser, read_coordinate_transform, write_descriptor
from .errors import (
    ConfigError,
    CountMismatchError,
    ImageReadError,
    InvalidParameterError,
    OutputError,
    ParseError,
    RangeError,
    StackWarpError,
)
from .mapping import PixelMapper, apply_coordinate_transform
from .mesh import Mesh, MeshBuilder, WorldBoundingBox
from .transforms import (
    CompositeTransform,
    CoordinateTransform,
    create_transform,
    register_transform,
)

__all__ = [
    'TransformDescriptorParser',
    'read_coordinate_transform',
    'write_descriptor',
    'ConfigError',
    'CountMismatchError',
    'ImageReadError',
    'InvalidParameterError',
    'OutputError',
    'ParseError',
    'RangeError',
    'StackWarpError',
    'PixelMapper',
    'apply_coordinate_transform',
    'Mesh',
    'MeshBuilder',
    'WorldBoundingBox',
    'CompositeTransform',
    'CoordinateTransform',
    'create_transform',
    'register_transform',
]
