"""
Error types raised while replaying transforms onto an image stack
"""

from typing import Optional


class StackWarpError(Exception):
    """Base class for all stackwarp failures"""


class ParseError(StackWarpError):
    """A transform descriptor could not be read or decoded"""

    def __init__(self, message: str, path: Optional[str] = None, index: Optional[int] = None):
        self.path = path
        self.index = index
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)


class InvalidParameterError(ParseError):
    """A transform kind rejected its parameter payload"""


class CountMismatchError(StackWarpError):
    """Source images and transform descriptors do not pair up"""

    def __init__(self, n_sources: int, n_transforms: int):
        self.n_sources = n_sources
        self.n_transforms = n_transforms
        super().__init__(
            f"The number of source and transform files must be equal "
            f"({n_sources} images, {n_transforms} transforms)"
        )


class RangeError(StackWarpError):
    """Requested sub-range does not fit the paired listing"""

    def __init__(self, first: int, last: int, count: int):
        self.first = first
        self.last = last
        self.count = count
        super().__init__(f"Wrong indexes ({first}<->{last}) for {count} images")


class OutputError(StackWarpError):
    """A transformed image could not be written"""

    def __init__(self, message: str, path: Optional[str] = None, index: Optional[int] = None):
        self.path = path
        self.index = index
        super().__init__(message)


class ConfigError(StackWarpError):
    """Invalid batch configuration"""


class ImageReadError(StackWarpError):
    """A source image could not be loaded"""

    def __init__(self, message: str, path: Optional[str] = None, index: Optional[int] = None):
        self.path = path
        self.index = index
        super().__init__(message)
