"""StackWarp - apply registration transforms to image sequences"""

__version__ = "0.1.0"
