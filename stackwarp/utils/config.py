"""
Batch configuration

Settings are an explicit value handed to the batch driver; they can be read
from a YAML file and overridden from the command line.
"""

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from ..core.errors import ConfigError
from ..core.mesh import DEFAULT_MESH_RESOLUTION

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS = ('.tif', '.tiff', '.jpg', '.jpeg', '.png', '.bmp', '.pgm')
TRANSFORM_EXTENSION = '.xml'
OUTPUT_EXTENSION = '.tif'


@dataclass(frozen=True)
class BatchConfig:
    """
    Settings for one batch run

    Attributes:
        source_dir: Folder with the images to transform
        output_dir: Folder receiving the transformed images (created if missing)
        transform_dir: Folder with one transform descriptor per image
        interpolate: Bilinear sampling if True, nearest-neighbor otherwise
        mesh_resolution: Mesh vertices per row and column
        first: First sorted index to process (sub-range mode)
        last: End of the sub-range, exclusive
        max_workers: Worker pool size (None = sized from CPUs and memory)
        common_frame: Pad every output to the union of all world bounds
    """

    source_dir: Path
    output_dir: Path
    transform_dir: Path
    interpolate: bool = True
    mesh_resolution: int = DEFAULT_MESH_RESOLUTION
    first: Optional[int] = None
    last: Optional[int] = None
    max_workers: Optional[int] = None
    common_frame: bool = True
    source_extensions: Tuple[str, ...] = field(default=SOURCE_EXTENSIONS)
    transform_extension: str = TRANSFORM_EXTENSION
    output_extension: str = OUTPUT_EXTENSION

    def __post_init__(self):
        for name in ('source_dir', 'output_dir', 'transform_dir'):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                object.__setattr__(self, name, Path(value))
        object.__setattr__(self, 'source_extensions', tuple(self.source_extensions))

    @property
    def range(self) -> Optional[Tuple[int, int]]:
        if self.first is None and self.last is None:
            return None
        return self.first, self.last

    def validate(self) -> "BatchConfig":
        """
        Check settings that do not depend on directory contents

        Raises:
            ConfigError: Invalid or missing setting
        """
        for name in ('source_dir', 'output_dir', 'transform_dir'):
            if getattr(self, name) is None or str(getattr(self, name)) == '':
                raise ConfigError(f"Missing {name.replace('_', ' ')}")
        if not isinstance(self.mesh_resolution, int) or self.mesh_resolution < 2:
            raise ConfigError(f"Mesh resolution must be an integer >= 2, got {self.mesh_resolution}")
        if (self.first is None) != (self.last is None):
            raise ConfigError("Both first and last must be given for a sub-range")
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigError(f"max_workers must be positive, got {self.max_workers}")
        if not self.source_extensions:
            raise ConfigError("No source extensions configured")
        return self

    def with_overrides(self, **overrides: Any) -> "BatchConfig":
        """Copy with the given non-None settings replaced"""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {sorted(unknown)}")
        values = dict(data)
        for name in ('source_dir', 'output_dir', 'transform_dir'):
            values.setdefault(name, None)
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "BatchConfig":
        """
        Load settings from a YAML mapping

        Raises:
            ConfigError: File unreadable or not a mapping
        """
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Could not read configuration {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration {path} must be a mapping")
        logger.debug(f"Loaded configuration from {path}")
        return cls.from_dict(data)
