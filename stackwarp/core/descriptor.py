"""
Transform descriptor reading and writing

A descriptor is the text file the registration stage writes per image, e.g.::

    <ict_transform_list>
        <iict_transform class="mpicbg.trakem2.transform.RigidModel2D" data="0.01 12.5 -3.0" />
        <iict_transform class="mpicbg.trakem2.transform.AffineModel2D" data="1.0 0.0 0.0 1.0 4.0 2.0" />
    </ict_transform_list>

Each ``class`` marker opens a segment; its payload is the first quoted value
following an ``=`` after the marker. Segments are applied in file order.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .errors import InvalidParameterError, ParseError
from .transforms import (
    QUALIFIED_PREFIX,
    CompositeTransform,
    CoordinateTransform,
    create_transform,
)

logger = logging.getLogger(__name__)

# Marker and payload tokens, matched left to right on every line
_TOKEN = re.compile(
    r'(?P<marker>\bclass\s*=\s*"(?P<kind>[^"]*)")|(?P<data>=\s*"(?P<payload>[^"]*)")'
)


@dataclass(frozen=True)
class TransformSegment:
    """One transform entry of a descriptor"""

    kind: str
    parameters: str
    line: int = 0


@dataclass(frozen=True)
class TransformDescriptor:
    """Ordered segments read from one descriptor file"""

    segments: Tuple[TransformSegment, ...]
    source: Optional[str] = None

    def __len__(self) -> int:
        return len(self.segments)


class TransformDescriptorParser:
    """Decode descriptor files into composite transforms"""

    def read(self, path: Union[str, Path]) -> TransformDescriptor:
        """
        Read the segments of a descriptor file

        Raises:
            ParseError: File cannot be read or a marker has no payload
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(f"cannot read transform file ({e})", path=str(path))
        return self.read_text(text, source=str(path))

    def read_text(self, text: str, source: Optional[str] = None) -> TransformDescriptor:
        segments: List[TransformSegment] = []
        pending: Optional[Tuple[str, int]] = None

        for line_no, line in enumerate(text.splitlines(), start=1):
            for token in _TOKEN.finditer(line):
                if token.group("marker"):
                    if pending is not None:
                        raise ParseError(
                            f"line {pending[1]}: transform '{pending[0]}' has no data",
                            path=source
                        )
                    pending = (token.group("kind").strip(), line_no)
                elif pending is not None:
                    kind, kind_line = pending
                    segments.append(TransformSegment(kind, token.group("payload"), kind_line))
                    pending = None

        if pending is not None:
            raise ParseError(f"line {pending[1]}: transform '{pending[0]}' has no data", path=source)

        return TransformDescriptor(tuple(segments), source)

    def build(self, descriptor: TransformDescriptor) -> CompositeTransform:
        """
        Instantiate every segment in order

        Raises:
            ParseError: Unknown transform kind
            InvalidParameterError: A kind rejected its payload
        """
        composite = CompositeTransform()
        for segment in descriptor.segments:
            try:
                composite.append(create_transform(segment.kind, segment.parameters))
            except ParseError as e:
                error_type = InvalidParameterError if isinstance(e, InvalidParameterError) else ParseError
                raise error_type(f"line {segment.line}: {e}", path=descriptor.source) from e

        if composite.is_identity():
            # Accepted as identity, though usually a sign of a malformed file
            logger.warning(f"No transforms found in {descriptor.source or 'descriptor'}, using identity")
        else:
            logger.debug(
                f"Read {len(composite)} transform(s) from {descriptor.source or 'descriptor'}: "
                f"{', '.join(s.kind.rsplit('.', 1)[-1] for s in descriptor.segments)}"
            )
        return composite

    def parse(self, path: Union[str, Path]) -> CompositeTransform:
        """
        Read a descriptor file into a composite transform

        Args:
            path: Descriptor file

        Returns:
            Composite transform, empty (identity) if the file has no segments
        """
        return self.build(self.read(path))

    def parse_text(self, text: str, source: Optional[str] = None) -> CompositeTransform:
        return self.build(self.read_text(text, source))


def read_coordinate_transform(path: Union[str, Path]) -> CompositeTransform:
    """Parse a descriptor file with a default parser"""
    return TransformDescriptorParser().parse(path)


def _transform_element(transform: CoordinateTransform) -> str:
    return f'<iict_transform class="{QUALIFIED_PREFIX}{transform.kind}" data="{transform.to_data_string()}" />'


def to_descriptor_text(composite: CompositeTransform) -> str:
    """Serialize a composite in the format ``TransformDescriptorParser`` reads"""
    transforms = composite.transforms
    if len(transforms) == 1:
        return _transform_element(transforms[0]) + "\n"

    lines = ["<ict_transform_list>"]
    lines.extend("\t" + _transform_element(t) for t in transforms)
    lines.append("</ict_transform_list>")
    return "\n".join(lines) + "\n"


def write_descriptor(composite: CompositeTransform, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.write_text(to_descriptor_text(composite), encoding="utf-8")
    logger.debug(f"Wrote {len(composite)} transform(s) to {path}")
    return path
