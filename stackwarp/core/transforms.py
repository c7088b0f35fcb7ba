"""
Coordinate transform models replayed from registration descriptors

Every model maps a 2-D point (x, y) to (x', y') and can be rebuilt from the
whitespace (or comma) separated data string the registration stage wrote.
Models are looked up by identifier through an explicit registry, so new kinds
can be added with the ``register_transform`` decorator without touching the
descriptor parser.
"""

import logging
import math
import re
from abc import ABC, abstractmethod
from threading import RLock
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Type

import numpy as np
from scipy.interpolate import RBFInterpolator

from .errors import InvalidParameterError, ParseError

logger = logging.getLogger(__name__)

# Package prefix used by the registration stage when naming transform kinds
QUALIFIED_PREFIX = "mpicbg.trakem2.transform."

_FIELD_SEPARATOR = re.compile(r"[\s,]+")


def _split_fields(data: str) -> List[str]:
    if data is None:
        return []
    return [f for f in _FIELD_SEPARATOR.split(data.strip()) if f]


def _parse_floats(kind: str, fields: Sequence[str]) -> List[float]:
    try:
        values = [float(f) for f in fields]
    except ValueError as e:
        raise InvalidParameterError(f"{kind}: malformed numeric field ({e})")
    if not all(math.isfinite(v) for v in values):
        raise InvalidParameterError(f"{kind}: non-finite numeric field in {list(fields)}")
    return values


def _fmt(value: float) -> str:
    return repr(float(value))


class CoordinateTransform(ABC):
    """Base class for all transform kinds"""

    kind: str = ""

    @abstractmethod
    def init(self, data: str) -> None:
        """Initialize parameters from a data string"""

    @abstractmethod
    def map_point(self, x: float, y: float) -> Tuple[float, float]:
        """Map a single point"""

    @abstractmethod
    def to_data_string(self) -> str:
        """Encode parameters in the format accepted by ``init``"""

    def apply(self, points: np.ndarray) -> np.ndarray:
        """
        Map an Nx2 array of points

        Subclasses with a closed form override this; the default evaluates
        ``map_point`` per row.
        """
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        out = np.empty_like(points)
        for i, (x, y) in enumerate(points):
            out[i] = self.map_point(x, y)
        return out

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.to_data_string()!r})"


class TransformRegistry:
    """Thread-safe lookup of transform kinds by identifier"""

    def __init__(self):
        self._lock = RLock()
        self._kinds: Dict[str, Type[CoordinateTransform]] = {}

    def register(self, name: str, transform_class: Type[CoordinateTransform]) -> None:
        with self._lock:
            self._kinds[name] = transform_class
            self._kinds[QUALIFIED_PREFIX + name] = transform_class
            logger.debug(f"Registered transform kind '{name}' ({transform_class.__name__})")

    def get_class(self, kind: str) -> Type[CoordinateTransform]:
        with self._lock:
            if kind not in self._kinds:
                available = sorted(k for k in self._kinds if not k.startswith(QUALIFIED_PREFIX))
                raise ParseError(f"Unknown transform kind '{kind}'. Available: {available}")
            return self._kinds[kind]

    def create(self, kind: str, data: str) -> CoordinateTransform:
        """Instantiate a kind and initialize it from its payload"""
        transform = self.get_class(kind)()
        transform.init(data)
        return transform

    def kinds(self) -> List[str]:
        with self._lock:
            return sorted(k for k in self._kinds if not k.startswith(QUALIFIED_PREFIX))


# Global registry instance
_registry = TransformRegistry()


def register_transform(name: str):
    """Decorator for transform kind registration."""

    def decorator(cls: Type[CoordinateTransform]):
        cls.kind = name
        _registry.register(name, cls)
        return cls

    return decorator


def create_transform(kind: str, data: str) -> CoordinateTransform:
    """
    Build a transform from its identifier and data string

    Args:
        kind: Short ("AffineModel2D") or fully qualified identifier
        data: Kind-specific parameter payload

    Returns:
        Initialized transform

    Raises:
        ParseError: Unknown identifier
        InvalidParameterError: Payload rejected by the kind
    """
    return _registry.create(kind, data)


def available_kinds() -> List[str]:
    return _registry.kinds()


class LinearModel2D(CoordinateTransform):
    """Models expressible as a 2x3 matrix"""

    def __init__(self):
        self._matrix = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix.copy()

    def map_point(self, x: float, y: float) -> Tuple[float, float]:
        m = self._matrix
        return (
            float(m[0, 0] * x + m[0, 1] * y + m[0, 2]),
            float(m[1, 0] * x + m[1, 1] * y + m[1, 2]),
        )

    def apply(self, points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        return points @ self._matrix[:, :2].T + self._matrix[:, 2]

    def _read(self, data: str, n_fields: int) -> List[float]:
        fields = _split_fields(data)
        if len(fields) != n_fields:
            raise InvalidParameterError(
                f"{self.kind}: expected {n_fields} fields, got {len(fields)} in '{data}'"
            )
        return _parse_floats(self.kind, fields)


@register_transform("TranslationModel2D")
class TranslationModel2D(LinearModel2D):
    """Data: ``tx ty``"""

    def __init__(self, tx: float = 0.0, ty: float = 0.0):
        super().__init__()
        self.set(tx, ty)

    def set(self, tx: float, ty: float):
        self.tx, self.ty = float(tx), float(ty)
        self._matrix = np.array([[1.0, 0.0, self.tx], [0.0, 1.0, self.ty]])

    def init(self, data: str) -> None:
        self.set(*self._read(data, 2))

    def to_data_string(self) -> str:
        return f"{_fmt(self.tx)} {_fmt(self.ty)}"


@register_transform("RigidModel2D")
class RigidModel2D(LinearModel2D):
    """Data: ``theta tx ty`` with theta in radians"""

    def __init__(self, theta: float = 0.0, tx: float = 0.0, ty: float = 0.0):
        super().__init__()
        self.set(theta, tx, ty)

    def set(self, theta: float, tx: float, ty: float):
        self.theta, self.tx, self.ty = float(theta), float(tx), float(ty)
        c, s = math.cos(self.theta), math.sin(self.theta)
        self._matrix = np.array([[c, -s, self.tx], [s, c, self.ty]])

    def init(self, data: str) -> None:
        self.set(*self._read(data, 3))

    def to_data_string(self) -> str:
        return f"{_fmt(self.theta)} {_fmt(self.tx)} {_fmt(self.ty)}"


@register_transform("SimilarityModel2D")
class SimilarityModel2D(LinearModel2D):
    """Data: ``s theta tx ty``"""

    def __init__(self, scale: float = 1.0, theta: float = 0.0, tx: float = 0.0, ty: float = 0.0):
        super().__init__()
        self.set(scale, theta, tx, ty)

    def set(self, scale: float, theta: float, tx: float, ty: float):
        self.scale, self.theta = float(scale), float(theta)
        self.tx, self.ty = float(tx), float(ty)
        c = self.scale * math.cos(self.theta)
        s = self.scale * math.sin(self.theta)
        self._matrix = np.array([[c, -s, self.tx], [s, c, self.ty]])

    def init(self, data: str) -> None:
        self.set(*self._read(data, 4))

    def to_data_string(self) -> str:
        return f"{_fmt(self.scale)} {_fmt(self.theta)} {_fmt(self.tx)} {_fmt(self.ty)}"


@register_transform("AffineModel2D")
class AffineModel2D(LinearModel2D):
    """Data: ``m00 m10 m01 m11 m02 m12`` (column-major)"""

    def __init__(
        self,
        m00: float = 1.0,
        m10: float = 0.0,
        m01: float = 0.0,
        m11: float = 1.0,
        m02: float = 0.0,
        m12: float = 0.0
    ):
        super().__init__()
        self.set(m00, m10, m01, m11, m02, m12)

    def set(self, m00, m10, m01, m11, m02, m12):
        self._matrix = np.array(
            [[m00, m01, m02], [m10, m11, m12]], dtype=np.float64
        )

    def init(self, data: str) -> None:
        self.set(*self._read(data, 6))

    def to_data_string(self) -> str:
        m = self._matrix
        values = (m[0, 0], m[1, 0], m[0, 1], m[1, 1], m[0, 2], m[1, 2])
        return " ".join(_fmt(v) for v in values)


MLS_MODELS = ("translation", "rigid", "similarity", "affine")


@register_transform("MovingLeastSquaresTransform")
class MovingLeastSquaresTransform(CoordinateTransform):
    """
    Moving least squares deformation from weighted control point matches

    Data: ``<model> 2 <alpha> p1x p1y q1x q1y w1 p2x ...`` where model is one
    of translation, rigid, similarity or affine. Each point is mapped by the
    model fitted to all matches, weighted by ``w / |p - v|^(2 alpha)``.
    """

    def __init__(self):
        self.model = "affine"
        self.alpha = 1.0
        self.p = np.zeros((0, 2))
        self.q = np.zeros((0, 2))
        self.w = np.zeros(0)

    def set_matches(self, p: np.ndarray, q: np.ndarray, w: Optional[np.ndarray] = None,
                    model: str = "affine", alpha: float = 1.0):
        p = np.asarray(p, dtype=np.float64).reshape(-1, 2)
        q = np.asarray(q, dtype=np.float64).reshape(-1, 2)
        if len(p) != len(q):
            raise InvalidParameterError(f"{self.kind}: {len(p)} sources but {len(q)} targets")
        if len(p) == 0:
            raise InvalidParameterError(f"{self.kind}: at least one match is required")
        if model not in MLS_MODELS:
            raise InvalidParameterError(f"{self.kind}: unknown local model '{model}'")
        w = np.ones(len(p)) if w is None else np.asarray(w, dtype=np.float64).reshape(-1)
        if len(w) != len(p):
            raise InvalidParameterError(f"{self.kind}: {len(p)} matches but {len(w)} weights")
        if not (np.all(np.isfinite(p)) and np.all(np.isfinite(q)) and np.all(np.isfinite(w))):
            raise InvalidParameterError(f"{self.kind}: non-finite match coordinates or weights")
        if np.any(w < 0) or not np.any(w > 0):
            raise InvalidParameterError(f"{self.kind}: weights must be non-negative and not all zero")
        if not math.isfinite(alpha):
            raise InvalidParameterError(f"{self.kind}: non-finite alpha {alpha}")
        self.model = model
        self.alpha = float(alpha)
        self.p, self.q = p, q
        self.w = w

    def init(self, data: str) -> None:
        fields = _split_fields(data)
        if len(fields) < 3:
            raise InvalidParameterError(f"{self.kind}: missing header in '{data}'")
        model = fields[0].lower()
        if fields[1] != "2":
            raise InvalidParameterError(f"{self.kind}: only 2-D matches are supported")
        values = _parse_floats(self.kind, fields[2:])
        alpha, matches = values[0], values[1:]
        if len(matches) == 0 or len(matches) % 5 != 0:
            raise InvalidParameterError(
                f"{self.kind}: expected groups of 5 match fields, got {len(matches)}"
            )
        m = np.array(matches).reshape(-1, 5)
        self.set_matches(m[:, 0:2], m[:, 2:4], m[:, 4], model=model, alpha=alpha)

    def map_point(self, x: float, y: float) -> Tuple[float, float]:
        d2 = np.sum((self.p - (x, y)) ** 2, axis=1)
        hit = np.flatnonzero(d2 == 0.0)
        if len(hit):
            qx, qy = self.q[hit[0]]
            return float(qx), float(qy)

        with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
            weights = self.w / np.power(d2, self.alpha)
            total = np.sum(weights)
        if not np.isfinite(total) or total <= 0.0:
            # Weights under- or overflowed; shift by the nearest weighted match
            candidates = np.flatnonzero(self.w > 0)
            nearest = candidates[np.argmin(d2[candidates])]
            dx, dy = self.q[nearest] - self.p[nearest]
            return float(x + dx), float(y + dy)
        p_star = weights @ self.p / total
        q_star = weights @ self.q / total
        v = np.array([x, y]) - p_star

        if self.model != "translation":
            mapped = self._fit_local(v, weights, self.p - p_star, self.q - q_star)
            if mapped is not None:
                return float(mapped[0] + q_star[0]), float(mapped[1] + q_star[1])
        return float(v[0] + q_star[0]), float(v[1] + q_star[1])

    def _fit_local(self, v, weights, p_hat, q_hat) -> Optional[np.ndarray]:
        if self.model == "affine":
            a = (p_hat * weights[:, None]).T @ p_hat
            if abs(np.linalg.det(a)) < 1e-12:
                return None
            b = (p_hat * weights[:, None]).T @ q_hat
            return v @ np.linalg.solve(a, b)

        dot = np.sum(weights * np.sum(p_hat * q_hat, axis=1))
        cross = np.sum(weights * (p_hat[:, 0] * q_hat[:, 1] - p_hat[:, 1] * q_hat[:, 0]))
        if self.model == "similarity":
            norm = np.sum(weights * np.sum(p_hat ** 2, axis=1))
        else:
            norm = math.hypot(dot, cross)
        if norm < 1e-12:
            return None
        c, s = dot / norm, cross / norm
        return np.array([c * v[0] - s * v[1], s * v[0] + c * v[1]])

    def to_data_string(self) -> str:
        parts = [self.model, "2", _fmt(self.alpha)]
        for (px, py), (qx, qy), w in zip(self.p, self.q, self.w):
            parts.extend(_fmt(v) for v in (px, py, qx, qy, w))
        return " ".join(parts)


@register_transform("ThinPlateSplineTransform")
class ThinPlateSplineTransform(CoordinateTransform):
    """
    Thin-plate spline through landmark pairs

    Data: ``x1 y1 X1 Y1 x2 y2 X2 Y2 ...`` mapping (x, y) onto (X, Y). At least
    three non-collinear landmarks are required; outside their hull the spline
    extrapolates through its affine part.

    This landmark payload is specific to stackwarp. Spline descriptors written
    by the registration stage use a different, coefficient-based encoding and
    are not readable by this kind.
    """

    def __init__(self):
        self.source = np.zeros((0, 2))
        self.target = np.zeros((0, 2))
        self._interpolator = None

    def set_landmarks(self, source: np.ndarray, target: np.ndarray):
        source = np.asarray(source, dtype=np.float64).reshape(-1, 2)
        target = np.asarray(target, dtype=np.float64).reshape(-1, 2)
        if len(source) != len(target) or len(source) < 3:
            raise InvalidParameterError(f"{self.kind}: at least 3 landmark pairs are required")
        try:
            self._interpolator = RBFInterpolator(source, target, kernel="thin_plate_spline")
        except (ValueError, np.linalg.LinAlgError) as e:
            raise InvalidParameterError(f"{self.kind}: degenerate landmarks ({e})")
        self.source, self.target = source, target

    def init(self, data: str) -> None:
        values = _parse_floats(self.kind, _split_fields(data))
        if len(values) % 4 != 0:
            raise InvalidParameterError(
                f"{self.kind}: expected groups of 4 landmark fields, got {len(values)}"
            )
        landmarks = np.array(values).reshape(-1, 4)
        self.set_landmarks(landmarks[:, 0:2], landmarks[:, 2:4])

    def map_point(self, x: float, y: float) -> Tuple[float, float]:
        mx, my = self._interpolator(np.array([[x, y]], dtype=np.float64))[0]
        return float(mx), float(my)

    def apply(self, points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        return self._interpolator(points)

    def to_data_string(self) -> str:
        parts = []
        for (x, y), (tx, ty) in zip(self.source, self.target):
            parts.extend(_fmt(v) for v in (x, y, tx, ty))
        return " ".join(parts)


class CompositeTransform:
    """
    Ordered chain of transforms applied left to right

    An empty chain is the identity.
    """

    def __init__(self, transforms: Optional[Sequence[CoordinateTransform]] = None):
        self._transforms: List[CoordinateTransform] = list(transforms or [])

    def append(self, transform: CoordinateTransform):
        self._transforms.append(transform)

    @property
    def transforms(self) -> List[CoordinateTransform]:
        return list(self._transforms)

    def is_identity(self) -> bool:
        return not self._transforms

    def map_point(self, x: float, y: float) -> Tuple[float, float]:
        for transform in self._transforms:
            x, y = transform.map_point(x, y)
        return float(x), float(y)

    def apply(self, points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        for transform in self._transforms:
            points = transform.apply(points)
        return points

    def __len__(self) -> int:
        return len(self._transforms)

    def __iter__(self) -> Iterator[CoordinateTransform]:
        return iter(self._transforms)

    def __repr__(self) -> str:
        return f"CompositeTransform({self._transforms!r})"
