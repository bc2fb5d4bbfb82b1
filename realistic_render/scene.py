"""Scene graph model mirrored to viser by the renderer.

The objects here are plain mutable containers. GUI bindings mutate their
attributes directly and the renderer picks the changes up on the next frame.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, Tuple

import numpy as np
import viser.transforms as vtf

logger = logging.getLogger(__name__)

_HEX_COLOR = re.compile(r"^#?([0-9a-fA-F]{6})$")


@dataclass
class Vector3:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def set(self, x: float, y: float, z: float) -> "Vector3":
        self.x, self.y, self.z = float(x), float(y), float(z)
        return self

    def copy(self) -> "Vector3":
        return Vector3(self.x, self.y, self.z)

    def to_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def to_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)

    @classmethod
    def from_array(cls, values) -> "Vector3":
        return cls(float(values[0]), float(values[1]), float(values[2]))


@dataclass
class Euler:
    """Rotation in radians applied in XYZ order."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def set(self, x: float, y: float, z: float) -> "Euler":
        self.x, self.y, self.z = float(x), float(y), float(z)
        return self

    def to_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def to_so3(self) -> vtf.SO3:
        return (vtf.SO3.from_x_radians(self.x)
                @ vtf.SO3.from_y_radians(self.y)
                @ vtf.SO3.from_z_radians(self.z))

    def to_matrix(self) -> np.ndarray:
        return self.to_so3().as_matrix()


class Color:
    """RGB color with components in [0, 1]."""

    def __init__(self, value: Any = "#ffffff"):
        self.r = 1.0
        self.g = 1.0
        self.b = 1.0
        self.set(value)

    def set(self, value: Any) -> "Color":
        """Set from a hex string, another Color or an RGB triple.

        Args:
            value: '#rrggbb' string, Color, or 3 floats in [0, 1]

        Raises:
            ValueError: If the value cannot be interpreted as a color
        """
        if isinstance(value, Color):
            self.r, self.g, self.b = value.r, value.g, value.b
        elif isinstance(value, str):
            match = _HEX_COLOR.match(value.strip())
            if match is None:
                raise ValueError(f"Invalid hex color: {value!r}")
            packed = int(match.group(1), 16)
            self.r = ((packed >> 16) & 0xFF) / 255.0
            self.g = ((packed >> 8) & 0xFF) / 255.0
            self.b = (packed & 0xFF) / 255.0
        else:
            components = tuple(float(c) for c in value)
            if len(components) != 3:
                raise ValueError(f"Color needs 3 components, got {len(components)}")
            self.r, self.g, self.b = components
        return self

    def get_hex_string(self) -> str:
        r, g, b = self.to_rgb255()
        return f"#{r:02x}{g:02x}{b:02x}"

    def to_rgb255(self) -> Tuple[int, int, int]:
        return tuple(int(round(max(0.0, min(1.0, c)) * 255)) for c in (self.r, self.g, self.b))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Color):
            return NotImplemented
        return (self.r, self.g, self.b) == (other.r, other.g, other.b)

    def __repr__(self) -> str:
        return f"Color({self.get_hex_string()!r})"


class Object3D:
    """Base node of the scene graph."""

    is_mesh = False

    def __init__(self, name: str = ""):
        self.name = name
        self.position = Vector3()
        self.rotation = Euler()
        self.scale = Vector3(1.0, 1.0, 1.0)
        self.visible = True
        self.cast_shadow = False
        self.receive_shadow = False
        self.parent: Optional["Object3D"] = None
        self.children: List["Object3D"] = []

    def add(self, *objects: "Object3D") -> "Object3D":
        for obj in objects:
            if obj is self:
                raise ValueError("Object can't be added as a child of itself")
            if obj.parent is not None:
                obj.parent.remove(obj)
            obj.parent = self
            self.children.append(obj)
        return self

    def remove(self, obj: "Object3D") -> "Object3D":
        if obj in self.children:
            self.children.remove(obj)
            obj.parent = None
        return self

    def traverse(self, callback: Optional[Callable[["Object3D"], None]] = None) -> Iterator["Object3D"]:
        """Visit this node and every descendant, depth first.

        With a callback the visit happens eagerly; without one a generator is
        returned.
        """
        if callback is not None:
            for node in self._walk():
                callback(node)
            return iter(())
        return self._walk()

    def _walk(self) -> Iterator["Object3D"]:
        yield self
        for child in list(self.children):
            yield from child._walk()

    @property
    def path(self) -> str:
        """Slash separated scene path, used as the viser node name."""
        parts = []
        node: Optional[Object3D] = self
        while node is not None and node.parent is not None:
            parts.append(node.name or f"node{node.parent.children.index(node)}")
            node = node.parent
        return "/" + "/".join(reversed(parts))

    def matrix(self) -> np.ndarray:
        """Local transform as a 4x4 matrix."""
        m = np.eye(4)
        m[:3, :3] = self.rotation.to_matrix() @ np.diag(self.scale.to_array())
        m[:3, 3] = self.position.to_array()
        return m

    def matrix_world(self) -> np.ndarray:
        m = self.matrix()
        node = self.parent
        while node is not None:
            m = node.matrix() @ m
            node = node.parent
        return m


class Group(Object3D):
    pass


class Mesh(Object3D):
    """Renderable node holding a geometry and a material."""

    is_mesh = True

    def __init__(self, geometry: Any, material: Any = None, name: str = ""):
        super().__init__(name)
        self.geometry = geometry
        self.material = material

    def local_vertices(self) -> np.ndarray:
        if hasattr(self.geometry, "vertices"):
            return np.asarray(self.geometry.vertices, dtype=np.float64)
        return np.asarray(self.geometry.get_attribute("position"), dtype=np.float64)


class Scene(Object3D):
    """Root of the scene graph plus global appearance settings."""

    def __init__(self):
        super().__init__("scene")
        self.background: Any = None
        self.environment: Any = None
        self.environment_intensity = 1.0
        self.background_blurriness = 0.0
        self.background_intensity = 1.0
        self.background_rotation = Euler()
        self.environment_rotation = Euler()


class Box3:
    """Axis aligned bounding box."""

    def __init__(self, min: Optional[Vector3] = None, max: Optional[Vector3] = None):
        self.min = min if min is not None else Vector3(np.inf, np.inf, np.inf)
        self.max = max if max is not None else Vector3(-np.inf, -np.inf, -np.inf)

    def make_empty(self) -> "Box3":
        self.min.set(np.inf, np.inf, np.inf)
        self.max.set(-np.inf, -np.inf, -np.inf)
        return self

    def is_empty(self) -> bool:
        return self.max.x < self.min.x or self.max.y < self.min.y or self.max.z < self.min.z

    def expand_by_points(self, points: np.ndarray) -> "Box3":
        if len(points) == 0:
            return self
        lo = np.minimum(self.min.to_array(), points.min(axis=0))
        hi = np.maximum(self.max.to_array(), points.max(axis=0))
        self.min = Vector3.from_array(lo)
        self.max = Vector3.from_array(hi)
        return self

    def set_from_object(self, obj: Object3D) -> "Box3":
        """Compute the world space box of every mesh below obj."""
        self.make_empty()
        for node in obj.traverse():
            if not node.is_mesh:
                continue
            vertices = node.local_vertices()
            if len(vertices) == 0:
                continue
            m = node.matrix_world()
            world = vertices @ m[:3, :3].T + m[:3, 3]
            self.expand_by_points(world)
        return self

    def get_size(self) -> np.ndarray:
        if self.is_empty():
            return np.zeros(3)
        return self.max.to_array() - self.min.to_array()
