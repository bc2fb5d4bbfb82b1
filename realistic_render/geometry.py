"""Geometry, texture and material containers."""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

SRGB_COLOR_SPACE = "srgb"
LINEAR_COLOR_SPACE = "srgb-linear"
NO_COLOR_SPACE = ""


class PlaneGeometry:
    """Subdivided quad in the XY plane, facing +Z.

    Vertex rows run from the top edge (+Y, v = 1) to the bottom edge, which
    matches the v-up convention trimesh uses for texture coordinates.
    """

    def __init__(self, width: float = 1.0, height: float = 1.0,
                 width_segments: int = 1, height_segments: int = 1):
        if width_segments < 1 or height_segments < 1:
            raise ValueError("Plane needs at least one segment per side")

        self.width = width
        self.height = height
        self.width_segments = int(width_segments)
        self.height_segments = int(height_segments)
        self.attributes: Dict[str, np.ndarray] = {}
        self.index: np.ndarray = np.zeros((0, 3), dtype=np.int64)
        self._build()

    def _build(self) -> None:
        grid_x, grid_y = self.width_segments, self.height_segments
        grid_x1, grid_y1 = grid_x + 1, grid_y + 1

        ix, iy = np.meshgrid(np.arange(grid_x1), np.arange(grid_y1))
        ix = ix.ravel()
        iy = iy.ravel()

        x = ix * (self.width / grid_x) - self.width / 2
        y = -(iy * (self.height / grid_y) - self.height / 2)
        positions = np.stack([x, y, np.zeros_like(x, dtype=np.float64)], axis=1)

        normals = np.tile(np.array([0.0, 0.0, 1.0]), (len(positions), 1))
        uvs = np.stack([ix / grid_x, 1.0 - iy / grid_y], axis=1)

        qx, qy = np.meshgrid(np.arange(grid_x), np.arange(grid_y))
        qx = qx.ravel()
        qy = qy.ravel()
        a = qx + grid_x1 * qy
        b = qx + grid_x1 * (qy + 1)
        c = (qx + 1) + grid_x1 * (qy + 1)
        d = (qx + 1) + grid_x1 * qy
        faces = np.empty((2 * len(a), 3), dtype=np.int64)
        faces[0::2] = np.stack([a, b, d], axis=1)
        faces[1::2] = np.stack([b, c, d], axis=1)

        self.attributes = {
            "position": positions.astype(np.float64),
            "normal": normals,
            "uv": uvs.astype(np.float64),
        }
        self.index = faces

    def set_attribute(self, name: str, values: np.ndarray) -> None:
        values = np.asarray(values)
        if len(values) != self.vertex_count:
            raise ValueError(
                f"Attribute {name!r} has {len(values)} items, expected {self.vertex_count}"
            )
        self.attributes[name] = values

    def get_attribute(self, name: str) -> np.ndarray:
        return self.attributes[name]

    def has_attribute(self, name: str) -> bool:
        return name in self.attributes

    @property
    def vertex_count(self) -> int:
        return len(self.attributes["position"])

    @property
    def vertices(self) -> np.ndarray:
        return self.attributes["position"]

    @property
    def faces(self) -> np.ndarray:
        return self.index


class Texture:
    """Handle to an image that may still be loading.

    Loaders return the handle immediately and fill ``image`` once decoding
    finishes. ``version`` increments on every change so consumers can tell
    when to re-upload.
    """

    def __init__(self, source: Optional[Path] = None, image: Optional[Image.Image] = None):
        self.source = source
        self.image = image
        self.color_space = NO_COLOR_SPACE
        self.version = 1 if image is not None else 0
        self.error: Optional[BaseException] = None
        self._lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        return self.image is not None

    def resolve(self, image: Image.Image) -> None:
        with self._lock:
            self.image = image
            self.version += 1

    def fail(self, error: BaseException) -> None:
        with self._lock:
            self.error = error

    def to_array(self) -> Optional[np.ndarray]:
        """Image as a float32 array in [0, 1], shape (H, W, C)."""
        if self.image is None:
            return None
        array = np.asarray(self.image, dtype=np.float32) / 255.0
        if array.ndim == 2:
            array = array[:, :, None]
        return array

    def __repr__(self) -> str:
        state = "ready" if self.is_ready else ("failed" if self.error else "pending")
        return f"Texture({self.source}, {state})"


class CubeTexture(Texture):
    """Six face images ordered +X, -X, +Y, -Y, +Z, -Z."""

    def __init__(self, sources: Optional[Sequence[Path]] = None):
        super().__init__(source=None)
        self.sources = list(sources or [])
        self.faces: List[Optional[np.ndarray]] = [None] * 6
        self.color_space = SRGB_COLOR_SPACE

    @property
    def is_ready(self) -> bool:
        return all(face is not None for face in self.faces)

    def resolve_faces(self, images: Sequence[Image.Image]) -> None:
        if len(images) != 6:
            raise ValueError(f"Cube texture needs 6 faces, got {len(images)}")
        sizes = {image.size for image in images}
        if len(sizes) != 1:
            raise ValueError(f"Cube faces differ in size: {sorted(sizes)}")
        with self._lock:
            self.faces = [np.asarray(image.convert("RGB"), dtype=np.float32) / 255.0
                          for image in images]
            self.image = images[0]
            self.version += 1

    def sample(self, directions: np.ndarray) -> np.ndarray:
        """Nearest-texel lookup for an array of direction vectors.

        Args:
            directions: Array of shape (..., 3), need not be normalized

        Returns:
            Array of shape (..., 3) with face colors in [0, 1]
        """
        if not self.is_ready:
            raise RuntimeError("Cube texture not loaded")

        shape = directions.shape[:-1]
        d = directions.reshape(-1, 3)
        x, y, z = d[:, 0], d[:, 1], d[:, 2]
        ax, ay, az = np.abs(x), np.abs(y), np.abs(z)

        face = np.where(
            (ax >= ay) & (ax >= az), np.where(x > 0, 0, 1),
            np.where(ay >= az, np.where(y > 0, 2, 3), np.where(z > 0, 4, 5)),
        )
        # (sc, tc, ma) per face, OpenGL cube map convention
        sc = np.select([face == 0, face == 1, face == 2, face == 3, face == 4], [-z, z, x, x, x], -x)
        tc = np.select([face == 0, face == 1, face == 2, face == 3, face == 4], [-y, -y, z, -z, -y], -y)
        ma = np.select([face <= 1, face <= 3], [ax, ay], az)
        ma = np.where(ma == 0, 1.0, ma)

        u = (sc / ma + 1.0) / 2.0
        v = (tc / ma + 1.0) / 2.0

        out = np.zeros((len(d), 3), dtype=np.float32)
        for index, pixels in enumerate(self.faces):
            mask = face == index
            if not np.any(mask):
                continue
            h, w = pixels.shape[:2]
            col = np.clip((u[mask] * w).astype(np.int64), 0, w - 1)
            row = np.clip((v[mask] * h).astype(np.int64), 0, h - 1)
            out[mask] = pixels[row, col, :3]
        return out.reshape(*shape, 3)

    def __repr__(self) -> str:
        state = "ready" if self.is_ready else ("failed" if self.error else "pending")
        return f"CubeTexture({len(self.sources)} faces, {state})"


@dataclass
class MeshStandardMaterial:
    """Metallic-roughness material referencing texture handles."""
    map: Optional[Texture] = None
    ao_map: Optional[Texture] = None
    normal_map: Optional[Texture] = None
    roughness_map: Optional[Texture] = None
    metalness_map: Optional[Texture] = None
    displacement_map: Optional[Texture] = None
    displacement_scale: float = 1.0
    displacement_bias: float = 0.0
    roughness: float = 1.0
    metalness: float = 0.0
    color: Tuple[float, float, float] = (1.0, 1.0, 1.0)

    def textures(self) -> Dict[str, Texture]:
        """Assigned texture slots."""
        slots = {
            "map": self.map,
            "ao_map": self.ao_map,
            "normal_map": self.normal_map,
            "roughness_map": self.roughness_map,
            "metalness_map": self.metalness_map,
            "displacement_map": self.displacement_map,
        }
        return {name: tex for name, tex in slots.items() if tex is not None}

    def texture_signature(self) -> Tuple[Tuple[str, int], ...]:
        """Per-slot texture versions, changes whenever a map finishes loading."""
        return tuple((name, tex.version) for name, tex in sorted(self.textures().items()))
