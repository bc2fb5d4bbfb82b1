"""Perspective camera."""

import logging
import math
from typing import Optional

import numpy as np
import viser.transforms as vtf

from .scene import Object3D, Vector3

logger = logging.getLogger(__name__)


class PerspectiveCamera(Object3D):
    """Pinhole camera looking down its local -Z axis.

    ``fov`` is the vertical field of view in degrees. The orientation is
    kept as a look-at target because that is what viser clients accept.
    """

    def __init__(self, fov: float = 50.0, aspect: float = 1.0,
                 near: float = 0.1, far: float = 2000.0, name: str = "camera"):
        super().__init__(name)
        self.fov = float(fov)
        self.aspect = float(aspect)
        self.near = float(near)
        self.far = float(far)
        self.zoom = 1.0
        self.up = Vector3(0.0, 1.0, 0.0)
        self.target = Vector3(0.0, 0.0, 0.0)
        self.projection_matrix = np.eye(4)
        self.version = 0
        self.update_projection_matrix()

    def update_projection_matrix(self) -> None:
        """Recompute the projection after fov/aspect/near/far changed."""
        if self.aspect <= 0 or not math.isfinite(self.aspect):
            raise ValueError(f"Invalid camera aspect ratio: {self.aspect}")

        top = self.near * math.tan(math.radians(0.5 * self.fov)) / self.zoom
        height = 2 * top
        width = self.aspect * height
        left = -0.5 * width

        m = np.zeros((4, 4))
        m[0, 0] = 2 * self.near / width
        m[1, 1] = 2 * self.near / height
        m[0, 2] = (2 * left + width) / width
        m[1, 2] = (2 * (top - height) + height) / height
        m[2, 2] = -(self.far + self.near) / (self.far - self.near)
        m[2, 3] = -2 * self.far * self.near / (self.far - self.near)
        m[3, 2] = -1.0
        self.projection_matrix = m
        self.touch()

    def look_at(self, target: Vector3) -> None:
        self.target = target.copy()
        self.touch()

    def touch(self) -> None:
        """Mark the camera as changed for the renderer."""
        self.version += 1

    def rotation_matrix(self) -> np.ndarray:
        """Camera-to-world rotation (columns: right, up, back)."""
        eye = self.position.to_array()
        back = eye - self.target.to_array()
        norm = np.linalg.norm(back)
        if norm == 0:
            return np.eye(3)
        back = back / norm

        right = np.cross(self.up.to_array(), back)
        if np.linalg.norm(right) < 1e-9:
            # Looking straight along up, nudge to keep a basis.
            right = np.cross(np.array([0.0, 0.0, 1.0]), back)
        right = right / np.linalg.norm(right)
        up = np.cross(back, right)
        return np.stack([right, up, back], axis=1)

    def matrix(self) -> np.ndarray:
        m = np.eye(4)
        m[:3, :3] = self.rotation_matrix()
        m[:3, 3] = self.position.to_array()
        return m

    @property
    def wxyz(self) -> np.ndarray:
        return vtf.SO3.from_matrix(self.rotation_matrix()).wxyz

    def view_directions(self, width: int, height: int) -> np.ndarray:
        """World-space ray directions through each pixel center.

        Returns:
            Array of shape (height, width, 3), rows top to bottom
        """
        tan_half = math.tan(math.radians(0.5 * self.fov)) / self.zoom
        xs = ((np.arange(width) + 0.5) / width * 2.0 - 1.0) * tan_half * self.aspect
        ys = (1.0 - (np.arange(height) + 0.5) / height * 2.0) * tan_half
        gx, gy = np.meshgrid(xs, ys)
        rays = np.stack([gx, gy, -np.ones_like(gx)], axis=-1)
        rays = rays @ self.rotation_matrix().T
        return rays / np.linalg.norm(rays, axis=-1, keepdims=True)

    def pose_signature(self, digits: Optional[int] = 5) -> tuple:
        """Rounded pose and projection, used to detect visible changes."""
        values = (*self.position.to_tuple(), *self.target.to_tuple(),
                  self.fov, self.aspect, self.near, self.far)
        if digits is None:
            return values
        return tuple(round(v, digits) for v in values)
