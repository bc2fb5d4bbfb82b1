#!/usr/bin/env python3
"""Orbit controls for the preview camera.

Pointer and wheel input never reaches Python: the browser's viser camera
controls orbit, dolly and pan the view and report the resulting pose.
``OrbitControls`` adopts those poses as the shared camera and keeps it within
its distance and polar limits once per frame. ``enable_damping`` and
``damping_factor`` describe the intended feel of the controls; the easing
itself happens in the browser.
"""

import math
import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .camera import PerspectiveCamera
from .scene import Vector3

logger = logging.getLogger(__name__)

EPS = 1e-6


@dataclass
class Spherical:
    """Spherical coordinates with polar angle measured from +Y."""
    radius: float = 1.0
    phi: float = 0.0    # polar angle (0 to pi)
    theta: float = 0.0  # azimuth around +Y

    @classmethod
    def from_offset(cls, offset: np.ndarray) -> "Spherical":
        x, y, z = offset
        radius = math.sqrt(x * x + y * y + z * z)
        if radius == 0:
            return cls(0.0, 0.0, 0.0)
        return cls(
            radius=radius,
            phi=math.acos(max(-1.0, min(1.0, y / radius))),
            theta=math.atan2(x, z),
        )

    def to_offset(self) -> np.ndarray:
        sin_phi = math.sin(self.phi)
        return np.array([
            self.radius * sin_phi * math.sin(self.theta),
            self.radius * math.cos(self.phi),
            self.radius * sin_phi * math.cos(self.theta),
        ])

    def make_safe(self) -> "Spherical":
        self.phi = max(EPS, min(math.pi - EPS, self.phi))
        return self


class OrbitControls:
    """Keeps a perspective camera orbiting a target point."""

    def __init__(self, camera: PerspectiveCamera):
        self.camera = camera
        self.target = Vector3()

        self.enabled = True
        self.enable_damping = False
        self.damping_factor = 0.05

        self.min_distance = 0.0
        self.max_distance = math.inf
        self.min_polar_angle = 0.0
        self.max_polar_angle = math.pi

        self.camera.look_at(self.target)

    def update(self) -> bool:
        """Clamp the camera pose to the distance and polar limits.

        Returns:
            True if the camera moved
        """
        if not self.enabled:
            return False

        target = self.target.to_array()
        position = self.camera.position.to_array()
        spherical = Spherical.from_offset(position - target)
        spherical.phi = max(self.min_polar_angle, min(self.max_polar_angle, spherical.phi))
        spherical.make_safe()
        spherical.radius = max(self.min_distance, min(self.max_distance, spherical.radius))
        new_position = target + spherical.to_offset()

        # Round trips through spherical coordinates leave ~1e-16 noise.
        moved = bool(np.sum((new_position - position) ** 2) > EPS * EPS)
        if moved:
            self.camera.position = Vector3.from_array(new_position)
            self.camera.look_at(self.target)
        return moved

    def sync_from_client(self, position: Sequence[float], look_at: Sequence[float],
                         tolerance: float = 1e-4) -> bool:
        """Adopt a camera pose reported by a browser client.

        Poses within ``tolerance`` of the current one are echoes of our own
        updates and are ignored.

        Returns:
            True if the pose was adopted
        """
        position = np.asarray(position, dtype=np.float64)
        look_at = np.asarray(look_at, dtype=np.float64)
        if (np.allclose(position, self.camera.position.to_array(), atol=tolerance)
                and np.allclose(look_at, self.target.to_array(), atol=tolerance)):
            return False

        self.target = Vector3.from_array(look_at)
        self.camera.position = Vector3.from_array(position)
        self.camera.look_at(self.target)
        logger.debug(f"Camera synced from client: position={position}, look_at={look_at}")
        return True

    def get_spherical(self) -> Spherical:
        return Spherical.from_offset(self.camera.position.to_array() - self.target.to_array())
