"""Light nodes."""

from dataclasses import dataclass, field
from typing import Any, Tuple

from .scene import Color, Object3D, Vector3


@dataclass
class ShadowCamera:
    near: float = 0.5
    far: float = 500.0
    left: float = -5.0
    right: float = 5.0
    top: float = 5.0
    bottom: float = -5.0


@dataclass
class LightShadow:
    """Shadow map parameters of a shadow casting light."""
    camera: ShadowCamera = field(default_factory=ShadowCamera)
    map_size: Tuple[int, int] = (512, 512)
    bias: float = 0.0
    normal_bias: float = 0.0

    def set_map_size(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError("Shadow map size must be positive")
        self.map_size = (int(width), int(height))


class Light(Object3D):
    def __init__(self, color: Any = "#ffffff", intensity: float = 1.0, name: str = ""):
        super().__init__(name)
        self.color = Color(color)
        self.intensity = float(intensity)


class DirectionalLight(Light):
    """Parallel light shining from its position towards ``target``."""

    def __init__(self, color: Any = "#ffffff", intensity: float = 1.0, name: str = "directional_light"):
        super().__init__(color, intensity, name)
        self.position.set(0.0, 1.0, 0.0)
        self.target = Vector3()
        self.shadow = LightShadow()


class AmbientLight(Light):
    def __init__(self, color: Any = "#ffffff", intensity: float = 1.0, name: str = "ambient_light"):
        super().__init__(color, intensity, name)
