"""Configuration for the realistic render preview.

All scene constants live here so that the controller only wires them together.
The defaults reproduce the beach/turtle preview scene.
"""

import json
import logging
from dataclasses import dataclass, field, asdict, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Tuple, Type, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

DRACO_DECODER_TYPES = ("js", "wasm")


@dataclass
class AssetPaths:
    """Asset locations, relative to the static root."""
    static_root: str = "static"
    draco_decoder_path: str = "draco/"
    draco_decoder_type: str = "js"
    environment_map_dir: str = "environmentMaps/beachEnv"
    environment_map_faces: List[str] = field(
        default_factory=lambda: ["px.png", "nx.png", "py.png", "ny.png", "pz.png", "nz.png"]
    )
    ground_texture_dir: str = "textures/ground"
    ground_color: str = "diff.jpg"
    ground_ambient_occlusion: str = "ao.jpg"
    ground_normal: str = "normal.jpg"
    ground_roughness: str = "rough.jpg"
    ground_metalness: str = "arm.jpg"
    ground_height: str = "disp.jpg"
    model: str = "models/turtle_compressed.glb"

    def resolve(self, relative: Union[str, Path]) -> Path:
        """Map an asset path onto the static root."""
        return Path(self.static_root) / relative

    def environment_map_paths(self) -> List[Path]:
        return [self.resolve(Path(self.environment_map_dir) / face)
                for face in self.environment_map_faces]

    def ground_texture_paths(self) -> Dict[str, Path]:
        """Ground texture paths keyed by material slot."""
        base = Path(self.ground_texture_dir)
        return {
            "color": self.resolve(base / self.ground_color),
            "ambient_occlusion": self.resolve(base / self.ground_ambient_occlusion),
            "normal": self.resolve(base / self.ground_normal),
            "roughness": self.resolve(base / self.ground_roughness),
            "metalness": self.resolve(base / self.ground_metalness),
            "height": self.resolve(base / self.ground_height),
        }


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class ViewportConfig:
    """Initial output surface and host pacing."""
    width: int = 1280
    height: int = 720
    device_pixel_ratio: float = 1.0
    max_pixel_ratio: float = 2.0
    fps: float = 60.0
    background_max_size: int = 960


@dataclass
class SceneAppearance:
    environment_intensity: float = 1.0
    background_blurriness: float = 0.0
    background_intensity: float = 1.0
    background_rotation_y: float = 5.0
    environment_rotation_y: float = 5.0
    # viser preset used for image based lighting
    environment_hdri: str = "sunset"


@dataclass
class CameraConfig:
    fov: float = 75.0
    near: float = 0.1
    far: float = 100.0
    position: Tuple[float, float, float] = (-0.5, 0.75, 3.0)
    enable_damping: bool = True
    damping_factor: float = 0.05


@dataclass
class DirectionalLightConfig:
    color: str = "#835520"
    intensity: float = 10.0
    position: Tuple[float, float, float] = (-10.0, 10.0, -3.0)
    cast_shadow: bool = True
    shadow_camera_far: float = 50.0
    shadow_map_size: Tuple[int, int] = (512, 512)
    shadow_bias: float = -0.005


@dataclass
class AmbientLightConfig:
    color: str = "#8a8a8a"
    intensity: float = 1.0


@dataclass
class RendererConfig:
    antialias: bool = True
    tone_mapping: str = "ACESFilmic"
    tone_mapping_exposure: float = 1.5
    shadow_map_enabled: bool = True
    shadow_map_type: str = "PCFSoft"


@dataclass
class GroundConfig:
    width: float = 15.0
    height: float = 15.0
    width_segments: int = 100
    height_segments: int = 100
    displacement_scale: float = 0.15
    offset: float = 0.05


@dataclass
class PreviewConfig:
    """Complete configuration of the preview scene."""
    assets: AssetPaths = field(default_factory=AssetPaths)
    server: ServerConfig = field(default_factory=ServerConfig)
    viewport: ViewportConfig = field(default_factory=ViewportConfig)
    scene: SceneAppearance = field(default_factory=SceneAppearance)
    camera: CameraConfig = field(default_factory=CameraConfig)
    directional_light: DirectionalLightConfig = field(default_factory=DirectionalLightConfig)
    ambient_light: AmbientLightConfig = field(default_factory=AmbientLightConfig)
    renderer: RendererConfig = field(default_factory=RendererConfig)
    ground: GroundConfig = field(default_factory=GroundConfig)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check values that would otherwise fail deep inside the scene.

        Raises:
            ValueError: If a value is out of its supported range
        """
        if self.assets.draco_decoder_type not in DRACO_DECODER_TYPES:
            raise ValueError(
                f"Unsupported Draco decoder type: {self.assets.draco_decoder_type!r}"
            )
        if len(self.assets.environment_map_faces) != 6:
            raise ValueError("Environment map needs exactly 6 faces")
        if self.viewport.width <= 0 or self.viewport.height <= 0:
            raise ValueError("Viewport size must be positive")
        if self.viewport.fps <= 0:
            raise ValueError("Frame rate must be positive")
        if not 0 < self.camera.near < self.camera.far:
            raise ValueError("Camera planes must satisfy 0 < near < far")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreviewConfig":
        """Create from dictionary format, missing keys keep their defaults."""
        return _build(cls, data)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "PreviewConfig":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = json.load(f)

        logger.info(f"Loaded config from {path}")
        return cls.from_dict(data)

    def save_json(self, path: Union[str, Path]) -> None:
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Saved config to {path}")


def _build(cls: Type[T], data: Dict[str, Any]) -> T:
    known = {f.name: f for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")

    kwargs = {}
    for name, value in data.items():
        default = known[name].default_factory() if callable(known[name].default_factory) else known[name].default
        if is_dataclass(default):
            kwargs[name] = _build(type(default), value)
        elif isinstance(default, tuple):
            kwargs[name] = tuple(value)
        else:
            kwargs[name] = value
    return cls(**kwargs)
