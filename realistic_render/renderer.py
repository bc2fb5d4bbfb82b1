"""Output surface and viser synchronisation.

``Renderer.render`` is called once per frame. It compares the scene model
against what was last sent and only pushes the differences: meshes, lights,
image based lighting, the camera, and a CPU-rendered background when the
scene background is a cubemap.
"""

import logging
import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional, Tuple

import numpy as np
import trimesh
import viser
import viser.transforms as vtf
from PIL import Image, ImageFilter

from .camera import PerspectiveCamera
from .geometry import CubeTexture, MeshStandardMaterial, PlaneGeometry, Texture
from .lights import AmbientLight, DirectionalLight
from .scene import Mesh, Object3D, Scene
from .tone_mapping import ToneMapping, apply_tone_mapping, linear_to_srgb, srgb_to_linear

logger = logging.getLogger(__name__)


class ShadowMapType(IntEnum):
    BASIC = 0
    PCF = 1
    PCF_SOFT = 2
    VSM = 3


SHADOW_MAP_TYPES = {
    "Basic": ShadowMapType.BASIC,
    "PCF": ShadowMapType.PCF,
    "PCFSoft": ShadowMapType.PCF_SOFT,
    "VSM": ShadowMapType.VSM,
}


@dataclass
class ShadowMap:
    enabled: bool = False
    type: ShadowMapType = ShadowMapType.PCF


class Renderer:
    """Render target description plus the push of scene state to viser."""

    def __init__(self, server: viser.ViserServer, antialias: bool = True,
                 environment_hdri: Optional[str] = "sunset",
                 background_max_size: int = 960):
        """Initialize the renderer.

        Args:
            server: viser server receiving the scene
            antialias: Whether clients should antialias
            environment_hdri: viser HDRI preset used for image based lighting
            background_max_size: Longest side of the CPU-rendered background
        """
        self.server = server
        self.antialias = antialias
        self.environment_hdri = environment_hdri
        self.background_max_size = background_max_size

        self.width = 300
        self.height = 150
        self.pixel_ratio = 1.0

        self.tone_mapping = ToneMapping.NONE
        self.tone_mapping_exposure = 1.0
        self.shadow_map = ShadowMap()

        self.frame_count = 0
        self._mesh_handles: Dict[int, Tuple[Any, tuple, tuple]] = {}
        self._light_handles: Dict[int, Tuple[Any, tuple]] = {}
        self._environment_signature: Optional[tuple] = None
        self._background_signature: Optional[tuple] = None
        self._camera_version = -1
        self._camera_origin: Optional[int] = None

    # Output surface

    def set_size(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid surface size {width}x{height}")
        self.width = int(width)
        self.height = int(height)

    def set_pixel_ratio(self, ratio: float) -> None:
        if ratio <= 0:
            raise ValueError(f"Invalid pixel ratio {ratio}")
        self.pixel_ratio = float(ratio)

    def get_drawing_buffer_size(self) -> Tuple[int, int]:
        return (math.floor(self.width * self.pixel_ratio),
                math.floor(self.height * self.pixel_ratio))

    # Frame

    def render(self, scene: Scene, camera: PerspectiveCamera) -> None:
        """Push everything that changed since the previous frame."""
        with self.server.atomic():
            self._sync_environment(scene)
            self._sync_nodes(scene)
            self._sync_camera(camera)
            self._sync_background(scene, camera)
        self.frame_count += 1

    def mark_camera_synced(self, client_id: Optional[int]) -> None:
        """Record that ``client_id`` already shows the camera's next pose."""
        self._camera_origin = client_id

    def _sync_environment(self, scene: Scene) -> None:
        hdri = self.environment_hdri if scene.environment is not None else None
        wxyz = tuple(scene.environment_rotation.to_so3().wxyz)
        signature = (hdri, scene.environment_intensity, wxyz)
        if signature == self._environment_signature:
            return

        self.server.scene.configure_environment_map(
            hdri=hdri,
            background=False,
            environment_intensity=scene.environment_intensity,
            environment_wxyz=wxyz,
        )
        self._environment_signature = signature

    def _sync_nodes(self, scene: Scene) -> None:
        seen = set()
        for node in scene.traverse():
            if node.is_mesh:
                self._sync_mesh(node)
            elif isinstance(node, (DirectionalLight, AmbientLight)):
                self._sync_light(node)
            else:
                continue
            seen.add(id(node))

        for handles in (self._mesh_handles, self._light_handles):
            for key in [k for k in handles if k not in seen]:
                handles.pop(key)[0].remove()

    def _sync_mesh(self, mesh: Mesh) -> None:
        shadows = self.shadow_map.enabled
        content = (
            mesh.path,
            mesh.cast_shadow and shadows,
            mesh.receive_shadow and shadows,
            id(mesh.geometry),
            mesh.material.texture_signature() if isinstance(mesh.material, MeshStandardMaterial) else (),
        )
        position, wxyz, scale = _decompose(mesh.matrix_world())
        pose = (tuple(np.round(position, 6)), tuple(np.round(wxyz, 6)), round(scale, 6), mesh.visible)

        entry = self._mesh_handles.get(id(mesh))
        if entry is not None and entry[1] == content:
            handle, _, old_pose = entry
            if pose != old_pose:
                handle.position = position
                handle.wxyz = wxyz
                handle.visible = mesh.visible
                self._mesh_handles[id(mesh)] = (handle, content, pose)
            return

        handle = self.server.scene.add_mesh_trimesh(
            name=mesh.path,
            mesh=build_trimesh(mesh),
            scale=scale,
            wxyz=wxyz,
            position=position,
            visible=mesh.visible,
            cast_shadow=content[1],
            receive_shadow=content[2],
        )
        self._mesh_handles[id(mesh)] = (handle, content, pose)
        logger.debug(f"Sent mesh {mesh.path}")

    def _sync_light(self, light: Object3D) -> None:
        cast_shadow = bool(getattr(light, "cast_shadow", False) and self.shadow_map.enabled)
        state = (light.color.to_rgb255(), light.intensity, light.position.to_tuple(),
                 light.visible, cast_shadow)

        entry = self._light_handles.get(id(light))
        if entry is not None:
            handle, old_state = entry
            if state == old_state:
                return
            if old_state[4] == cast_shadow:
                handle.color = state[0]
                handle.intensity = light.intensity
                handle.position = state[2]
                handle.visible = light.visible
                self._light_handles[id(light)] = (handle, state)
                return
            handle.remove()

        if isinstance(light, DirectionalLight):
            handle = self.server.scene.add_light_directional(
                name=light.path,
                color=state[0],
                intensity=light.intensity,
                cast_shadow=cast_shadow,
                position=state[2],
                visible=light.visible,
            )
        else:
            handle = self.server.scene.add_light_ambient(
                name=light.path,
                color=state[0],
                intensity=light.intensity,
                visible=light.visible,
            )
        self._light_handles[id(light)] = (handle, state)
        logger.debug(f"Sent light {light.path}")

    def _sync_camera(self, camera: PerspectiveCamera) -> None:
        if camera.version == self._camera_version:
            return

        for client_id, client in self.server.get_clients().items():
            if client_id == self._camera_origin:
                continue
            with client.atomic():
                client.camera.position = camera.position.to_tuple()
                client.camera.look_at = camera.target.to_tuple()
                client.camera.fov = math.radians(camera.fov)
                client.camera.near = camera.near
                client.camera.far = camera.far

        self._camera_version = camera.version
        self._camera_origin = None

    def _sync_background(self, scene: Scene, camera: PerspectiveCamera) -> None:
        background = scene.background
        if not isinstance(background, CubeTexture) or not background.is_ready:
            return

        width, height = self.background_size()
        signature = (
            camera.pose_signature(),
            scene.background_rotation.to_tuple(),
            scene.background_intensity,
            scene.background_blurriness,
            int(self.tone_mapping),
            self.tone_mapping_exposure,
            width, height,
            background.version,
        )
        if signature == self._background_signature:
            return

        image = render_background(
            background, camera, width, height,
            rotation=scene.background_rotation.to_matrix(),
            intensity=scene.background_intensity,
            blurriness=scene.background_blurriness,
            tone_mapping=self.tone_mapping,
            exposure=self.tone_mapping_exposure,
        )
        self.server.scene.set_background_image(image, format="jpeg")
        self._background_signature = signature

    def background_size(self) -> Tuple[int, int]:
        """Drawing buffer size scaled to fit background_max_size."""
        width, height = self.get_drawing_buffer_size()
        scale = min(1.0, self.background_max_size / max(width, height))
        return max(1, int(width * scale)), max(1, int(height * scale))


def _decompose(matrix: np.ndarray) -> Tuple[np.ndarray, np.ndarray, float]:
    """Split a similarity transform into position, wxyz and uniform scale."""
    linear = matrix[:3, :3]
    scales = np.linalg.norm(linear, axis=0)
    if not np.allclose(scales, scales[0], rtol=1e-4):
        logger.warning(f"Non-uniform scale {scales} is sent as its mean")
    scale = float(np.mean(scales)) if np.all(scales > 0) else 1.0
    rotation = linear / np.where(scales > 0, scales, 1.0)
    wxyz = vtf.SO3.from_matrix(rotation).wxyz
    return matrix[:3, 3].copy(), np.asarray(wxyz), scale


def render_background(cube: CubeTexture, camera: PerspectiveCamera, width: int, height: int,
                      rotation: Optional[np.ndarray] = None, intensity: float = 1.0,
                      blurriness: float = 0.0, tone_mapping: ToneMapping = ToneMapping.NONE,
                      exposure: float = 1.0) -> np.ndarray:
    """Render the cubemap as seen from the camera.

    Args:
        cube: Loaded cube texture (sRGB faces)
        camera: Camera defining the view rays
        width, height: Output size in pixels
        rotation: Background rotation matrix (world from background)
        intensity: Linear multiplier applied before tone mapping
        blurriness: 0 (sharp) to 1 (heavily blurred)
        tone_mapping: Operator applied to the result
        exposure: Tone mapping exposure

    Returns:
        uint8 array of shape (height, width, 3)
    """
    directions = camera.view_directions(width, height)
    if rotation is not None:
        directions = directions @ rotation
    # Cube maps are looked up with a mirrored X axis.
    directions = directions * np.array([-1.0, 1.0, 1.0])

    srgb = cube.sample(directions)

    if blurriness > 0:
        radius = blurriness * max(width, height) / 16.0
        blurred = Image.fromarray((srgb * 255).round().astype(np.uint8)).filter(
            ImageFilter.GaussianBlur(radius=radius)
        )
        srgb = np.asarray(blurred, dtype=np.float32) / 255.0

    linear = srgb_to_linear(srgb) * intensity
    mapped = apply_tone_mapping(linear, tone_mapping, exposure)
    return np.clip(linear_to_srgb(mapped) * 255.0 + 0.5, 0, 255).astype(np.uint8)


def build_trimesh(mesh: Mesh) -> trimesh.Trimesh:
    """Geometry of a scene mesh in the form viser accepts."""
    if isinstance(mesh.geometry, trimesh.Trimesh):
        return mesh.geometry
    if isinstance(mesh.geometry, PlaneGeometry):
        return _plane_to_trimesh(mesh.geometry, mesh.material)
    raise TypeError(f"Unsupported geometry type: {type(mesh.geometry).__name__}")


def _plane_to_trimesh(geometry: PlaneGeometry, material: Optional[MeshStandardMaterial]) -> trimesh.Trimesh:
    positions = geometry.get_attribute("position").copy()
    normals = geometry.get_attribute("normal")
    uvs = geometry.get_attribute("uv")
    displaced = False

    if material is not None and material.displacement_map is not None and material.displacement_map.is_ready:
        heights = sample_texture(material.displacement_map, uvs)[:, 0]
        positions += normals * (heights * material.displacement_scale + material.displacement_bias)[:, None]
        displaced = True

    result = trimesh.Trimesh(
        vertices=positions,
        faces=geometry.index,
        vertex_normals=None if displaced else normals,
        process=False,
    )
    if material is not None:
        result.visual = trimesh.visual.TextureVisuals(uv=uvs, material=pbr_material(material))
    return result


def pbr_material(material: MeshStandardMaterial) -> trimesh.visual.material.PBRMaterial:
    """Convert to a glTF metallic-roughness material with the ready maps."""
    def ready(texture: Optional[Texture]) -> Optional[Image.Image]:
        return texture.image if texture is not None and texture.is_ready else None

    return trimesh.visual.material.PBRMaterial(
        baseColorFactor=[int(round(c * 255)) for c in material.color] + [255],
        baseColorTexture=ready(material.map),
        normalTexture=ready(material.normal_map),
        occlusionTexture=ready(material.ao_map),
        metallicRoughnessTexture=pack_metallic_roughness(material.roughness_map, material.metalness_map),
        metallicFactor=material.metalness,
        roughnessFactor=material.roughness,
    )


def pack_metallic_roughness(roughness: Optional[Texture], metalness: Optional[Texture]) -> Optional[Image.Image]:
    """Pack roughness (G) and metalness (B) maps into one glTF texture.

    Roughness is read from the green channel and metalness from the blue
    channel of their sources, so an ARM texture can be used for either.
    Missing maps leave their channel at full value.
    """
    sources = [t.image for t in (roughness, metalness) if t is not None and t.is_ready]
    if not sources:
        return None

    size = sources[0].size
    packed = np.full((size[1], size[0], 3), 255, dtype=np.uint8)
    if roughness is not None and roughness.is_ready:
        packed[:, :, 1] = _channel(roughness.image, size, 1)
    if metalness is not None and metalness.is_ready:
        packed[:, :, 2] = _channel(metalness.image, size, 2)
    return Image.fromarray(packed, mode="RGB")


def _channel(image: Image.Image, size: Tuple[int, int], index: int) -> np.ndarray:
    if image.size != size:
        image = image.resize(size, Image.BILINEAR)
    array = np.asarray(image)
    if array.ndim == 2:
        return array
    return array[:, :, min(index, array.shape[2] - 1)]


def sample_texture(texture: Texture, uvs: np.ndarray) -> np.ndarray:
    """Bilinear lookup at v-up texture coordinates, returns (N, C) in [0, 1]."""
    pixels = texture.to_array()
    if pixels is None:
        raise RuntimeError(f"{texture} is not loaded")

    h, w = pixels.shape[:2]
    u = np.clip(uvs[:, 0], 0.0, 1.0) * (w - 1)
    v = (1.0 - np.clip(uvs[:, 1], 0.0, 1.0)) * (h - 1)

    x0 = np.floor(u).astype(np.int64)
    y0 = np.floor(v).astype(np.int64)
    x1 = np.minimum(x0 + 1, w - 1)
    y1 = np.minimum(y0 + 1, h - 1)
    fx = (u - x0)[:, None]
    fy = (v - y0)[:, None]

    top = pixels[y0, x0] * (1 - fx) + pixels[y0, x1] * fx
    bottom = pixels[y1, x0] * (1 - fx) + pixels[y1, x1] * fx
    return top * (1 - fy) + bottom * fy
