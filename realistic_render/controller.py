"""Scene controller: builds the preview scene and drives it every frame."""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import viser

from .assets import CubeTextureLoader, DracoLoader, GLTF, GLTFLoader, TextureLoader, create_ground
from .camera import PerspectiveCamera
from .config import PreviewConfig
from .controls import OrbitControls
from .geometry import SRGB_COLOR_SPACE, Texture
from .gui import ColorBinding, DebugPanel, NumericBinding, OptionBinding
from .lights import AmbientLight, DirectionalLight
from .loop import FrameLoop
from .renderer import SHADOW_MAP_TYPES, Renderer
from .scene import Box3, Group, Mesh, Scene
from .tone_mapping import EXPOSURE_RANGE, TONE_MAPPING_OPTIONS, tone_mapping_from_label
from .viser_server import BasicViserServer

logger = logging.getLogger(__name__)


@dataclass
class Sizes:
    width: int
    height: int
    device_pixel_ratio: float = 1.0


class SceneController:
    """Sets up the preview scene in a fixed order, then renders it per frame.

    Every callback that touches the scene (asset completion, browser camera
    and resize events, panel changes) is queued on the frame loop, so they
    never run concurrently with each other or with a frame.
    """

    def __init__(self, config: Optional[PreviewConfig] = None,
                 server: Optional[viser.ViserServer] = None,
                 frame_loop: Optional[FrameLoop] = None,
                 executor: Optional[ThreadPoolExecutor] = None):
        """Initialize and build the scene.

        Args:
            config: Scene configuration, defaults reproduce the preview scene
            server: Running viser server; one is started from config if None
            frame_loop: Frame loop to schedule on
            executor: Worker pool for asset decoding
        """
        self.config = config or PreviewConfig()
        self.config.validate()
        viewport = self.config.viewport
        self.sizes = Sizes(viewport.width, viewport.height, viewport.device_pixel_ratio)

        self.server_wrapper: Optional[BasicViserServer] = None
        if server is None:
            self.server_wrapper = BasicViserServer(self.config.server.host, self.config.server.port)
            server = self.server_wrapper.start()
        self.server = server

        self.frame_loop = frame_loop or FrameLoop(viewport.fps)
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="asset-loader")

        self.model: Optional[Group] = None
        self.ground: Optional[Mesh] = None
        self.ground_textures: Dict[str, Texture] = {}

        self.init_loaders()
        self.create_scene()
        self.setup_camera()
        self.setup_lights()
        self.setup_renderer()
        self.setup_controls()
        self.setup_gui()
        self.load_environment()
        self.load_model()
        self.setup_event_listeners()
        self.start_animation_loop()

    # Setup, in execution order

    def init_loaders(self) -> None:
        dispatch = self.frame_loop.call_soon
        self.texture_loader = TextureLoader(self.executor, dispatch)
        self.cube_texture_loader = CubeTextureLoader(self.executor, dispatch)

        assets = self.config.assets
        self.draco_loader = DracoLoader(
            decoder_path=str(assets.resolve(assets.draco_decoder_path)),
            decoder_config={"type": assets.draco_decoder_type},
        )
        self.gltf_loader = GLTFLoader(self.executor, dispatch)
        self.gltf_loader.set_draco_loader(self.draco_loader)

    def create_scene(self) -> None:
        appearance = self.config.scene
        self.scene = Scene()
        self.scene.environment_intensity = appearance.environment_intensity
        self.scene.background_blurriness = appearance.background_blurriness
        self.scene.background_intensity = appearance.background_intensity
        self.scene.background_rotation.y = appearance.background_rotation_y
        self.scene.environment_rotation.y = appearance.environment_rotation_y

    def setup_camera(self) -> None:
        settings = self.config.camera
        self.camera = PerspectiveCamera(
            settings.fov,
            self.sizes.width / self.sizes.height,
            settings.near,
            settings.far,
        )
        self.camera.position.set(*settings.position)
        self.scene.add(self.camera)

    def setup_lights(self) -> None:
        settings = self.config.directional_light
        self.directional_light = DirectionalLight(settings.color, settings.intensity)
        self.directional_light.position.set(*settings.position)
        self.directional_light.cast_shadow = settings.cast_shadow
        self.directional_light.shadow.camera.far = settings.shadow_camera_far
        self.directional_light.shadow.set_map_size(*settings.shadow_map_size)
        self.directional_light.shadow.bias = settings.shadow_bias
        self.scene.add(self.directional_light)

        ambient = self.config.ambient_light
        self.ambient_light = AmbientLight(ambient.color, ambient.intensity)
        self.scene.add(self.ambient_light)

    def setup_renderer(self) -> None:
        settings = self.config.renderer
        self.renderer = Renderer(
            self.server,
            antialias=settings.antialias,
            environment_hdri=self.config.scene.environment_hdri,
            background_max_size=self.config.viewport.background_max_size,
        )
        self.renderer.set_size(self.sizes.width, self.sizes.height)
        self.renderer.set_pixel_ratio(self._capped_pixel_ratio())
        self.renderer.tone_mapping = tone_mapping_from_label(settings.tone_mapping)
        self.renderer.tone_mapping_exposure = settings.tone_mapping_exposure
        self.renderer.shadow_map.enabled = settings.shadow_map_enabled
        try:
            self.renderer.shadow_map.type = SHADOW_MAP_TYPES[settings.shadow_map_type]
        except KeyError:
            raise ValueError(f"Unknown shadow map type {settings.shadow_map_type!r}")

    def setup_controls(self) -> None:
        self.controls = OrbitControls(self.camera)
        self.controls.enable_damping = self.config.camera.enable_damping
        self.controls.damping_factor = self.config.camera.damping_factor

    def setup_gui(self) -> None:
        self.panel = DebugPanel()
        self.setup_scene_settings_gui()
        self.setup_lighting_gui()
        self.setup_renderer_gui()
        self.panel.build(self.server.gui, dispatch=self.frame_loop.call_soon)

    def setup_scene_settings_gui(self) -> None:
        scene_folder = self.panel.add_folder("Scene Settings")
        scene_folder.add(NumericBinding(self.scene, "environment_intensity", 0, 10,
                                        label="Environment Intensity"))
        scene_folder.add(NumericBinding(self.scene, "background_blurriness", 0, 1,
                                        label="Background Blurriness"))
        scene_folder.add(NumericBinding(self.scene, "background_intensity", 0, 10,
                                        label="Background Intensity"))

        rotation_folder = scene_folder.add_folder("Environment Rotation")
        rotation_folder.add(NumericBinding(self.scene.background_rotation, "y", 0, math.pi * 2,
                                           label="Background Rotation Y"))
        rotation_folder.add(NumericBinding(self.scene.environment_rotation, "y", 0, math.pi * 2,
                                           label="Environment Rotation Y"))

    def setup_lighting_gui(self) -> None:
        light_folder = self.panel.add_folder("Lighting")
        self.gui_controls = {
            "directionalColor": self.directional_light.color.get_hex_string(),
            "ambientColor": self.ambient_light.color.get_hex_string(),
        }

        directional_folder = light_folder.add_folder("Directional Light")
        directional_folder.add(NumericBinding(self.directional_light, "intensity", 0, 10, label="Intensity"))
        for axis in ("x", "y", "z"):
            directional_folder.add(NumericBinding(self.directional_light.position, axis, -20, 20,
                                                  label=f"Position {axis.upper()}"))
        directional_folder.add(ColorBinding(self.gui_controls, "directionalColor",
                                            self.directional_light.color.set, label="Color"))

        ambient_folder = light_folder.add_folder("Ambient Light")
        ambient_folder.add(NumericBinding(self.ambient_light, "intensity", 0, 2, label="Intensity"))
        ambient_folder.add(ColorBinding(self.gui_controls, "ambientColor",
                                        self.ambient_light.color.set, label="Color"))

    def setup_renderer_gui(self) -> None:
        renderer_folder = self.panel.add_folder("Renderer Settings")
        renderer_folder.add(OptionBinding(self.renderer, "tone_mapping", dict(TONE_MAPPING_OPTIONS),
                                          label="Tone Mapping"))
        renderer_folder.add(NumericBinding(self.renderer, "tone_mapping_exposure", *EXPOSURE_RANGE,
                                           label="Tone Mapping Exposure"))

    def load_environment(self) -> None:
        paths = self.config.assets.environment_map_paths()
        self.environment_map = self.cube_texture_loader.load(paths)
        self.scene.background = self.environment_map
        self.scene.environment = self.environment_map

    def load_model(self) -> None:
        paths = self.config.assets.ground_texture_paths()
        self.ground_textures = {slot: self.texture_loader.load(path) for slot, path in paths.items()}
        self.ground_textures["color"].color_space = SRGB_COLOR_SPACE

        self.gltf_loader.load(self.config.assets.resolve(self.config.assets.model),
                              on_load=self.on_model_loaded)

    def setup_event_listeners(self) -> None:
        self.server.on_client_connect(self._on_client_connect)

    def start_animation_loop(self) -> None:
        self.frame_loop.set_animation_loop(self.tick)

    # Callbacks

    def on_model_loaded(self, gltf: GLTF) -> None:
        """Attach the model, enable its shadows and build the ground under it."""
        self.model = gltf.scene
        self.scene.add(self.model)

        for node in self.model.traverse():
            if node.is_mesh:
                node.cast_shadow = True
                node.receive_shadow = True

        self.create_ground(self.ground_textures)

    def create_ground(self, textures: Dict[str, Texture]) -> Mesh:
        if self.model is None:
            raise RuntimeError("Model not loaded, ground needs its bounding box")

        bounding_box = Box3().set_from_object(self.model)
        self.ground = create_ground(textures, bounding_box, self.config.ground)
        self.scene.add(self.ground)
        return self.ground

    def resize(self, width: int, height: int, device_pixel_ratio: Optional[float] = None) -> None:
        """Apply a viewport size change to the camera and the output surface."""
        self.sizes.width = int(width)
        self.sizes.height = int(height)
        if device_pixel_ratio is not None:
            self.sizes.device_pixel_ratio = float(device_pixel_ratio)

        self.camera.aspect = self.sizes.width / self.sizes.height
        self.camera.update_projection_matrix()

        self.renderer.set_size(self.sizes.width, self.sizes.height)
        self.renderer.set_pixel_ratio(self._capped_pixel_ratio())
        logger.debug(f"Resized to {self.sizes.width}x{self.sizes.height}")

    def _capped_pixel_ratio(self) -> float:
        return min(self.sizes.device_pixel_ratio, self.config.viewport.max_pixel_ratio)

    def _on_client_connect(self, client: viser.ClientHandle) -> None:
        logger.info(f"Client {client.client_id} connected")

        def on_camera_update(_) -> None:
            self.frame_loop.call_soon(
                self.handle_client_camera,
                client.client_id,
                tuple(client.camera.position),
                tuple(client.camera.look_at),
                client.camera.aspect,
            )

        client.camera.on_update(on_camera_update)
        # New clients get the current camera on the next frame.
        self.frame_loop.call_soon(self.camera.touch)

    def handle_client_camera(self, client_id: int, position: Sequence[float],
                             look_at: Sequence[float], aspect: Optional[float]) -> None:
        """Apply a camera report from a browser client.

        Viser reports the viewport aspect but not its pixel size, so an aspect
        change becomes a resize that keeps the height.
        """
        if aspect and abs(aspect - self.camera.aspect) > 1e-6:
            self.resize(max(1, round(self.sizes.height * aspect)), self.sizes.height)
        if self.controls.sync_from_client(position, look_at):
            self.renderer.mark_camera_synced(client_id)

    def tick(self, elapsed_time: float = 0.0) -> None:
        self.controls.update()
        self.renderer.render(self.scene, self.camera)

    # Lifecycle

    def run(self) -> None:
        """Render until stop() is called; blocks."""
        self.frame_loop.run()

    def stop(self) -> None:
        self.frame_loop.stop()
        for loader in (self.texture_loader, self.cube_texture_loader, self.gltf_loader):
            loader.shutdown()
        if self._owns_executor:
            self.executor.shutdown(wait=False, cancel_futures=True)
        if self.server_wrapper is not None:
            self.server_wrapper.stop()

    def wait_for_assets(self, timeout: Optional[float] = None) -> bool:
        """Block until all asset loads finished and deliver their results."""
        done = all(loader.wait(timeout) for loader in
                   (self.texture_loader, self.cube_texture_loader, self.gltf_loader))
        self.frame_loop.drain()
        return done

    def get_info(self) -> Dict[str, Any]:
        """Get information about the scene state."""
        info: Dict[str, Any] = {
            "server_running": self.server is not None,
            "frames_rendered": self.renderer.frame_count,
            "viewport": {
                "width": self.sizes.width,
                "height": self.sizes.height,
                "drawing_buffer": list(self.renderer.get_drawing_buffer_size()),
            },
            "camera": {
                "position": list(self.camera.position.to_tuple()),
                "target": list(self.controls.target.to_tuple()),
                "aspect": self.camera.aspect,
            },
            "environment_ready": self.environment_map.is_ready,
            "ground_textures_ready": sorted(k for k, t in self.ground_textures.items() if t.is_ready),
            "loaders": {
                "texture": self.texture_loader.get_statistics(),
                "cube_texture": self.cube_texture_loader.get_statistics(),
                "gltf": self.gltf_loader.get_statistics(),
            },
        }
        if self.model is not None:
            box = Box3().set_from_object(self.model)
            info["model_bounds"] = {"min": list(box.min.to_tuple()), "max": list(box.max.to_tuple())}
        if self.ground is not None:
            info["ground_y"] = self.ground.position.y
        return info
