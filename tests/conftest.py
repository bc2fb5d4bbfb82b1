from unittest.mock import MagicMock

import pytest
import trimesh
from PIL import Image

from realistic_render.config import PreviewConfig
from realistic_render.loop import FrameLoop

FACE_COLORS = [
    (255, 0, 0),
    (0, 255, 255),
    (0, 255, 0),
    (255, 0, 255),
    (0, 0, 255),
    (255, 255, 0),
]


def write_image(path, color, size=(16, 16), mode="RGB"):
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new(mode, size, color).save(path)
    return path


@pytest.fixture
def mock_server():
    server = MagicMock()
    server.get_clients.return_value = {}
    return server


@pytest.fixture
def static_root(tmp_path):
    """Asset tree laid out like the default configuration.

    The model is a 1 x 4 x 1 box centered on the origin, so its lowest
    point is y = -2.
    """
    root = tmp_path / "static"
    assets = PreviewConfig().assets

    env_dir = root / assets.environment_map_dir
    for name, color in zip(assets.environment_map_faces, FACE_COLORS):
        write_image(env_dir / name, color, size=(8, 8))

    ground_dir = root / assets.ground_texture_dir
    write_image(ground_dir / assets.ground_color, (120, 100, 80))
    write_image(ground_dir / assets.ground_ambient_occlusion, (255, 255, 255))
    write_image(ground_dir / assets.ground_normal, (128, 128, 255))
    write_image(ground_dir / assets.ground_roughness, (0, 200, 0))
    write_image(ground_dir / assets.ground_metalness, (0, 0, 50))
    write_image(ground_dir / assets.ground_height, (0, 0, 0))

    model_path = root / assets.model
    model_path.parent.mkdir(parents=True, exist_ok=True)
    trimesh.creation.box(extents=(1.0, 4.0, 1.0)).export(str(model_path))

    return root


@pytest.fixture
def config(static_root):
    config = PreviewConfig()
    config.assets.static_root = str(static_root)
    return config


@pytest.fixture
def frame_loop():
    return FrameLoop(fps=60)

