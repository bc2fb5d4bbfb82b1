import json
import math

import pytest

from realistic_render.config import PreviewConfig


def test_defaults():
    config = PreviewConfig()
    assert config.camera.fov == 75.0
    assert (config.camera.near, config.camera.far) == (0.1, 100.0)
    assert config.camera.position == (-0.5, 0.75, 3.0)
    assert config.directional_light.color == "#835520"
    assert config.directional_light.intensity == 10.0
    assert config.directional_light.position == (-10.0, 10.0, -3.0)
    assert config.directional_light.shadow_camera_far == 50.0
    assert config.directional_light.shadow_map_size == (512, 512)
    assert config.directional_light.shadow_bias == -0.005
    assert config.ambient_light.color == "#8a8a8a"
    assert config.renderer.tone_mapping == "ACESFilmic"
    assert config.renderer.tone_mapping_exposure == 1.5
    assert config.renderer.shadow_map_type == "PCFSoft"
    assert config.scene.background_rotation_y == 5.0
    assert config.ground.displacement_scale == 0.15
    config.validate()


def test_asset_paths_resolve_under_static_root():
    config = PreviewConfig()
    config.assets.static_root = "/srv/assets"
    paths = config.assets.environment_map_paths()
    assert [p.name for p in paths] == ["px.png", "nx.png", "py.png", "ny.png", "pz.png", "nz.png"]
    assert str(paths[0]).startswith("/srv/assets")

    textures = config.assets.ground_texture_paths()
    assert set(textures) == {"color", "ambient_occlusion", "normal", "roughness", "metalness", "height"}


def test_json_round_trip(tmp_path):
    config = PreviewConfig()
    config.camera.fov = 60.0
    config.directional_light.position = (1.0, 2.0, 3.0)
    path = tmp_path / "config.json"
    config.save_json(path)

    loaded = PreviewConfig.from_json(path)
    assert loaded == config
    assert isinstance(loaded.directional_light.position, tuple)


def test_partial_dict_keeps_defaults():
    config = PreviewConfig.from_dict({"renderer": {"tone_mapping_exposure": 2.0}})
    assert config.renderer.tone_mapping_exposure == 2.0
    assert config.renderer.tone_mapping == "ACESFilmic"
    assert config.camera.fov == 75.0


def test_unknown_keys_rejected():
    with pytest.raises(ValueError, match="bogus"):
        PreviewConfig.from_dict({"camera": {"bogus": 1}})


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        PreviewConfig.from_json(tmp_path / "missing.json")


@pytest.mark.parametrize("section, key, value", [
    ("assets", "draco_decoder_type", "native"),
    ("viewport", "width", 0),
    ("viewport", "fps", -1),
    ("camera", "near", 200.0),
])
def test_validate_rejects(section, key, value):
    config = PreviewConfig()
    setattr(getattr(config, section), key, value)
    with pytest.raises(ValueError):
        config.validate()


def test_to_dict_is_json_serializable():
    data = json.loads(json.dumps(PreviewConfig().to_dict()))
    assert math.isclose(data["camera"]["damping_factor"], 0.05)
