"""Textured ground plane placed under the loaded model."""

import logging
import math
from typing import Dict, Optional

from ..config import GroundConfig
from ..geometry import MeshStandardMaterial, PlaneGeometry, Texture
from ..scene import Box3, Mesh

logger = logging.getLogger(__name__)

GROUND_TEXTURE_SLOTS = ("color", "ambient_occlusion", "normal", "roughness", "metalness", "height")


def create_ground(textures: Dict[str, Texture], bounding_box: Box3,
                  config: Optional[GroundConfig] = None) -> Mesh:
    """Build the ground mesh so the model rests on it.

    Textures may still be loading; the renderer re-sends the ground once
    they resolve.

    Args:
        textures: Texture handles keyed by GROUND_TEXTURE_SLOTS
        bounding_box: World space bounds of the model
        config: Ground dimensions and displacement

    Returns:
        Ground mesh, horizontal, at bounding_box.min.y - offset
    """
    config = config or GroundConfig()
    missing = [slot for slot in GROUND_TEXTURE_SLOTS if slot not in textures]
    if missing:
        raise ValueError(f"Missing ground textures: {missing}")

    material = MeshStandardMaterial(
        map=textures["color"],
        ao_map=textures["ambient_occlusion"],
        normal_map=textures["normal"],
        roughness_map=textures["roughness"],
        metalness_map=textures["metalness"],
        displacement_map=textures["height"],
        displacement_scale=config.displacement_scale,
    )

    geometry = PlaneGeometry(config.width, config.height,
                             config.width_segments, config.height_segments)
    # Second UV channel for ambient occlusion sampling.
    geometry.set_attribute("uv2", geometry.get_attribute("uv").copy())

    ground = Mesh(geometry, material, name="ground")
    ground.receive_shadow = True
    ground.rotation.x = -math.pi / 2

    if bounding_box.is_empty():
        logger.warning("Model bounding box is empty, ground height is undefined")
    ground.position.y = bounding_box.min.y - config.offset

    logger.info(f"Ground created at y={ground.position.y:.3f}")
    return ground
