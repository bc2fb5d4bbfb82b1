"""Asset loaders and derived scene assets."""

from .loaders import Loader, TextureLoader, CubeTextureLoader, read_image
from .gltf_loader import GLTF, GLTFLoader, DracoLoader, DRACO_EXTENSION
from .ground import create_ground, GROUND_TEXTURE_SLOTS

__all__ = [
    'Loader',
    'TextureLoader',
    'CubeTextureLoader',
    'read_image',
    'GLTF',
    'GLTFLoader',
    'DracoLoader',
    'DRACO_EXTENSION',
    'create_ground',
    'GROUND_TEXTURE_SLOTS',
]
