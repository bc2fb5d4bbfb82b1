"""Realistic render preview: a PBR model preview scene served through viser."""

from .config import PreviewConfig
from .controller import SceneController
from .loop import FrameLoop
from .viser_server import BasicViserServer

__all__ = [
    'PreviewConfig',
    'SceneController',
    'FrameLoop',
    'BasicViserServer',
]
