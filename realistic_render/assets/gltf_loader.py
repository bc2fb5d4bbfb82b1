"""GLB model loading with Draco support.

Plain GLB files go through trimesh. Files using
KHR_draco_mesh_compression are walked with pygltflib and each compressed
primitive is decoded with DracoPy. Either way the result is a Group with one
Mesh per primitive, node transforms baked into the vertices.
"""

import io
import logging
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import numpy as np
import pygltflib
import trimesh
import DracoPy
import viser.transforms as vtf
from PIL import Image

from ..config import DRACO_DECODER_TYPES
from ..scene import Box3, Group, Mesh
from .loaders import Loader, PathLike

logger = logging.getLogger(__name__)

DRACO_EXTENSION = "KHR_draco_mesh_compression"
TRIANGLES = 4

_COMPONENT_TYPES = {
    5120: np.int8,
    5121: np.uint8,
    5122: np.int16,
    5123: np.uint16,
    5125: np.uint32,
    5126: np.float32,
}
_TYPE_SIZES = {"SCALAR": 1, "VEC2": 2, "VEC3": 3, "VEC4": 4, "MAT4": 16}


class GLTF:
    """Result of a model load."""

    def __init__(self, scene: Group, file_path: Path, metadata: Optional[Dict[str, Any]] = None):
        self.scene = scene
        self.file_path = file_path
        self.metadata = metadata or {}

    def meshes(self) -> List[Mesh]:
        return [node for node in self.scene.traverse() if node.is_mesh]

    def get_statistics(self) -> Dict[str, Any]:
        """Get model statistics summary."""
        meshes = self.meshes()
        box = Box3().set_from_object(self.scene)
        return {
            'file_path': str(self.file_path),
            'mesh_count': len(meshes),
            'vertex_count': sum(len(m.geometry.vertices) for m in meshes),
            'face_count': sum(len(m.geometry.faces) for m in meshes),
            'bounds': None if box.is_empty() else [list(box.min.to_tuple()), list(box.max.to_tuple())],
            **self.metadata,
        }


class DracoLoader:
    """Decoder for Draco-compressed primitives.

    ``decoder_path`` is where the browser-side decoder files are served
    from; decoding in this process always goes through DracoPy, for either
    decoder type.
    """

    def __init__(self, decoder_path: Optional[str] = None,
                 decoder_config: Optional[Dict[str, str]] = None):
        self.decoder_path = ""
        self.decoder_config: Dict[str, str] = {"type": "js"}
        self.decoded_count = 0
        if decoder_path is not None:
            self.set_decoder_path(decoder_path)
        if decoder_config is not None:
            self.set_decoder_config(decoder_config)

    def set_decoder_path(self, path: str) -> "DracoLoader":
        self.decoder_path = str(path)
        return self

    def set_decoder_config(self, config: Dict[str, str]) -> "DracoLoader":
        decoder_type = config.get("type", "js")
        if decoder_type not in DRACO_DECODER_TYPES:
            raise ValueError(f"Unsupported Draco decoder type: {decoder_type!r}")
        self.decoder_config = {**self.decoder_config, **config}
        return self

    def decode(self, data: bytes) -> Dict[str, Optional[np.ndarray]]:
        """Decode one Draco buffer.

        Returns:
            Dictionary with 'positions', 'faces', 'normals' and 'uvs'
            (the last two may be None)
        """
        decoded = DracoPy.decode(data)
        positions = np.asarray(decoded.points, dtype=np.float64).reshape(-1, 3)
        faces = np.asarray(decoded.faces, dtype=np.int64).reshape(-1, 3)

        normals = getattr(decoded, "normals", None)
        if normals is not None and len(normals) > 0:
            normals = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
        else:
            normals = None

        uvs = getattr(decoded, "tex_coord", None)
        if uvs is not None and len(uvs) > 0:
            uvs = np.asarray(uvs, dtype=np.float64).reshape(-1, 2)
        else:
            uvs = None

        self.decoded_count += 1
        return {"positions": positions, "faces": faces, "normals": normals, "uvs": uvs}


class GLTFLoader(Loader):
    """Loads .glb models into the scene graph."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.draco_loader: Optional[DracoLoader] = None

    def set_draco_loader(self, draco_loader: DracoLoader) -> "GLTFLoader":
        self.draco_loader = draco_loader
        return self

    def load(self, path: PathLike,
             on_load: Optional[Callable[[GLTF], None]] = None,
             on_error: Optional[Callable[[BaseException], None]] = None) -> Future:
        """Start loading a model.

        Args:
            path: Path to a .glb file
            on_load: Called with the GLTF result
            on_error: Called with the exception if loading fails

        Returns:
            Future resolving to the GLTF result
        """
        path = Path(path)
        return self._submit(
            lambda: self.parse(path),
            on_load or (lambda _: None),
            on_error or (lambda _: None),
            f"model {path.name}",
        )

    def parse(self, path: PathLike) -> GLTF:
        """Load a model synchronously.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file needs Draco and no DracoLoader is set
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"GLB file not found: {path}")

        document = pygltflib.GLTF2.load(str(path))
        uses_draco = DRACO_EXTENSION in (document.extensionsUsed or [])

        if uses_draco:
            if self.draco_loader is None:
                raise ValueError(f"{path.name} uses {DRACO_EXTENSION} but no DracoLoader is set")
            root = self._parse_document(document, path)
            loader_name = "pygltflib+draco"
        else:
            root = self._parse_with_trimesh(path)
            loader_name = "trimesh"

        model = GLTF(root, path, metadata={'loader': loader_name, 'draco': uses_draco})
        if not model.meshes():
            logger.warning(f"No meshes found in {path.name}")
        return model

    def _parse_with_trimesh(self, path: Path) -> Group:
        scene = trimesh.load(str(path), force='scene')
        root = Group(name=path.stem)

        for node_name in scene.graph.nodes_geometry:
            transform, geometry_name = scene.graph[node_name]
            geometry = scene.geometry.get(geometry_name)
            if not isinstance(geometry, trimesh.Trimesh):
                continue
            geometry = geometry.copy()
            geometry.apply_transform(transform)
            root.add(Mesh(geometry, name=str(node_name)))

        return root

    # pygltflib path

    def _parse_document(self, document: pygltflib.GLTF2, path: Path) -> Group:
        blob = document.binary_blob()
        if blob is None:
            raise ValueError(f"{path.name} has no binary chunk, only .glb files are supported")

        root = Group(name=path.stem)
        scene_index = document.scene if document.scene is not None else 0
        if not document.scenes:
            return root

        for node_index in document.scenes[scene_index].nodes or []:
            self._add_node(document, blob, node_index, np.eye(4), root)
        return root

    def _add_node(self, document: pygltflib.GLTF2, blob: bytes, node_index: int,
                  parent_matrix: np.ndarray, root: Group) -> None:
        node = document.nodes[node_index]
        world = parent_matrix @ _node_matrix(node)

        if node.mesh is not None:
            gltf_mesh = document.meshes[node.mesh]
            base_name = node.name or gltf_mesh.name or f"node{node_index}"
            for primitive_index, primitive in enumerate(gltf_mesh.primitives):
                if primitive.mode not in (None, TRIANGLES):
                    logger.warning(f"Skipping non-triangle primitive in {base_name}")
                    continue
                geometry = self._build_primitive(document, blob, primitive)
                geometry.apply_transform(world)
                # Instanced meshes share base_name, node_index keeps names unique.
                root.add(Mesh(geometry, name=f"{base_name}_{node_index}_{primitive_index}"))

        for child_index in node.children or []:
            self._add_node(document, blob, child_index, world, root)

    def _build_primitive(self, document: pygltflib.GLTF2, blob: bytes,
                         primitive: pygltflib.Primitive) -> trimesh.Trimesh:
        draco = (primitive.extensions or {}).get(DRACO_EXTENSION)
        if draco is not None:
            view = document.bufferViews[draco["bufferView"]]
            data = _view_bytes(view, blob)
            decoded = self.draco_loader.decode(data)
        else:
            attributes = primitive.attributes
            positions = _read_accessor(document, blob, attributes.POSITION).astype(np.float64)
            if primitive.indices is not None:
                faces = _read_accessor(document, blob, primitive.indices).astype(np.int64).reshape(-1, 3)
            else:
                faces = np.arange(len(positions), dtype=np.int64).reshape(-1, 3)
            normals = (_read_accessor(document, blob, attributes.NORMAL).astype(np.float64)
                       if attributes.NORMAL is not None else None)
            uvs = (_read_accessor(document, blob, attributes.TEXCOORD_0).astype(np.float64)
                   if attributes.TEXCOORD_0 is not None else None)
            decoded = {"positions": positions, "faces": faces, "normals": normals, "uvs": uvs}

        mesh = trimesh.Trimesh(
            vertices=decoded["positions"],
            faces=decoded["faces"],
            vertex_normals=decoded["normals"],
            process=False,
        )
        mesh.visual = self._build_visual(document, blob, primitive, decoded["uvs"], len(mesh.vertices))
        return mesh

    def _build_visual(self, document: pygltflib.GLTF2, blob: bytes,
                      primitive: pygltflib.Primitive, uvs: Optional[np.ndarray],
                      vertex_count: int) -> Any:
        base_color = (1.0, 1.0, 1.0, 1.0)
        metallic, roughness = 1.0, 1.0
        texture_image = None

        if primitive.material is not None:
            material = document.materials[primitive.material]
            pbr = material.pbrMetallicRoughness
            if pbr is not None:
                if pbr.baseColorFactor is not None:
                    base_color = tuple(pbr.baseColorFactor)
                if pbr.metallicFactor is not None:
                    metallic = pbr.metallicFactor
                if pbr.roughnessFactor is not None:
                    roughness = pbr.roughnessFactor
                if pbr.baseColorTexture is not None:
                    texture_image = _read_texture_image(document, blob, pbr.baseColorTexture.index)

        if uvs is not None:
            # glTF puts the UV origin top-left, trimesh bottom-left.
            uvs = uvs.copy()
            uvs[:, 1] = 1.0 - uvs[:, 1]
            pbr_material = trimesh.visual.material.PBRMaterial(
                baseColorFactor=[int(round(c * 255)) for c in base_color],
                baseColorTexture=texture_image,
                metallicFactor=metallic,
                roughnessFactor=roughness,
            )
            return trimesh.visual.TextureVisuals(uv=uvs, material=pbr_material)

        rgba = np.tile(np.array([int(round(c * 255)) for c in base_color], dtype=np.uint8),
                       (vertex_count, 1))
        return trimesh.visual.ColorVisuals(vertex_colors=rgba)


def _node_matrix(node: pygltflib.Node) -> np.ndarray:
    if node.matrix is not None:
        return np.array(node.matrix, dtype=np.float64).reshape(4, 4).T

    m = np.eye(4)
    if node.scale is not None:
        m = np.diag([*node.scale, 1.0]) @ m
    if node.rotation is not None:
        x, y, z, w = node.rotation
        r = np.eye(4)
        r[:3, :3] = vtf.SO3(wxyz=np.array([w, x, y, z])).as_matrix()
        m = r @ m
    if node.translation is not None:
        t = np.eye(4)
        t[:3, 3] = node.translation
        m = t @ m
    return m


def _view_bytes(view: pygltflib.BufferView, blob: bytes) -> bytes:
    offset = view.byteOffset or 0
    return blob[offset:offset + view.byteLength]


def _read_accessor(document: pygltflib.GLTF2, blob: bytes, accessor_index: int) -> np.ndarray:
    accessor = document.accessors[accessor_index]
    dtype = np.dtype(_COMPONENT_TYPES[accessor.componentType])
    width = _TYPE_SIZES[accessor.type]

    if accessor.bufferView is None:
        return np.zeros((accessor.count, width) if width > 1 else accessor.count, dtype=dtype)

    view = document.bufferViews[accessor.bufferView]
    offset = (view.byteOffset or 0) + (accessor.byteOffset or 0)
    item_size = dtype.itemsize * width
    stride = view.byteStride or item_size

    data = np.ndarray(
        shape=(accessor.count, width),
        dtype=dtype,
        buffer=blob,
        offset=offset,
        strides=(stride, dtype.itemsize),
    ).copy()

    if accessor.normalized and dtype.kind in "iu":
        data = data.astype(np.float32) / np.iinfo(dtype).max
    return data if width > 1 else data.reshape(-1)


def _read_texture_image(document: pygltflib.GLTF2, blob: bytes,
                        texture_index: int) -> Optional[Image.Image]:
    texture = document.textures[texture_index]
    if texture.source is None:
        return None
    image = document.images[texture.source]
    if image.bufferView is None:
        logger.warning(f"Skipping external texture image {image.uri!r}")
        return None
    data = _view_bytes(document.bufferViews[image.bufferView], blob)
    with Image.open(io.BytesIO(data)) as decoded:
        decoded.load()
        return decoded.convert('RGBA' if decoded.mode in ('RGBA', 'LA') else 'RGB')
