from unittest.mock import MagicMock

import DracoPy
import numpy as np
import pygltflib
import pytest
import trimesh

from realistic_render.assets import (
    DRACO_EXTENSION,
    CubeTextureLoader,
    DracoLoader,
    GLTFLoader,
    TextureLoader,
    read_image,
)
from realistic_render.camera import PerspectiveCamera
from realistic_render.loop import FrameLoop
from realistic_render.renderer import Renderer
from realistic_render.scene import Scene

from .conftest import FACE_COLORS, write_image


@pytest.fixture
def texture_loader():
    loader = TextureLoader()
    yield loader
    loader.shutdown()


class TestTextureLoader:
    def test_load_resolves_texture(self, tmp_path, texture_loader):
        path = write_image(tmp_path / "diff.jpg", (200, 100, 50))
        loaded = []

        texture = texture_loader.load(path, on_load=loaded.append)
        assert texture_loader.wait(timeout=10)

        assert loaded == [texture]
        assert texture.is_ready
        assert texture.image.size == (16, 16)
        assert texture_loader.get_statistics()["successful_loads"] == 1

    def test_resolution_waits_for_frame_loop(self, tmp_path):
        loop = FrameLoop()
        loader = TextureLoader(dispatch=loop.call_soon)
        try:
            texture = loader.load(write_image(tmp_path / "ao.png", (255, 255, 255)))
            assert loader.wait(timeout=10)
            assert not texture.is_ready

            loop.drain()
            assert texture.is_ready
        finally:
            loader.shutdown()

    def test_missing_file_is_reported(self, tmp_path, texture_loader, caplog):
        errors = []
        texture = texture_loader.load(tmp_path / "missing.jpg", on_error=errors.append)
        assert texture_loader.wait(timeout=10)

        assert not texture.is_ready
        assert isinstance(texture.error, FileNotFoundError)
        assert len(errors) == 1
        stats = texture_loader.get_statistics()
        assert stats["failed_loads"] == 1
        assert stats["success_rate"] == 0.0
        assert "Failed to load texture missing.jpg" in caplog.text

    def test_read_image_keeps_alpha(self, tmp_path):
        path = write_image(tmp_path / "alpha.png", (1, 2, 3, 4), mode="RGBA")
        assert read_image(path).mode == "RGBA"


class TestCubeTextureLoader:
    def test_load_six_faces(self, tmp_path):
        paths = [write_image(tmp_path / f"face{i}.png", color, size=(4, 4))
                 for i, color in enumerate(FACE_COLORS)]
        loader = CubeTextureLoader()
        try:
            cube = loader.load(paths)
            assert loader.wait(timeout=10)
        finally:
            loader.shutdown()

        assert cube.is_ready
        np.testing.assert_allclose(cube.sample(np.array([[1.0, 0.0, 0.0]]))[0], [1.0, 0.0, 0.0])

    def test_wrong_face_count(self, tmp_path):
        with pytest.raises(ValueError):
            CubeTextureLoader().load([tmp_path / "a.png"] * 5)

    def test_mismatched_face_sizes_fail(self, tmp_path):
        paths = [write_image(tmp_path / f"face{i}.png", (0, 0, 0), size=(4, 4)) for i in range(5)]
        paths.append(write_image(tmp_path / "face5.png", (0, 0, 0), size=(8, 8)))
        loader = CubeTextureLoader()
        try:
            cube = loader.load(paths)
            assert loader.wait(timeout=10)
        finally:
            loader.shutdown()
        assert not cube.is_ready
        assert isinstance(cube.error, ValueError)


def write_draco_glb(path, mesh, translation, nodes=None, mesh_name=None):
    encoded = DracoPy.encode(mesh.vertices.astype(np.float32), mesh.faces.astype(np.uint32))
    encoded = bytes(encoded)

    if nodes is None:
        nodes = [pygltflib.Node(name="shell", mesh=0, translation=list(translation))]
    document = pygltflib.GLTF2(
        scene=0,
        scenes=[pygltflib.Scene(nodes=list(range(len(nodes))))],
        nodes=nodes,
        meshes=[pygltflib.Mesh(name=mesh_name, primitives=[pygltflib.Primitive(
            attributes=pygltflib.Attributes(POSITION=0),
            indices=1,
            extensions={DRACO_EXTENSION: {"bufferView": 0, "attributes": {"POSITION": 0}}},
        )])],
        accessors=[
            pygltflib.Accessor(
                componentType=pygltflib.FLOAT,
                count=len(mesh.vertices),
                type=pygltflib.VEC3,
                min=mesh.vertices.min(axis=0).tolist(),
                max=mesh.vertices.max(axis=0).tolist(),
            ),
            pygltflib.Accessor(
                componentType=pygltflib.UNSIGNED_INT,
                count=mesh.faces.size,
                type=pygltflib.SCALAR,
            ),
        ],
        bufferViews=[pygltflib.BufferView(buffer=0, byteOffset=0, byteLength=len(encoded))],
        buffers=[pygltflib.Buffer(byteLength=len(encoded))],
        extensionsUsed=[DRACO_EXTENSION],
        extensionsRequired=[DRACO_EXTENSION],
    )
    document.set_binary_blob(encoded)
    document.save_binary(str(path))
    return path


class TestGLTFLoader:
    def test_plain_glb_loads_through_trimesh(self, tmp_path):
        path = tmp_path / "box.glb"
        trimesh.creation.box(extents=(1.0, 4.0, 1.0)).export(str(path))

        gltf = GLTFLoader().parse(path)
        stats = gltf.get_statistics()
        assert stats["loader"] == "trimesh"
        assert stats["draco"] is False
        assert stats["mesh_count"] == 1
        assert stats["bounds"][0][1] == pytest.approx(-2.0)
        assert stats["bounds"][1][1] == pytest.approx(2.0)

    def test_draco_glb_decodes(self, tmp_path):
        box = trimesh.creation.box(extents=(2.0, 2.0, 2.0))
        path = write_draco_glb(tmp_path / "compressed.glb", box, (0.0, 1.0, 0.0))

        draco = DracoLoader("draco/", {"type": "js"})
        loader = GLTFLoader().set_draco_loader(draco)
        gltf = loader.parse(path)

        assert gltf.metadata == {"loader": "pygltflib+draco", "draco": True}
        assert draco.decoded_count == 1
        meshes = gltf.meshes()
        assert [m.name for m in meshes] == ["shell_0_0"]
        assert len(meshes[0].geometry.faces) == len(box.faces)

        bounds = gltf.get_statistics()["bounds"]
        np.testing.assert_allclose(bounds[0], [-1.0, 0.0, -1.0], atol=1e-3)
        np.testing.assert_allclose(bounds[1], [1.0, 2.0, 1.0], atol=1e-3)

    def test_instanced_mesh_keeps_every_node(self, tmp_path):
        nodes = [
            pygltflib.Node(mesh=0, translation=[-2.0, 0.0, 0.0]),
            pygltflib.Node(mesh=0, translation=[2.0, 0.0, 0.0]),
        ]
        path = write_draco_glb(tmp_path / "twins.glb", trimesh.creation.box(), None,
                               nodes=nodes, mesh_name="flipper")
        gltf = GLTFLoader().set_draco_loader(DracoLoader()).parse(path)
        assert [m.name for m in gltf.meshes()] == ["flipper_0_0", "flipper_1_0"]

        server = MagicMock()
        server.get_clients.return_value = {}
        scene = Scene()
        camera = PerspectiveCamera(75, 1.0, 0.1, 100)
        scene.add(camera, gltf.scene)
        Renderer(server).render(scene, camera)

        names = [c.kwargs["name"] for c in server.scene.add_mesh_trimesh.call_args_list]
        assert names == ["/twins/flipper_0_0", "/twins/flipper_1_0"]

    def test_draco_glb_needs_draco_loader(self, tmp_path):
        path = write_draco_glb(tmp_path / "compressed.glb", trimesh.creation.box(), (0.0, 0.0, 0.0))
        with pytest.raises(ValueError, match=DRACO_EXTENSION):
            GLTFLoader().parse(path)

    def test_async_load_failure_is_contained(self, tmp_path):
        loader = GLTFLoader()
        errors = []
        future = loader.load(tmp_path / "missing.glb", on_error=errors.append)
        assert loader.wait(timeout=10)
        loader.shutdown()

        assert isinstance(future.exception(), FileNotFoundError)
        assert len(errors) == 1
        assert loader.get_statistics()["failed_loads"] == 1

    def test_draco_decoder_type_validated(self):
        with pytest.raises(ValueError):
            DracoLoader(decoder_config={"type": "native"})
