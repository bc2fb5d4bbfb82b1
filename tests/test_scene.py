import math

import numpy as np
import pytest
import trimesh

from realistic_render.scene import Box3, Color, Group, Mesh, Object3D, Scene, Vector3


class TestColor:
    def test_hex_round_trip(self):
        assert Color("#835520").get_hex_string() == "#835520"
        assert Color("8a8a8a").to_rgb255() == (138, 138, 138)

    def test_set_from_components(self):
        color = Color().set((1.0, 0.5, 0.0))
        assert color.to_rgb255() == (255, 128, 0)

    def test_set_copies_other_color(self):
        color = Color("#000000")
        color.set(Color("#ff0000"))
        assert color == Color("#ff0000")

    @pytest.mark.parametrize("value", ["#12345", "red", "#gg0000"])
    def test_invalid_hex_rejected(self, value):
        with pytest.raises(ValueError):
            Color(value)

    def test_wrong_component_count_rejected(self):
        with pytest.raises(ValueError):
            Color((1.0, 0.0))


class TestObject3D:
    def test_add_reparents(self):
        a, b, child = Group("a"), Group("b"), Group("child")
        a.add(child)
        b.add(child)
        assert child.parent is b
        assert child not in a.children

    def test_cannot_add_self(self):
        node = Group("node")
        with pytest.raises(ValueError):
            node.add(node)

    def test_path_and_traverse(self):
        scene = Scene()
        model = Group("model")
        part = Mesh(trimesh.creation.box(), name="part")
        scene.add(model)
        model.add(part)

        assert part.path == "/model/part"
        assert [node.name for node in scene.traverse()] == ["scene", "model", "part"]

        visited = []
        scene.traverse(lambda node: visited.append(node.name))
        assert visited == ["scene", "model", "part"]

    def test_matrix_world_composes_parents(self):
        parent = Group("parent")
        parent.position.set(0.0, 1.0, 0.0)
        parent.rotation.y = math.pi / 2
        child = Object3D("child")
        child.position.set(1.0, 0.0, 0.0)
        parent.add(child)

        origin = child.matrix_world() @ np.array([0.0, 0.0, 0.0, 1.0])
        np.testing.assert_allclose(origin[:3], [0.0, 1.0, -1.0], atol=1e-9)


class TestBox3:
    def test_new_box_is_empty(self):
        box = Box3()
        assert box.is_empty()
        np.testing.assert_array_equal(box.get_size(), np.zeros(3))

    def test_set_from_object_uses_world_space(self):
        root = Group("root")
        mesh = Mesh(trimesh.creation.box(extents=(2.0, 2.0, 2.0)), name="box")
        mesh.position.set(0.0, 3.0, 0.0)
        root.add(mesh)

        box = Box3().set_from_object(root)
        assert box.min.y == pytest.approx(2.0)
        assert box.max.y == pytest.approx(4.0)
        np.testing.assert_allclose(box.get_size(), [2.0, 2.0, 2.0])

    def test_set_from_object_without_meshes_is_empty(self):
        assert Box3().set_from_object(Group("empty")).is_empty()

    def test_expand_by_points(self):
        box = Box3().expand_by_points(np.array([[0.0, -1.0, 2.0], [1.0, 1.0, -2.0]]))
        assert box.min.to_tuple() == (0.0, -1.0, -2.0)
        assert box.max.to_tuple() == (1.0, 1.0, 2.0)


def test_vector_from_array():
    assert Vector3.from_array(np.array([1, 2, 3])).to_tuple() == (1.0, 2.0, 3.0)
