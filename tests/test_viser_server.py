from unittest.mock import MagicMock

from realistic_render import viser_server
from realistic_render.controller import SceneController
from realistic_render.viser_server import BasicViserServer


def test_not_started():
    wrapper = BasicViserServer()
    assert wrapper.server is None
    wrapper.stop()


def test_start_configures_scene(monkeypatch):
    factory = MagicMock()
    monkeypatch.setattr(viser_server.viser, "ViserServer", factory)

    wrapper = BasicViserServer(host="127.0.0.1", port=9000)
    server = wrapper.start()

    factory.assert_called_once_with(host="127.0.0.1", port=9000)
    server.scene.set_up_direction.assert_called_once_with("+y")
    server.scene.configure_default_lights.assert_called_once_with(enabled=False)
    assert wrapper.server is server

    wrapper.stop()
    server.stop.assert_called_once()
    assert wrapper.server is None


def test_controller_stops_the_server_it_started(monkeypatch, config):
    factory = MagicMock()
    factory.return_value.get_clients.return_value = {}
    monkeypatch.setattr(viser_server.viser, "ViserServer", factory)

    controller = SceneController(config)
    assert controller.server is factory.return_value
    controller.stop()
    factory.return_value.stop.assert_called_once()
    assert controller.server_wrapper.server is None
