"""Viser server wrapper for the preview scene."""

import logging
from typing import Optional

import viser

logger = logging.getLogger(__name__)


class BasicViserServer:
    """Starts a viser server set up for a y-up scene with explicit lights."""

    def __init__(self, host: str = "0.0.0.0", port: int = 8080):
        """Initialize the Viser server.

        Args:
            host: Host address to bind to
            port: Port number to use
        """
        self.host = host
        self.port = port
        self.server: Optional[viser.ViserServer] = None

    def start(self) -> viser.ViserServer:
        """Start the Viser server."""
        self.server = viser.ViserServer(host=self.host, port=self.port)
        self.server.scene.set_up_direction("+y")
        # The scene brings its own lights.
        self.server.scene.configure_default_lights(enabled=False)
        logger.info(f"Viser server started at http://localhost:{self.port}")
        return self.server

    def stop(self) -> None:
        """Stop the server."""
        if self.server is not None:
            self.server.stop()
            self.server = None
            logger.info("Server stopped.")
