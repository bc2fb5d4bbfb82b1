#!/usr/bin/env python3
"""Serve the realistic render preview scene."""

import json
import logging
import sys

from realistic_render import PreviewConfig, SceneController


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Serve the realistic render preview scene")
    parser.add_argument("--config", type=str, default=None,
                        help="JSON file overriding the default scene configuration")
    parser.add_argument("--static-root", type=str, default=None,
                        help="Directory holding models/, textures/, environmentMaps/ and draco/")
    parser.add_argument("--host", type=str, default=None,
                        help="Host address")
    parser.add_argument("--port", type=int, default=None,
                        help="Port number")
    parser.add_argument("--fps", type=float, default=None,
                        help="Target frame rate")
    parser.add_argument("--log-level", type=str, default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level")
    parser.add_argument("--dump-config", action="store_true",
                        help="Print the effective configuration and exit")

    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, args.log_level),
                        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s')

    config = PreviewConfig.from_json(args.config) if args.config else PreviewConfig()
    if args.static_root is not None:
        config.assets.static_root = args.static_root
    if args.host is not None:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port
    if args.fps is not None:
        config.viewport.fps = args.fps

    if args.dump_config:
        print(json.dumps(config.to_dict(), indent=2))
        return 0

    controller = SceneController(config)

    try:
        print(f"\n=== Access the preview at http://localhost:{config.server.port} ===")
        print("Press Ctrl+C to stop the server")
        controller.run()
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        controller.stop()

    info = controller.get_info()
    print(f"Frames rendered: {info['frames_rendered']}")
    for name, stats in info['loaders'].items():
        print(f"  - {name}: {stats['successful_loads']}/{stats['total_attempts']} loaded")
    return 0


if __name__ == "__main__":
    sys.exit(main())
