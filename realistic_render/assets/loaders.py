"""Asynchronous texture loaders.

Loaders hand back a handle straight away and decode on a worker pool.
Completion (or failure) is delivered through ``dispatch``, normally
``FrameLoop.call_soon``, so handles only change on the loop thread.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from PIL import Image

from ..geometry import CubeTexture, Texture

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
Dispatch = Callable[..., None]


class Loader:
    """Shared plumbing: worker pool, result delivery and statistics."""

    def __init__(self, executor: Optional[ThreadPoolExecutor] = None,
                 dispatch: Optional[Dispatch] = None):
        """Initialize the loader.

        Args:
            executor: Worker pool; a private single-purpose pool is created if None
            dispatch: Callable used to deliver callbacks, e.g. FrameLoop.call_soon.
                Callbacks run on the worker thread when None.
        """
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix=type(self).__name__
        )
        self.dispatch = dispatch
        self._delivered: List[threading.Event] = []
        self._lock = threading.Lock()
        self.load_statistics = {
            'total_attempts': 0,
            'successful_loads': 0,
            'failed_loads': 0,
        }

    def _submit(self, work: Callable[[], Any], on_success: Callable[[Any], None],
                on_error: Callable[[BaseException], None], description: str) -> Future:
        delivered = threading.Event()
        with self._lock:
            self.load_statistics['total_attempts'] += 1
            self._delivered.append(delivered)

        def done(f: Future) -> None:
            try:
                self._deliver(f, on_success, on_error, description)
            finally:
                delivered.set()

        future = self._executor.submit(work)
        future.add_done_callback(done)
        return future

    def _deliver(self, future: Future, on_success: Callable[[Any], None],
                 on_error: Callable[[BaseException], None], description: str) -> None:
        error = future.exception()
        if error is not None:
            with self._lock:
                self.load_statistics['failed_loads'] += 1
            logger.error(f"Failed to load {description}: {error}")
            self._call(on_error, error)
            return

        with self._lock:
            self.load_statistics['successful_loads'] += 1
        logger.info(f"Loaded {description}")
        self._call(on_success, future.result())

    def _call(self, callback: Callable[..., None], *args: Any) -> None:
        if self.dispatch is not None:
            self.dispatch(callback, *args)
        else:
            callback(*args)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every issued load finished and its result was handed on.

        Returns:
            True if nothing is left pending
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            events = list(self._delivered)
        for event in events:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not event.wait(remaining):
                return False
        return True

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self.load_statistics)
        attempts = stats['total_attempts']
        stats['success_rate'] = stats['successful_loads'] / attempts if attempts > 0 else 0.0
        return stats

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)


def read_image(path: PathLike) -> Image.Image:
    """Decode an image file fully, keeping an alpha channel if present.

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")

    with Image.open(path) as image:
        image.load()
        if image.mode in ('RGBA', 'LA') or 'transparency' in image.info:
            return image.convert('RGBA')
        return image.convert('RGB')


class TextureLoader(Loader):
    """Loads 2D images into Texture handles."""

    def load(self, path: PathLike,
             on_load: Optional[Callable[[Texture], None]] = None,
             on_error: Optional[Callable[[BaseException], None]] = None) -> Texture:
        """Start loading an image.

        Args:
            path: Image file path
            on_load: Called with the texture once it is ready
            on_error: Called with the exception if loading fails

        Returns:
            Texture handle, pending until the image is decoded
        """
        path = Path(path)
        texture = Texture(source=path)

        def resolve(image: Image.Image) -> None:
            texture.resolve(image)
            if on_load is not None:
                on_load(texture)

        def fail(error: BaseException) -> None:
            texture.fail(error)
            if on_error is not None:
                on_error(error)

        self._submit(lambda: read_image(path), resolve, fail, f"texture {path.name}")
        return texture


class CubeTextureLoader(Loader):
    """Loads six face images into a CubeTexture."""

    def load(self, paths: Sequence[PathLike],
             on_load: Optional[Callable[[CubeTexture], None]] = None,
             on_error: Optional[Callable[[BaseException], None]] = None) -> CubeTexture:
        """Start loading a cubemap.

        Args:
            paths: Face images in +X, -X, +Y, -Y, +Z, -Z order

        Raises:
            ValueError: If not exactly six paths are given
        """
        paths = [Path(p) for p in paths]
        if len(paths) != 6:
            raise ValueError(f"Cube texture needs 6 face paths, got {len(paths)}")

        cube = CubeTexture(sources=paths)

        def resolve(images: List[Image.Image]) -> None:
            cube.resolve_faces(images)
            if on_load is not None:
                on_load(cube)

        def fail(error: BaseException) -> None:
            cube.fail(error)
            if on_error is not None:
                on_error(error)

        def work() -> List[Image.Image]:
            images = [read_image(p).convert('RGB') for p in paths]
            sizes = {image.size for image in images}
            if len(sizes) != 1:
                raise ValueError(f"Cube faces differ in size: {sorted(sizes)}")
            return images

        self._submit(work, resolve, fail, f"cube texture {paths[0].parent}")
        return cube
