"""Continuous screencast recording and video encoding.

Frames arrive from the DevTools screencast as callbacks. They are buffered
under a :class:`threading.Lock` together with an ``is_recording`` flag. Two
rules keep the recorder deadlock-free:

* ``stop()`` flips the flag and releases the lock *before* awaiting the
  driver's stop call, because frame callbacks still in flight need that same
  lock to discover that recording ended.
* Frame acknowledgements are handed to a background worker through an
  unbounded queue after the lock is released. Ack failures are logged and
  dropped; they never affect capture.

Encoding shells out to ``ffmpeg`` with the frames written as numbered JPEGs.
"""
from __future__ import annotations

import asyncio
import base64
import logging
import tempfile
import threading
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from playwright.async_api import CDPSession, Error as PlaywrightError

from .config import RecordingConfig
from .errors import ControlSurfaceError, PersistenceError

Logger = logging.Logger
FrameCallback = Callable[[Dict[str, Any]], None]


class RecorderStateError(RuntimeError):
    """Raised when start/stop/encode are called in the wrong order."""


class VideoEncodingError(PersistenceError):
    """Raised when ffmpeg cannot produce the output video."""


class ScreencastSource(Protocol):
    """Driver-side screencast subscription."""

    async def start(self, on_frame: FrameCallback) -> None: ...

    async def stop(self) -> None: ...

    async def acknowledge(self, session_id: int) -> None: ...


class CdpScreencastSource:
    """Screencast over a Chrome DevTools protocol session."""

    def __init__(self, cdp: CDPSession, *, quality: int = 80) -> None:
        self._cdp = cdp
        self._quality = quality

    async def start(self, on_frame: FrameCallback) -> None:
        self._cdp.on("Page.screencastFrame", on_frame)
        try:
            await self._cdp.send(
                "Page.startScreencast",
                {"format": "jpeg", "quality": self._quality, "everyNthFrame": 1},
            )
        except PlaywrightError as exc:
            raise ControlSurfaceError("start screencast", cause=exc) from exc

    async def stop(self) -> None:
        try:
            await self._cdp.send("Page.stopScreencast")
        except PlaywrightError as exc:
            raise ControlSurfaceError("stop screencast", cause=exc) from exc

    async def acknowledge(self, session_id: int) -> None:
        await self._cdp.send("Page.screencastFrameAck", {"sessionId": session_id})


_STOP = object()


class FrameRecorder:
    """Buffers screencast frames and encodes them into a video."""

    def __init__(
        self,
        source: ScreencastSource,
        config: Optional[RecordingConfig] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self._source = source
        self._config = config or RecordingConfig()
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._frames: List[Tuple[bytes, float]] = []
        self._is_recording = False
        self._dropped = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ack_queue: Optional[asyncio.Queue] = None
        self._ack_task: Optional[asyncio.Task] = None

    @property
    def is_recording(self) -> bool:
        with self._lock:
            return self._is_recording

    @property
    def frame_count(self) -> int:
        with self._lock:
            return len(self._frames)

    @property
    def dropped_frames(self) -> int:
        """Frames that arrived after recording stopped."""

        with self._lock:
            return self._dropped

    @property
    def duration_s(self) -> float:
        with self._lock:
            if len(self._frames) < 2:
                return 0.0
            return self._frames[-1][1] - self._frames[0][1]

    async def start(self) -> None:
        """Begin buffering frames.

        Raises:
            RecorderStateError: If a recording is already in progress.
        """
        with self._lock:
            if self._is_recording:
                raise RecorderStateError("recording already in progress")
            self._frames = []
            self._dropped = 0
            self._is_recording = True

        self._loop = asyncio.get_running_loop()
        self._ack_queue = asyncio.Queue()
        self._ack_task = asyncio.create_task(self._ack_worker(self._ack_queue))
        try:
            await self._source.start(self.handle_frame)
        except Exception:
            with self._lock:
                self._is_recording = False
            await self._shutdown_ack_worker()
            raise
        self._logger.info("Screencast recording started")

    def handle_frame(self, params: Dict[str, Any]) -> None:
        """Frame-arrival callback registered with the screencast source."""

        session_id = params.get("sessionId")
        with self._lock:
            if not self._is_recording:
                self._dropped += 1
                return
            try:
                data = base64.b64decode(params.get("data", ""))
            except (ValueError, TypeError):
                self._logger.debug("Discarding undecodable screencast frame")
                data = b""
            if data:
                self._frames.append((data, time.monotonic()))

        if session_id is not None:
            self._enqueue_ack(session_id)

    async def stop(self) -> int:
        """Stop buffering and tell the driver to stop streaming.

        Returns:
            Number of frames captured.

        Raises:
            RecorderStateError: If nothing is being recorded.
        """
        with self._lock:
            if not self._is_recording:
                raise RecorderStateError("no recording in progress")
            self._is_recording = False
            frame_count = len(self._frames)

        try:
            await self._source.stop()
        finally:
            await self._shutdown_ack_worker()
        self._logger.info("Screencast recording stopped with %d frame(s)", frame_count)
        return frame_count

    def frame_rate(self) -> int:
        """Observed frame rate clamped to 1-60, or the configured default."""

        with self._lock:
            count = len(self._frames)
            span = self._frames[-1][1] - self._frames[0][1] if count >= 2 else 0.0
        if count < 2 or span <= 0:
            return self._config.default_frame_rate
        return max(1, min(60, int(round(count / span))))

    async def encode(self, output_path: Path) -> Path:
        """Encode buffered frames into an H.264 MP4 via ffmpeg.

        Raises:
            RecorderStateError: If there are no frames to encode.
            VideoEncodingError: If ffmpeg is missing or exits non-zero.
        """
        with self._lock:
            frames = [data for data, _ in self._frames]
        if not frames:
            raise RecorderStateError("no frames captured")

        fps = self.frame_rate()
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise VideoEncodingError(f"cannot create {output_path.parent}", cause=exc) from exc

        with tempfile.TemporaryDirectory(prefix="playprobe-frames-") as tmp:
            tmp_dir = Path(tmp)
            try:
                for index, data in enumerate(frames):
                    (tmp_dir / f"frame_{index:05d}.jpg").write_bytes(data)
            except OSError as exc:
                raise VideoEncodingError("cannot stage frames for encoding", cause=exc) from exc

            command = [
                self._config.ffmpeg_path,
                "-y",
                "-framerate",
                str(fps),
                "-i",
                str(tmp_dir / "frame_%05d.jpg"),
                "-c:v",
                "libx264",
                "-preset",
                "fast",
                "-pix_fmt",
                "yuv420p",
                "-crf",
                "23",
                "-movflags",
                "faststart",
                str(output_path),
            ]
            self._logger.info("Encoding %d frame(s) at %d fps into %s", len(frames), fps, output_path)
            try:
                process = await asyncio.create_subprocess_exec(
                    *command,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                raise VideoEncodingError(f"cannot run {self._config.ffmpeg_path}", cause=exc) from exc
            _, stderr = await process.communicate()

        if process.returncode != 0:
            diagnostic = stderr.decode("utf-8", errors="replace").strip()[-2000:]
            raise VideoEncodingError(f"ffmpeg exited with status {process.returncode}: {diagnostic}")
        return output_path

    async def save(self, output_dir: Optional[Path] = None) -> Path:
        """Encode into a timestamped file under the recordings directory."""

        directory = output_dir or self._config.output_dir
        name = f"gameplay_{datetime.now():%Y%m%d-%H%M%S}_{uuid.uuid4().hex[:8]}.mp4"
        return await self.encode(directory / name)

    def _enqueue_ack(self, session_id: int) -> None:
        queue, loop = self._ack_queue, self._loop
        if queue is None or loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(queue.put_nowait, session_id)
        except RuntimeError:
            self._logger.debug("Ack for screencast frame %s dropped; loop closing", session_id)

    async def _ack_worker(self, queue: asyncio.Queue) -> None:
        while True:
            item = await queue.get()
            if item is _STOP:
                return
            try:
                await self._source.acknowledge(item)
            except Exception as exc:  # ack failures are non-fatal to capture
                self._logger.debug("Screencast ack %s failed: %s", item, exc)

    async def _shutdown_ack_worker(self) -> None:
        queue, task = self._ack_queue, self._ack_task
        self._ack_queue = None
        self._ack_task = None
        if queue is None or task is None:
            return
        # queued behind acks still scheduled from the frame callback
        asyncio.get_running_loop().call_soon_threadsafe(queue.put_nowait, _STOP)
        await task


__all__ = [
    "CdpScreencastSource",
    "FrameRecorder",
    "RecorderStateError",
    "ScreencastSource",
    "VideoEncodingError",
]
