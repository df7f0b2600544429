"""
Per-camera recording worker.

One worker owns one SourceConfig and keeps an ffmpeg process running for it
forever.  Each cycle:

  1. make sure ./<name>/ exists
  2. build the ffmpeg argument vector
  3. launch ffmpeg with stderr merged into stdout and log every line
  4. wait for it to exit
  5. start over immediately, whatever the outcome

Segments land in ./<name>/output_000.ts, output_001.ts, ...  (numbered by
ffmpeg's segment muxer, so a restart starts again from 000).

Argument vectors
----------------
Direct (no relay target):
  ffmpeg -i <input> -f segment -c:v libx264 -c:a aac -rtsp_transport tcp \\
         -segment_time 300 -reset_timestamps 1 <name>/output_%03d.ts

Relay (one leg per endpoint, all in the same process):
  ffmpeg -i <input> \\
         -rtsp_transport tcp -c copy -f rtsp <base>/cam1 \\
         -rtsp_transport tcp -c copy -f rtsp <base>/cam2 \\
         -segment_time 300 -reset_timestamps 1 <name>/output_%03d.ts
"""

import asyncio
import contextlib
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

from rtsp_recorder.errors import (
    DirectoryError,
    ProcessIOError,
    ProcessLaunchError,
    RecorderError,
)
from rtsp_recorder.sources import RelayTarget, SourceConfig

logger = logging.getLogger(__name__)

INPUT_FLAG = "-i"
FORMAT_FLAG = "-f"
VIDEO_CODEC_FLAG = "-c:v"
AUDIO_CODEC_FLAG = "-c:a"
RTSP_TRANSPORT_FLAG = "-rtsp_transport"
SEGMENT_TIME_FLAG = "-segment_time"
RESET_TIMESTAMPS_FLAG = "-reset_timestamps"
COPY_CODEC = ("-c", "copy")   # relay legs pass the stream through untouched

_READ_CHUNK = 4096
_MAX_LINE = 64 * 1024
# ffmpeg redraws its progress line with a bare \r
_LINE_BREAK = re.compile(rb"\r\n|\r|\n")


async def read_lines(stream: asyncio.StreamReader) -> AsyncIterator[str]:
    """Yield decoded, non-empty lines from *stream* until EOF."""
    pending = b""
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        pending += chunk
        *complete, pending = _LINE_BREAK.split(pending)
        if len(pending) > _MAX_LINE:
            complete.append(pending)
            pending = b""
        for raw in complete:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                yield line
    line = pending.decode("utf-8", errors="replace").rstrip()
    if line:
        yield line


# ── Recording modes ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class DirectMode:
    """Re-encode the camera stream into local segments."""

    container_format: str
    video_codec: str
    audio_codec: str
    transport: str

    def args(self) -> list[str]:
        return [
            FORMAT_FLAG, self.container_format,
            VIDEO_CODEC_FLAG, self.video_codec,
            AUDIO_CODEC_FLAG, self.audio_codec,
            RTSP_TRANSPORT_FLAG, self.transport,
        ]

    def describe(self) -> str:
        return f"direct {self.container_format} {self.video_codec}/{self.audio_codec}"


@dataclass(frozen=True)
class RelayMode:
    """Copy the camera stream, unmodified, to every relay destination."""

    destinations: tuple[str, ...]
    transport: str

    def args(self) -> list[str]:
        out: list[str] = []
        for dest in self.destinations:
            out += [
                RTSP_TRANSPORT_FLAG, self.transport,
                *COPY_CODEC,
                FORMAT_FLAG, RelayTarget.output_format,
                dest,
            ]
        return out

    def describe(self) -> str:
        return f"relay to {len(self.destinations)} endpoint(s)"


RecordingMode = DirectMode | RelayMode


def recording_mode(config: SourceConfig) -> RecordingMode:
    if config.relay is None:
        return DirectMode(
            container_format=config.container_format,
            video_codec=config.video_codec,
            audio_codec=config.audio_codec,
            transport=config.rtsp_transport,
        )
    return RelayMode(
        destinations=tuple(config.relay.destinations(config.base_url)),
        transport=config.relay.transport,
    )


def build_command(
    config: SourceConfig,
    mode: RecordingMode | None = None,
    ffmpeg_bin: str = "ffmpeg",
) -> list[str]:
    """Full ffmpeg argument vector for one recording cycle."""
    if mode is None:
        mode = recording_mode(config)
    return [
        ffmpeg_bin,
        INPUT_FLAG, config.input_url,
        *mode.args(),
        SEGMENT_TIME_FLAG, str(config.segment_time),
        RESET_TIMESTAMPS_FLAG, "1" if config.reset_timestamps else "0",
        config.output_pattern,
    ]


# ── Worker ───────────────────────────────────────────────────────────────


class RecordingWorker:
    def __init__(
        self,
        config: SourceConfig,
        ffmpeg_bin: str = "ffmpeg",
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self.config = config
        self.mode = recording_mode(config)
        self.command = build_command(config, self.mode, ffmpeg_bin)
        self._stop_event = stop_event if stop_event is not None else asyncio.Event()
        self._tag = f"[{config.name}]"

        self.cycles = 0
        self.failures = 0
        self.last_exit_code: int | None = None

    @property
    def name(self) -> str:
        return self.config.name

    def ensure_output_dir(self) -> Path:
        """Create ./<name>/ if needed.  An existing directory is fine."""
        path = Path(self.config.name)
        try:
            path.mkdir()
        except FileExistsError:
            if not path.is_dir():
                raise DirectoryError(f"{path} exists and is not a directory") from None
            logger.debug(f"{self._tag} Output directory {path} already exists")
        except OSError as exc:
            raise DirectoryError(f"Cannot create output directory {path}: {exc}") from exc
        else:
            logger.info(f"{self._tag} Created output directory {path.absolute()}")
        return path

    async def run_cycle(self) -> int:
        """Run ffmpeg once, forwarding its output.  Returns the exit code."""
        self.ensure_output_dir()

        logger.info(f"{self._tag} Running: {self.config.redact(' '.join(self.command))}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise ProcessLaunchError(f"Cannot start {self.command[0]}: {exc}") from exc

        logger.info(f"{self._tag} ffmpeg started (pid {proc.pid})")
        try:
            async for line in read_lines(proc.stdout):
                logger.info(f"{self._tag} {self.config.redact(line)}")
        except OSError as exc:
            # Reap before giving up on it so no zombie is left behind.
            # CancelledError is not caught: shutdown never kills ffmpeg.
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise ProcessIOError(f"Lost ffmpeg output (pid {proc.pid}): {exc}") from exc

        return await proc.wait()

    async def run(self) -> None:
        """Supervise loop.  Returns only once the stop event is set."""
        logger.info(f"{self._tag} Worker started ({self.mode.describe()})")
        while not self._stop_event.is_set():
            self.cycles += 1
            try:
                code = await self.run_cycle()
            except RecorderError as exc:
                self.failures += 1
                logger.error(f"{self._tag} Cycle {self.cycles} failed: {exc}; restarting")
            except Exception:
                self.failures += 1
                logger.exception(f"{self._tag} Cycle {self.cycles} crashed; restarting")
            else:
                self.last_exit_code = code
                logger.warning(
                    f"{self._tag} ffmpeg exited with code {code} "
                    f"after cycle {self.cycles}; restarting"
                )
            # No backoff, but let the other workers run before the next cycle
            await asyncio.sleep(0)

        logger.info(f"{self._tag} Worker stopped after {self.cycles} cycle(s)")
