import asyncio
import contextlib
import logging

from rtsp_recorder.errors import RelayBootstrapError
from rtsp_recorder.recorder import read_lines

logger = logging.getLogger(__name__)


class RelayBootstrap:
    """
    Starts the shared RTSP relay server (mediamtx) used by cameras that
    duplicate their stream.

    The script runs with no arguments.  stdin and stderr stay attached to the
    console so an installer can prompt; stdout is forwarded to the log until
    the script closes it.  A failure here only disables relaying, camera
    recording carries on regardless.
    """

    def __init__(self, script: str = "./install-mediamtx.sh") -> None:
        self.script = script
        self.process: asyncio.subprocess.Process | None = None
        self.returncode: int | None = None

    @property
    def running(self) -> bool:
        return self.process is not None and self.returncode is None

    async def start(self) -> None:
        try:
            await self._run()
        except RelayBootstrapError as exc:
            logger.error(f"Relay server unavailable, relaying disabled: {exc}")

    async def _run(self) -> None:
        try:
            self.process = await asyncio.create_subprocess_exec(
                self.script,
                stdout=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise RelayBootstrapError(f"Cannot start {self.script}: {exc}") from exc

        logger.info(f"Relay server {self.script} started (pid {self.process.pid})")
        try:
            async for line in read_lines(self.process.stdout):
                logger.info(f"[relay] {line}")
        except OSError as exc:
            with contextlib.suppress(ProcessLookupError):
                self.process.kill()
            self.returncode = await self.process.wait()
            raise RelayBootstrapError(f"Lost relay output: {exc}") from exc

        self.returncode = await self.process.wait()
        if self.returncode == 0:
            logger.info(f"Relay script {self.script} finished")
        else:
            logger.warning(f"Relay script {self.script} exited with code {self.returncode}")
