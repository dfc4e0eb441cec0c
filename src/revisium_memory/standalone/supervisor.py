"""Supervisor for a local Revisium standalone backend.

This module launches the backend on demand when the configured URL points at
this machine:
- Health probe first, so an already-running backend is never spawned twice
- Spawn through npx with stdio captured and forwarded to the log
- Readiness polling with exponential backoff, raced against child exit
- One-time atexit/SIGINT/SIGTERM hooks that terminate the child

Remote URLs never get a supervisor; they are assumed to point at a service
the caller does not own.
"""

import asyncio
import atexit
import logging
import signal
import sys
import threading
from typing import Any, Optional

import httpx

from revisium_memory.standalone.health import is_healthy

logger = logging.getLogger(__name__)

LAUNCHER = "npx"
STANDALONE_PACKAGE = "@revisium/standalone@latest"

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

READY_TIMEOUT_SECONDS = 120.0
POLL_INITIAL_SECONDS = 0.5
POLL_MAX_SECONDS = 3.0
POLL_BACKOFF = 1.5
SHUTDOWN_GRACE_SECONDS = 5.0
KILL_WAIT_SECONDS = 5.0
EXIT_POLL_SECONDS = 0.1

# Host exit status after a signal, following the shell's 128 + signum rule
SIGNAL_EXIT_CODES = {
    signal.SIGINT: 130,
    signal.SIGTERM: 143,
}


class StandaloneError(Exception):
    """Raised when the standalone backend cannot be brought up."""

    pass


class StandaloneSupervisor:
    """Owns at most one Revisium standalone child process.

    Args:
        url: Backend base URL the MCP server talks to
        port: Port the standalone backend listens on
        auth: Start the backend with authentication enabled
        data_dir: Data directory passed via --data (optional)
        pg_port: Embedded PostgreSQL port passed via --pg-port (optional)

    Example:
        >>> supervisor = StandaloneSupervisor.for_url("http://localhost:9222")
        >>> if supervisor is not None:
        ...     await supervisor.ensure_running()
        ...     try:
        ...         ...
        ...     finally:
        ...         await supervisor.shutdown()
    """

    def __init__(
        self,
        url: str,
        port: int,
        auth: bool = False,
        data_dir: Optional[str] = None,
        pg_port: Optional[int] = None,
    ):
        self.url = url.rstrip("/")
        self.port = port
        self.auth = auth
        self.data_dir = data_dir
        self.pg_port = pg_port
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stream_tasks: list[asyncio.Task[None]] = []
        self._cleanup_registered = False

    @classmethod
    def for_url(
        cls,
        url: str,
        auth: bool = False,
        data_dir: Optional[str] = None,
        pg_port: Optional[int] = None,
    ) -> Optional["StandaloneSupervisor"]:
        """Build a supervisor for url, or None if url is not a loopback address.

        The port comes from the URL, defaulting to 443 for https and 80
        otherwise. Unparsable URLs also yield None.
        """
        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, TypeError):
            return None

        host = parsed.host.strip("[]")
        if host not in LOOPBACK_HOSTS:
            return None

        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        return cls(url=url, port=port, auth=auth, data_dir=data_dir, pg_port=pg_port)

    @property
    def is_running(self) -> bool:
        """True while this supervisor owns a child that has not exited."""
        return self._process is not None and self._process.returncode is None

    def build_args(self) -> list[str]:
        """Build the launcher argument vector from configuration."""
        args = [STANDALONE_PACKAGE, "--port", str(self.port)]
        if self.auth:
            args.append("--auth")
        if self.data_dir:
            args.extend(["--data", self.data_dir])
        if self.pg_port:
            args.extend(["--pg-port", str(self.pg_port)])
        return args

    async def ensure_running(self) -> None:
        """Make sure a healthy backend answers on the configured URL.

        Returns immediately if the backend is already healthy, whoever owns
        it. Otherwise spawns the standalone backend and waits until it is
        ready.

        Raises:
            StandaloneError: If the child exits before it is ready, does not
                become ready in time, or cannot be launched at all
        """
        if await is_healthy(self.url):
            logger.info(f"Revisium standalone already running at {self.url}")
            return

        if self._process is None:
            logger.info(f"Starting Revisium standalone on port {self.port}...")
            await self._spawn()

        await self._wait_for_ready(READY_TIMEOUT_SECONDS)
        logger.info("Revisium standalone is ready")

    async def shutdown(self) -> None:
        """Terminate the owned child, escalating to SIGKILL after a grace period.

        Safe to call any number of times; never raises.
        """
        await self._kill_child(wait=True)

    # =========================================================================
    # Process management
    # =========================================================================

    def _manual_start_hint(self) -> str:
        return f"Start it manually: {LAUNCHER} {STANDALONE_PACKAGE} --port {self.port}"

    async def _spawn(self) -> None:
        args = self.build_args()
        logger.debug(f"Spawning {LAUNCHER} {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                LAUNCHER,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise StandaloneError(
                f"Could not launch Revisium standalone ({LAUNCHER} not found). "
                f"{self._manual_start_hint()}"
            ) from e

        self._process = process
        self._stream_tasks = [
            asyncio.create_task(self._forward_output(stream))
            for stream in (process.stdout, process.stderr)
            if stream is not None
        ]
        self._register_cleanup()

    async def _forward_output(self, stream: asyncio.StreamReader) -> None:
        async for line in stream:
            text = line.decode(errors="replace").rstrip()
            if text:
                logger.info(f"[standalone] {text}")

    def _detach_streams(self) -> None:
        for task in self._stream_tasks:
            task.cancel()
        self._stream_tasks = []

    async def _wait_for_ready(self, timeout: float) -> None:
        """Poll liveness until ready, racing against child exit and a deadline."""
        process = self._process
        if process is None:
            raise StandaloneError("Revisium standalone is not running")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        delay = POLL_INITIAL_SECONDS
        exit_waiter = asyncio.ensure_future(self._wait_exit(process))

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    await self._kill_child(wait=False)
                    raise StandaloneError(
                        f"Revisium standalone did not become ready within {timeout:g}s. "
                        f"{self._manual_start_hint()}"
                    )

                done, _ = await asyncio.wait({exit_waiter}, timeout=min(delay, remaining))
                if not done and loop.time() < deadline:
                    probe = asyncio.ensure_future(is_healthy(self.url))
                    done, _ = await asyncio.wait(
                        {probe, exit_waiter},
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                    if exit_waiter not in done and probe.result():
                        return
                    probe.cancel()

                if exit_waiter in done:
                    self._release_exited(process)
                    raise StandaloneError(
                        f"Revisium standalone exited with code {process.returncode} "
                        f"before becoming ready. {self._manual_start_hint()}"
                    )

                delay = min(delay * POLL_BACKOFF, POLL_MAX_SECONDS)
        finally:
            if not exit_waiter.done():
                exit_waiter.cancel()

    def _release_exited(self, process: asyncio.subprocess.Process) -> None:
        if self._process is process:
            self._process = None
            self._detach_streams()

    async def _kill_child(self, wait: bool = False) -> None:
        process = self._process
        if process is None:
            return

        self._process = None
        self._detach_streams()
        self._terminate(process)

        if not wait:
            return

        try:
            await asyncio.wait_for(self._wait_exit(process), timeout=SHUTDOWN_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(
                f"Revisium standalone did not exit within {SHUTDOWN_GRACE_SECONDS:g}s, killing"
            )
            try:
                process.kill()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self._wait_exit(process), timeout=KILL_WAIT_SECONDS)
            except asyncio.TimeoutError:
                logger.error(f"Revisium standalone (pid {process.pid}) did not exit after SIGKILL")
                return

        logger.info("Revisium standalone stopped")

    @staticmethod
    async def _wait_exit(process: asyncio.subprocess.Process) -> int:
        """Wait for the child itself to exit.

        Process.wait() also waits for the captured pipes to reach EOF, which a
        grandchild that inherited them can postpone indefinitely. The return
        code is set as soon as the child is reaped.
        """
        while process.returncode is None:
            await asyncio.sleep(EXIT_POLL_SECONDS)
        return process.returncode

    @staticmethod
    def _terminate(process: asyncio.subprocess.Process) -> None:
        try:
            process.terminate()
        except ProcessLookupError:
            logger.debug(f"Standalone process {process.pid} already exited")

    # =========================================================================
    # Host exit hooks
    # =========================================================================

    def _register_cleanup(self) -> None:
        """Install exit and signal hooks once per supervisor instance."""
        if self._cleanup_registered:
            return
        self._cleanup_registered = True

        atexit.register(self._cleanup)

        # signal.signal only works from the main thread
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, skipping signal hooks")
            return

        for signum in SIGNAL_EXIT_CODES:
            signal.signal(signum, self._handle_signal)

    def _cleanup(self) -> None:
        process = self._process
        if process is None:
            return
        self._process = None
        self._terminate(process)

    def _handle_signal(self, signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, stopping Revisium standalone")
        self._cleanup()
        sys.exit(SIGNAL_EXIT_CODES.get(signum, 1))
