"""Unit tests for the standalone backend supervisor."""

import asyncio
import logging
import signal
import sys
from unittest.mock import AsyncMock, patch

import pytest

from revisium_memory.standalone import supervisor as supervisor_module
from revisium_memory.standalone.supervisor import (
    STANDALONE_PACKAGE,
    StandaloneError,
    StandaloneSupervisor,
)

IS_HEALTHY = "revisium_memory.standalone.supervisor.is_healthy"
CREATE_SUBPROCESS = "revisium_memory.standalone.supervisor.asyncio.create_subprocess_exec"


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process."""

    def __init__(self, exit_on_terminate: bool = True):
        self.pid = 4242
        self.returncode = None
        self.stdout = None
        self.stderr = None
        self.terminated = False
        self.killed = False
        self._exit_on_terminate = exit_on_terminate
        self._exited = asyncio.Event()

    def exit(self, code: int) -> None:
        self.returncode = code
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        if self._exit_on_terminate:
            self.exit(-signal.SIGTERM)

    def kill(self) -> None:
        self.killed = True
        self.exit(-signal.SIGKILL)


class VanishedProcess(FakeProcess):
    """A process that is already gone when signalled."""

    def terminate(self) -> None:
        raise ProcessLookupError()


@pytest.fixture
def fast_polling(monkeypatch):
    """Shrink poll intervals so readiness tests finish quickly."""
    monkeypatch.setattr(supervisor_module, "POLL_INITIAL_SECONDS", 0.01)
    monkeypatch.setattr(supervisor_module, "POLL_MAX_SECONDS", 0.02)
    monkeypatch.setattr(supervisor_module, "EXIT_POLL_SECONDS", 0.01)


@pytest.fixture
def no_exit_hooks():
    """Keep tests from installing real atexit/signal hooks."""
    with patch.object(StandaloneSupervisor, "_register_cleanup") as register:
        yield register


class TestForUrl:
    """Tests for building a supervisor from the configured URL."""

    def test_localhost(self):
        """Test localhost URLs get a supervisor on the URL's port."""
        supervisor = StandaloneSupervisor.for_url("http://localhost:9222")
        assert supervisor is not None
        assert supervisor.port == 9222

    def test_ipv4_loopback(self):
        """Test 127.0.0.1 counts as local."""
        supervisor = StandaloneSupervisor.for_url("http://127.0.0.1:8080")
        assert supervisor is not None
        assert supervisor.port == 8080

    def test_ipv6_loopback(self):
        """Test ::1 counts as local."""
        supervisor = StandaloneSupervisor.for_url("http://[::1]:9222")
        assert supervisor is not None
        assert supervisor.port == 9222

    def test_remote_host(self):
        """Test remote URLs are never supervised."""
        assert StandaloneSupervisor.for_url("https://cloud.revisium.io") is None
        assert StandaloneSupervisor.for_url("http://10.0.0.5:9222") is None

    def test_default_ports(self):
        """Test scheme default ports when the URL has none."""
        assert StandaloneSupervisor.for_url("http://localhost").port == 80
        assert StandaloneSupervisor.for_url("https://localhost").port == 443

    def test_unparsable_url(self):
        """Test a string without a host yields no supervisor."""
        assert StandaloneSupervisor.for_url("not a url") is None

    def test_options_carried(self):
        """Test auth/data/pg-port options reach the supervisor."""
        supervisor = StandaloneSupervisor.for_url(
            "http://localhost:9222", auth=True, data_dir="./data", pg_port=5441
        )
        assert supervisor.auth is True
        assert supervisor.data_dir == "./data"
        assert supervisor.pg_port == 5441


class TestBuildArgs:
    """Tests for the launcher argument vector."""

    def test_minimal(self):
        """Test the argument vector with only a port."""
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)
        assert supervisor.build_args() == [STANDALONE_PACKAGE, "--port", "9222"]

    def test_all_options(self):
        """Test every optional flag, in order."""
        supervisor = StandaloneSupervisor(
            "http://localhost:9222", 9222, auth=True, data_dir="./data", pg_port=5441
        )
        assert supervisor.build_args() == [
            "@revisium/standalone@latest",
            "--port",
            "9222",
            "--auth",
            "--data",
            "./data",
            "--pg-port",
            "5441",
        ]


class TestEnsureRunning:
    """Tests for ensure_running."""

    @pytest.mark.asyncio
    async def test_already_healthy_does_not_spawn(self):
        """Test a healthy backend is reused and nothing is launched."""
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)

        with patch(IS_HEALTHY, AsyncMock(return_value=True)), patch(
            CREATE_SUBPROCESS, AsyncMock()
        ) as spawn:
            await supervisor.ensure_running()

        spawn.assert_not_awaited()
        assert supervisor.is_running is False

    @pytest.mark.asyncio
    async def test_spawns_and_waits_until_ready(self, fast_polling, no_exit_hooks):
        """Test an unhealthy backend is launched and polled until healthy."""
        supervisor = StandaloneSupervisor(
            "http://localhost:9222", 9222, auth=True, data_dir="./data", pg_port=5441
        )
        process = FakeProcess()
        health = AsyncMock(side_effect=[False, False, True])

        with patch(IS_HEALTHY, health), patch(
            CREATE_SUBPROCESS, AsyncMock(return_value=process)
        ) as spawn:
            await supervisor.ensure_running()

        spawn.assert_awaited_once_with(
            "npx",
            "@revisium/standalone@latest",
            "--port",
            "9222",
            "--auth",
            "--data",
            "./data",
            "--pg-port",
            "5441",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        assert health.await_count == 3
        assert supervisor.is_running is True
        no_exit_hooks.assert_called_once()

    @pytest.mark.asyncio
    async def test_child_exits_before_ready(self, fast_polling, no_exit_hooks):
        """Test an early child exit fails with its exit code."""
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)
        process = FakeProcess()
        process.exit(1)

        with patch(IS_HEALTHY, AsyncMock(return_value=False)), patch(
            CREATE_SUBPROCESS, AsyncMock(return_value=process)
        ):
            with pytest.raises(StandaloneError) as exc_info:
                await supervisor.ensure_running()

        message = str(exc_info.value)
        assert "exited with code 1" in message
        assert "npx @revisium/standalone@latest --port 9222" in message
        assert supervisor.is_running is False

    @pytest.mark.asyncio
    async def test_ready_timeout_kills_child(self, monkeypatch, fast_polling, no_exit_hooks):
        """Test a child that never becomes healthy is terminated after the deadline."""
        monkeypatch.setattr(supervisor_module, "READY_TIMEOUT_SECONDS", 0.05)
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)
        process = FakeProcess()

        with patch(IS_HEALTHY, AsyncMock(return_value=False)), patch(
            CREATE_SUBPROCESS, AsyncMock(return_value=process)
        ):
            with pytest.raises(StandaloneError) as exc_info:
                await supervisor.ensure_running()

        assert "did not become ready within 0.05s" in str(exc_info.value)
        assert process.terminated is True
        assert supervisor.is_running is False

    @pytest.mark.asyncio
    async def test_launcher_missing(self, no_exit_hooks):
        """Test a missing npx binary surfaces as StandaloneError."""
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)

        with patch(IS_HEALTHY, AsyncMock(return_value=False)), patch(
            CREATE_SUBPROCESS, AsyncMock(side_effect=FileNotFoundError("npx"))
        ):
            with pytest.raises(StandaloneError, match="npx not found"):
                await supervisor.ensure_running()

        no_exit_hooks.assert_not_called()


class TestShutdown:
    """Tests for shutdown."""

    @pytest.mark.asyncio
    async def test_no_child_is_noop(self):
        """Test shutdown without a child does nothing and does not raise."""
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)
        await supervisor.shutdown()
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_terminates_child(self):
        """Test shutdown sends SIGTERM and waits for the child."""
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)
        process = FakeProcess()
        supervisor._process = process

        await supervisor.shutdown()

        assert process.terminated is True
        assert process.killed is False
        assert supervisor.is_running is False

    @pytest.mark.asyncio
    async def test_escalates_to_kill(self, monkeypatch):
        """Test a child ignoring SIGTERM is killed after the grace period."""
        monkeypatch.setattr(supervisor_module, "SHUTDOWN_GRACE_SECONDS", 0.01)
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)
        process = FakeProcess(exit_on_terminate=False)
        supervisor._process = process

        await supervisor.shutdown()

        assert process.terminated is True
        assert process.killed is True

    @pytest.mark.asyncio
    async def test_already_exited_child(self):
        """Test terminating a vanished process is tolerated."""
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)
        process = VanishedProcess()
        process.exit(0)
        supervisor._process = process

        await supervisor.shutdown()

        assert supervisor.is_running is False


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
class TestRealChildProcess:
    """Tests against a real launcher whose background child keeps the pipes open."""

    @pytest.mark.asyncio
    async def test_exit_detected_while_pipes_held(self, monkeypatch, fast_polling, no_exit_hooks):
        """Test an early launcher exit is reported at once, not after the deadline."""
        monkeypatch.setattr(supervisor_module, "LAUNCHER", "sh")
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)

        with patch(IS_HEALTHY, AsyncMock(return_value=False)), patch.object(
            supervisor, "build_args", return_value=["-c", "sleep 5 & exit 3"]
        ):
            with pytest.raises(StandaloneError) as exc_info:
                await asyncio.wait_for(supervisor.ensure_running(), timeout=3)

        assert "exited with code 3" in str(exc_info.value)
        assert supervisor.is_running is False

    @pytest.mark.asyncio
    async def test_shutdown_returns_after_kill_while_pipes_held(self, monkeypatch, no_exit_hooks):
        """Test shutdown finishes once the launcher is killed, even with its pipes still open."""
        monkeypatch.setattr(supervisor_module, "LAUNCHER", "sh")
        monkeypatch.setattr(supervisor_module, "SHUTDOWN_GRACE_SECONDS", 0.2)
        monkeypatch.setattr(supervisor_module, "EXIT_POLL_SECONDS", 0.01)
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)

        with patch.object(
            supervisor, "build_args", return_value=["-c", "trap '' TERM; sleep 5 & wait"]
        ):
            await supervisor._spawn()
        process = supervisor._process
        await asyncio.sleep(0.5)

        await asyncio.wait_for(supervisor.shutdown(), timeout=3)

        assert process.returncode == -signal.SIGKILL
        assert supervisor.is_running is False


class TestExitHooks:
    """Tests for host exit and signal hooks."""

    def test_registered_once(self):
        """Test hooks are installed only on the first registration."""
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)

        with patch("revisium_memory.standalone.supervisor.atexit.register") as register, patch(
            "revisium_memory.standalone.supervisor.signal.signal"
        ) as set_handler:
            supervisor._register_cleanup()
            supervisor._register_cleanup()

        register.assert_called_once_with(supervisor._cleanup)
        assert set_handler.call_count == 2
        handled = {call.args[0] for call in set_handler.call_args_list}
        assert handled == {signal.SIGINT, signal.SIGTERM}

    @pytest.mark.parametrize(
        "signum,code",
        [(signal.SIGINT, 130), (signal.SIGTERM, 143)],
    )
    def test_signal_terminates_child_and_exits(self, signum, code):
        """Test a signal stops the child and exits with 128 + signum."""
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)
        process = FakeProcess()
        supervisor._process = process

        with pytest.raises(SystemExit) as exc_info:
            supervisor._handle_signal(signum, None)

        assert exc_info.value.code == code
        assert process.terminated is True
        assert supervisor.is_running is False

    def test_cleanup_without_child(self):
        """Test the atexit hook is safe with no child."""
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)
        supervisor._cleanup()


class TestOutputForwarding:
    """Tests for child output forwarding."""

    @pytest.mark.asyncio
    async def test_lines_logged_with_prefix(self, caplog):
        """Test each non-empty output line is logged with a [standalone] prefix."""
        caplog.set_level(logging.INFO, logger="revisium_memory.standalone.supervisor")
        supervisor = StandaloneSupervisor("http://localhost:9222", 9222)

        reader = asyncio.StreamReader()
        reader.feed_data(b"Listening on 9222\n\nready\n")
        reader.feed_eof()

        await supervisor._forward_output(reader)

        assert "[standalone] Listening on 9222" in caplog.text
        assert "[standalone] ready" in caplog.text
