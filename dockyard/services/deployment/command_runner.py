"""
Asynchronous shell command execution with line streaming.

Runs external toolchain commands (docker, docker compose) without blocking
the event loop and forwards each output line as soon as it is read.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Union

from dockyard.core.config import settings
from dockyard.core.exceptions import CommandError

logger = logging.getLogger(__name__)

LineSink = Callable[[str], Union[None, Awaitable[None]]]

# Generous per-line buffer; build tools emit long progress lines
STREAM_LIMIT = 1024 * 1024


@dataclass
class CommandResult:
    """Outcome of a command that exited with code 0."""
    command: str
    exit_code: int
    output: str


class CommandRunner:
    """
    Runs shell commands with merged stdout/stderr.

    Each line is handed to the sink as it arrives, not after the process exits.
    """

    def __init__(self, timeout: Optional[int] = None):
        """
        Initialize the runner.

        Args:
            timeout: Default per-command timeout in seconds (0 disables)
        """
        self.timeout = settings.COMMAND_TIMEOUT if timeout is None else timeout

    async def _emit(self, on_line: Optional[LineSink], line: str) -> None:
        if on_line is None:
            return
        result = on_line(line)
        if inspect.isawaitable(result):
            await result

    @staticmethod
    async def _read_line(stream: asyncio.StreamReader) -> bytes:
        """
        Read one output line of any length.

        Lines longer than the stream limit are drained in chunks instead of
        failing the read. Returns b"" at EOF.
        """
        chunks = []
        while True:
            try:
                chunks.append(await stream.readuntil(b"\n"))
                break
            except asyncio.IncompleteReadError as e:
                chunks.append(e.partial)
                break
            except asyncio.LimitOverrunError as e:
                chunks.append(await stream.read(e.consumed))
        return b"".join(chunks)

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process) -> None:
        """Kill the process if it is still running and reap it."""
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()

    async def _pump(
        self,
        process: asyncio.subprocess.Process,
        captured: List[str],
        on_line: Optional[LineSink],
    ) -> int:
        """Read output until EOF, then wait for the exit code."""
        while True:
            raw = await self._read_line(process.stdout)
            if not raw:
                break
            line = raw.decode(errors="replace").rstrip("\r\n")
            captured.append(line)
            await self._emit(on_line, line)
        return await process.wait()

    async def run(
        self,
        command: str,
        cwd: Optional[str] = None,
        on_line: Optional[LineSink] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        """
        Run a shell command to completion.

        Args:
            command: Shell command line
            cwd: Working directory for the command
            on_line: Sync or async callable receiving each output line
            timeout: Override of the default timeout in seconds

        Returns:
            CommandResult with the full captured output

        Raises:
            CommandError: On spawn failure, non-zero exit or timeout
        """
        timeout = self.timeout if timeout is None else timeout
        captured: List[str] = []

        logger.debug(f"Running command: {command} (cwd={cwd})")

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            logger.error(f"Failed to spawn command {command}: {e}")
            raise CommandError(command, -1, str(e)) from e

        try:
            if timeout:
                exit_code = await asyncio.wait_for(
                    self._pump(process, captured, on_line),
                    timeout=timeout,
                )
            else:
                exit_code = await self._pump(process, captured, on_line)
        except asyncio.TimeoutError:
            await self._terminate(process)
            message = f"Command timed out after {timeout} seconds"
            captured.append(message)
            await self._emit(on_line, message)
            logger.error(f"{message}: {command}")
            raise CommandError(command, -1, "\n".join(captured))
        except BaseException:
            # Cancellation or a failing sink: the child must not outlive the caller
            logger.warning(f"Killing interrupted command: {command}")
            await self._terminate(process)
            raise

        output = "\n".join(captured)
        if exit_code != 0:
            logger.warning(f"Command exited with code {exit_code}: {command}")
            raise CommandError(command, exit_code, output)

        return CommandResult(command=command, exit_code=exit_code, output=output)

    async def run_tolerating_not_found(
        self,
        command: str,
        cwd: Optional[str] = None,
        on_line: Optional[LineSink] = None,
        timeout: Optional[int] = None,
    ) -> Optional[CommandResult]:
        """
        Run an idempotent cleanup command.

        A failure caused only by the target not existing (e.g. stopping a
        container that was never started) is tolerated; any other failure is
        raised.

        Returns:
            CommandResult on success, None if the target did not exist

        Raises:
            CommandError: For failures other than "not found"
        """
        try:
            return await self.run(command, cwd=cwd, on_line=on_line, timeout=timeout)
        except CommandError as e:
            if not e.is_not_found:
                raise
            logger.info(f"Nothing to clean up for: {command}")
            return None


# Singleton instance
command_runner = CommandRunner()
