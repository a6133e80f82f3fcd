"""
Command executor.

Runs one shell command as a single cancellable operation that races the
process exit against the timeout. Exactly one of natural exit, timeout or
spawn/runtime error resolves a call, and the child's process group is
always killed before returning so no orphans or reader tasks outlive it.
"""

import asyncio
import logging
import os
import signal
from asyncio.subprocess import Process

from queuectl.constants import EXIT_CODE_SPAWN_ERROR, EXIT_CODE_TIMEOUT, TIMEOUT_MARKER
from queuectl.types.job import ExecutionResult

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024
_DRAIN_GRACE_SECONDS = 1.0
_EXIT_POLL_SECONDS = 0.05


async def _drain(stream: asyncio.StreamReader | None, buffer: bytearray, limit: int | None) -> None:
    """Read a pipe to EOF, keeping at most ``limit`` bytes."""
    if stream is None:
        return
    while chunk := await stream.read(_READ_CHUNK):
        if limit is None:
            buffer.extend(chunk)
        elif len(buffer) < limit:
            buffer.extend(chunk[: limit - len(buffer)])


async def _wait_exit(process: Process) -> int:
    """
    Wait for the shell itself to exit.

    ``Process.wait()`` may only resolve once every pipe is closed, which a
    background grandchild can delay indefinitely; the return code is set as
    soon as the shell is reaped.
    """
    waiter = asyncio.ensure_future(process.wait())
    try:
        while process.returncode is None:
            done, _ = await asyncio.wait({waiter}, timeout=_EXIT_POLL_SECONDS)
            if done:
                break
        return process.returncode
    finally:
        if not waiter.done():
            waiter.cancel()


def _kill_group(process: Process) -> None:
    """SIGKILL the child's process group. No-op once everything is gone."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


async def _finish_readers(readers: list[asyncio.Task]) -> None:
    _, pending = await asyncio.wait(readers, timeout=_DRAIN_GRACE_SECONDS)
    for task in pending:
        task.cancel()
    await asyncio.gather(*readers, return_exceptions=True)


def _text(buffer: bytearray) -> str:
    return buffer.decode("utf-8", errors="replace")


async def run_command(
    command: str,
    timeout_ms: int,
    output_limit: int | None = None,
) -> ExecutionResult:
    """
    Run ``command`` in a shell and capture its output.

    Args:
        command: Shell command line.
        timeout_ms: Wall-clock budget in milliseconds; ``<= 0`` disables it.
        output_limit: Optional cap on bytes kept per stream.

    Returns:
        ExecutionResult with the real exit code, 124 on timeout (with a
        timeout marker appended to stderr) or 1 when the command could not
        be spawned or supervised.
    """
    stdout = bytearray()
    stderr = bytearray()

    try:
        process = await asyncio.create_subprocess_shell(
            command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        logger.warning("Failed to spawn command", extra={"command": command, "error": str(e)})
        return ExecutionResult(exit_code=EXIT_CODE_SPAWN_ERROR, stderr=str(e))

    readers = [
        asyncio.create_task(_drain(process.stdout, stdout, output_limit)),
        asyncio.create_task(_drain(process.stderr, stderr, output_limit)),
    ]
    timeout = timeout_ms / 1000.0 if timeout_ms and timeout_ms > 0 else None

    try:
        try:
            exit_code = await asyncio.wait_for(_wait_exit(process), timeout)
        except TimeoutError:
            _kill_group(process)
            await _wait_exit(process)
            await _finish_readers(readers)
            logger.warning(
                "Command timed out",
                extra={"command": command, "timeout_ms": timeout_ms, "pid": process.pid},
            )
            return ExecutionResult(
                exit_code=EXIT_CODE_TIMEOUT,
                stdout=_text(stdout),
                stderr=(_text(stderr) + "\n" + TIMEOUT_MARKER).strip(),
            )

        # Leftover background children may still hold the pipes open
        _kill_group(process)
        await _finish_readers(readers)
        return ExecutionResult(exit_code=exit_code, stdout=_text(stdout), stderr=_text(stderr))

    except Exception as e:
        logger.exception("Error supervising command", extra={"command": command})
        return ExecutionResult(
            exit_code=EXIT_CODE_SPAWN_ERROR,
            stdout=_text(stdout),
            stderr=str(e),
        )

    finally:
        _kill_group(process)
        for task in readers:
            if not task.done():
                task.cancel()
