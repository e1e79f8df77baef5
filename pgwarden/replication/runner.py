from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict

from ..core.exceptions import QueryTimeoutError, ToolUnavailableError
from ..logger import get_logger

logger = get_logger(__name__)


class CommandResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Runs external commands as blocking-with-timeout coroutine calls.

    A missing binary raises ``ToolUnavailableError``; a call exceeding its
    timeout is killed and raises ``QueryTimeoutError``. Non-zero exits are
    returned, not raised, so callers decide what a failure means.
    """

    def __init__(self, prefix: Sequence[str] = ()) -> None:
        self._prefix = tuple(prefix)

    async def run(self, argv: Sequence[str], *, timeout: float, stdin: str | None = None) -> CommandResult:
        full_argv = (*self._prefix, *argv)
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *full_argv,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ToolUnavailableError(full_argv[0], str(e)) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(stdin.encode() if stdin is not None else None),
                timeout=timeout,
            )
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise QueryTimeoutError(" ".join(argv[:3]), timeout) from None

        result = CommandResult(
            argv=full_argv,
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            duration_s=time.monotonic() - started,
        )
        log = logger.debug if result.ok else logger.warning
        log(
            "Executed external command",
            argv=list(full_argv),
            returncode=result.returncode,
            duration_s=round(result.duration_s, 3),
            stderr=result.stderr.strip()[-500:] or None,
        )
        return result
