# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""Subprocess calls for the git and docker backends.

Both backends shell out through :func:`run_command`, which logs the
call and hands back a :class:`CommandResult` instead of raising. A
command that runs past its timeout comes back as a failed result with
:data:`TIMEOUT_RETURN_CODE`, so a hung container fails its library the
same way a crashed one does.
"""

from __future__ import annotations

import subprocess  # noqa: S404 - subprocess is the core purpose of this module
import time
from dataclasses import dataclass
from pathlib import Path

from clientkit.logging import get_logger

log = get_logger('clientkit.backends.run')

DEFAULT_TIMEOUT_SECONDS = 600
TIMEOUT_RETURN_CODE = 124
ERROR_SUMMARY_CHARS = 500


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a git, docker or GitHub call.

    Attributes:
        command: The command line, or ``[method, url]`` for HTTP calls.
        return_code: Exit code, or the HTTP status for a failed HTTP call
            (``0`` when it succeeded).
        stdout: Captured standard output (the response body for HTTP).
        stderr: Captured standard error (the error body for HTTP).
        duration: Wall-clock duration in milliseconds.
    """

    command: list[str]
    return_code: int
    stdout: str = ''
    stderr: str = ''
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        """Whether the command succeeded."""
        return self.return_code == 0

    @property
    def error_summary(self) -> str:
        """The tail of stderr, short enough for an error message or log line."""
        return self.stderr.strip()[-ERROR_SUMMARY_CHARS:]


def run_command(
    cmd: list[str],
    *,
    cwd: Path | str | None = None,
    timeout: int = DEFAULT_TIMEOUT_SECONDS,
    check: bool = False,
) -> CommandResult:
    """Run ``cmd`` and capture its output.

    Args:
        cmd: Command and arguments.
        cwd: Working directory for the command.
        timeout: Seconds to wait before the process is killed.
        check: Raise instead of returning a failed result.

    Raises:
        subprocess.CalledProcessError: If ``check`` and the command failed
            or timed out.
    """
    cmd_str = ' '.join(cmd)
    log.debug('command_started', cmd=cmd_str, cwd=str(cwd or '.'))

    start = time.monotonic()
    try:
        proc = subprocess.run(  # noqa: S603 -- arguments come from the backends
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        duration = (time.monotonic() - start) * 1000
        log.error('command_timeout', cmd=cmd_str, timeout=timeout, duration=duration)
        result = CommandResult(
            command=cmd,
            return_code=TIMEOUT_RETURN_CODE,
            stderr=f'{cmd[0]} timed out after {timeout}s',
            duration=duration,
        )
    else:
        duration = (time.monotonic() - start) * 1000
        result = CommandResult(
            command=cmd,
            return_code=proc.returncode,
            stdout=proc.stdout,
            stderr=proc.stderr,
            duration=duration,
        )
        if result.ok:
            log.debug('command_ok', cmd=cmd_str, duration=duration)
        else:
            log.warning(
                'command_failed',
                cmd=cmd_str,
                return_code=result.return_code,
                stderr=result.error_summary,
                duration=duration,
            )

    if check and not result.ok:
        raise subprocess.CalledProcessError(result.return_code, cmd, output=result.stdout, stderr=result.stderr)
    return result


__all__ = [
    'CommandResult',
    'DEFAULT_TIMEOUT_SECONDS',
    'TIMEOUT_RETURN_CODE',
    'run_command',
]
