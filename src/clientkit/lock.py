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

"""Per-checkout run lock.

A pipeline run mutates the language repository's working tree in place,
so only one run may operate on a checkout at a time. The lock is a JSON
file at ``.librarian/clientkit.lock`` holding the owner's PID, host and
start time, created with ``O_CREAT | O_EXCL``.

A lock is considered abandoned, and taken over, when its owner process
is gone (same host only) or it is older than ``stale_after`` seconds.

Usage::

    from clientkit.lock import run_lock

    with run_lock(repo_root):
        await run_generate(...)
"""

from __future__ import annotations

import atexit
import json
import os
import socket
import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path

from clientkit.errors import E, ClientKitError
from clientkit.logging import get_logger
from clientkit.state import LIBRARIAN_DIR

logger = get_logger(__name__)

LOCK_FILENAME = 'clientkit.lock'

# Generating a large batch can take hours.
DEFAULT_STALE_AFTER: float = 6 * 3600.0


@dataclass(frozen=True)
class LockOwner:
    """Contents of the lock file."""

    pid: int
    hostname: str
    started: float

    @classmethod
    def current(cls) -> LockOwner:
        """The owner record for this process."""
        return cls(pid=os.getpid(), hostname=socket.gethostname(), started=time.time())

    def describe(self) -> str:
        return f'PID {self.pid} on {self.hostname}'


def lock_path(repo_root: Path) -> Path:
    """Where the lock file for ``repo_root`` lives."""
    return repo_root / LIBRARIAN_DIR / LOCK_FILENAME


def read_owner(path: Path) -> LockOwner | None:
    """Return the current owner, or ``None`` if unlocked or unreadable."""
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
        return LockOwner(pid=int(data['pid']), hostname=str(data['hostname']), started=float(data['started']))
    except FileNotFoundError:
        return None
    except (OSError, ValueError, KeyError, TypeError):
        logger.warning('lock_file_unreadable', path=str(path))
        return None


def _abandoned(owner: LockOwner, stale_after: float) -> bool:
    if time.time() - owner.started > stale_after:
        return True
    if owner.hostname != socket.gethostname():
        return False
    try:
        os.kill(owner.pid, 0)
    except ProcessLookupError:
        return True
    except PermissionError:
        return False
    return False


def acquire(repo_root: Path, *, stale_after: float = DEFAULT_STALE_AFTER) -> Path:
    """Take the run lock for ``repo_root``.

    Raises:
        ClientKitError: If another live run holds the lock.
    """
    path = lock_path(repo_root)
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.exists():
        owner = read_owner(path)
        if owner is not None and not _abandoned(owner, stale_after):
            raise ClientKitError(
                E.LOCK_ACQUISITION_FAILED,
                f'Another clientkit run ({owner.describe()}) holds {path}.',
                hint=f"Wait for it to finish, or delete '{path}' if it is no longer running.",
            )
        logger.warning('stale_lock_removed', path=str(path), owner=owner.describe() if owner else None)
        path.unlink(missing_ok=True)

    me = LockOwner.current()
    try:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        rival = read_owner(path)
        raise ClientKitError(
            E.LOCK_ACQUISITION_FAILED,
            f'Another clientkit run ({rival.describe() if rival else "unknown"}) took {path} first.',
        ) from None
    except OSError as exc:
        raise ClientKitError(E.LOCK_ACQUISITION_FAILED, f'Cannot create {path}: {exc}') from exc
    with os.fdopen(fd, 'w', encoding='utf-8') as fh:
        json.dump(asdict(me), fh)

    atexit.register(_release_at_exit, path, me.pid)
    logger.info('lock_acquired', path=str(path), pid=me.pid)
    return path


def release(path: Path) -> None:
    """Drop the lock if this process owns it. Safe to call twice."""
    owner = read_owner(path)
    if owner is not None and owner.pid != os.getpid():
        logger.warning('lock_owned_by_other', path=str(path), owner=owner.describe())
        return
    path.unlink(missing_ok=True)
    logger.info('lock_released', path=str(path))


def _release_at_exit(path: Path, pid: int) -> None:
    if os.getpid() == pid:
        path.unlink(missing_ok=True)


@contextmanager
def run_lock(repo_root: Path, *, stale_after: float = DEFAULT_STALE_AFTER) -> Generator[Path]:
    """Hold the run lock for the duration of the ``with`` block."""
    path = acquire(repo_root, stale_after=stale_after)
    try:
        yield path
    finally:
        release(path)


__all__ = [
    'DEFAULT_STALE_AFTER',
    'LOCK_FILENAME',
    'LockOwner',
    'acquire',
    'lock_path',
    'read_owner',
    'release',
    'run_lock',
]
