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

"""Moving container output into the language repository.

After a container writes a library into its output directory, the old
copy under the library's source roots is cleaned and the new files are
copied over. Cleaning is regex-driven, on paths relative to the repo
root::

    remove_regex    paths to delete (default: everything under each source root)
    preserve_regex  paths to keep even if remove_regex matches
                    (always includes the generator-input directory)

Directories are removed deepest first, and only if they ended up empty.

Global allowlist files (``config.yaml`` ``global_files_allowlist``) are
copied verbatim; read-only ones are only copied when asked for.
"""

from __future__ import annotations

import os
import re
import shutil
from collections.abc import Iterable
from pathlib import Path

from clientkit.backends.container.docker import GENERATOR_INPUT_DIR
from clientkit.config import ClientKitConfig
from clientkit.errors import E, ClientKitError
from clientkit.logging import get_logger
from clientkit.state import Library

logger = get_logger(__name__)

GLOBAL_PRESERVE_PATTERNS: tuple[str, ...] = (rf'^{re.escape(GENERATOR_INPUT_DIR)}(/.*)?$',)


def safe_directory_name(library_id: str) -> str:
    """Return a single path segment for ``library_id``.

    ``pubsub/v2`` becomes ``pubsub-slash-v2`` so that per-library output
    directories never nest inside each other.
    """
    return library_id.replace('/', '-slash-')


def _compile(patterns: Iterable[str], library_id: str) -> list[re.Pattern[str]]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as exc:
            raise ClientKitError(
                E.STATE_CORRUPTED,
                f'library {library_id!r} has an invalid regex {pattern!r}: {exc}',
            ) from exc
    return compiled


def paths_to_remove(
    paths: Iterable[str],
    remove_patterns: Iterable[str],
    preserve_patterns: Iterable[str],
    *,
    library_id: str = '',
) -> list[str]:
    """Filter ``paths`` down to those matched by a remove pattern and no preserve pattern."""
    remove = _compile(remove_patterns, library_id)
    preserve = _compile(preserve_patterns, library_id)
    return [
        p for p in paths if any(r.search(p) for r in remove) and not any(k.search(p) for k in preserve)
    ]


def _relative_tree(repo_dir: Path, root: Path) -> list[str]:
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        found.extend((base / name).relative_to(repo_dir).as_posix() for name in (*dirnames, *filenames))
    if root != repo_dir:
        found.insert(0, root.relative_to(repo_dir).as_posix())
    return found


def clean_library(repo_dir: Path, library: Library) -> None:
    """Delete the library's previously generated files from ``repo_dir``."""
    remove_patterns = library.remove_regex or [rf'^{re.escape(root)}(/.*)?$' for root in library.source_roots]
    preserve_patterns = [*library.preserve_regex, *GLOBAL_PRESERVE_PATTERNS]

    candidates: list[str] = []
    for root in library.source_roots:
        root_path = repo_dir / root
        if not root_path.exists() and not root_path.is_symlink():
            logger.debug('source_root_missing', library=library.id, root=root)
            continue
        candidates.extend(_relative_tree(repo_dir, root_path))

    doomed = paths_to_remove(candidates, remove_patterns, preserve_patterns, library_id=library.id)
    dirs: list[Path] = []
    for rel in doomed:
        path = repo_dir / rel
        if path.is_dir() and not path.is_symlink():
            dirs.append(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
    for directory in sorted(dirs, key=lambda d: len(d.parts), reverse=True):
        try:
            directory.rmdir()
        except OSError:
            logger.debug('directory_kept', path=str(directory))
    logger.info('library_cleaned', library=library.id, removed=len(doomed))


def copy_file(src: Path, dst: Path) -> None:
    """Copy one file or symlink, creating parent directories."""
    dst.parent.mkdir(parents=True, exist_ok=True)
    if src.is_symlink():
        if dst.exists() or dst.is_symlink():
            dst.unlink()
        dst.symlink_to(os.readlink(src))
        return
    shutil.copyfile(src, dst)


def copy_library_files(library: Library, src_dir: Path, dst_dir: Path, *, fail_on_existing: bool = False) -> None:
    """Copy every file under the library's source roots from ``src_dir`` to ``dst_dir``.

    Raises:
        FileExistsError: If ``fail_on_existing`` and a destination file exists.
    """
    copied = 0
    for root in library.source_roots:
        src_root = src_dir / root
        if not src_root.is_dir():
            continue
        for dirpath, _, filenames in os.walk(src_root):
            for name in filenames:
                src = Path(dirpath) / name
                dst = dst_dir / src.relative_to(src_dir)
                if fail_on_existing and dst.exists():
                    msg = f'file already exists in destination: {dst}'
                    raise FileExistsError(msg)
                copy_file(src, dst)
                copied += 1
    logger.info('library_files_copied', library=library.id, files=copied, source=str(src_dir))


def clean_and_copy_library(repo_dir: Path, library: Library, output_dir: Path) -> None:
    """Replace the library's files in ``repo_dir`` with the container's output."""
    clean_library(repo_dir, library)
    copy_library_files(library, output_dir, repo_dir, fail_on_existing=True)


def copy_global_allowlist(config: ClientKitConfig | None, src_dir: Path, dst_dir: Path, *, copy_read_only: bool = False) -> None:
    """Copy allow-listed repository-wide files from ``src_dir`` to ``dst_dir``."""
    if config is None:
        return
    for entry in config.global_files_allowlist:
        if entry.permissions == 'read-only' and not copy_read_only:
            continue
        src = src_dir / entry.path
        if not src.exists() and not src.is_symlink():
            logger.debug('global_file_missing', path=entry.path)
            continue
        copy_file(src, dst_dir / entry.path)
        logger.debug('global_file_copied', path=entry.path)


__all__ = [
    'GLOBAL_PRESERVE_PATTERNS',
    'clean_and_copy_library',
    'clean_library',
    'copy_file',
    'copy_global_allowlist',
    'copy_library_files',
    'paths_to_remove',
    'safe_directory_name',
]
