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

"""Docker container backend for clientkit.

Runs the language container through ``docker run --rm``. Requests are
handed over as JSON files in ``.librarian/`` and responses come back
the same way::

    .librarian/generate-request.json   ← written before the run
    .librarian/generate-response.json  ← written by the container

A response carrying a non-empty ``error_message`` is a failure even if
the container exited zero. The response file is deleted once read.

Mounts per command::

    configure      /librarian /input /output /source:ro + global files under /repo (ro)
    generate       /librarian /input /output /source:ro
    build          /librarian /repo
    release-stage  /librarian /repo:ro /output
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum
from pathlib import Path
from typing import Any

from clientkit.backends._run import run_command
from clientkit.errors import ContainerInvocationError
from clientkit.logging import get_logger
from clientkit.state import LIBRARIAN_DIR, Batch, Library, batch_to_dict, library_from_dict, library_to_dict

log = get_logger('clientkit.backends.container.docker')

GENERATOR_INPUT_DIR = 'generator-input'
CONTAINER_TIMEOUT_SECONDS = 3600


class ContainerCommand(str, Enum):
    """Commands understood by a language container."""

    CONFIGURE = 'configure'
    GENERATE = 'generate'
    BUILD = 'build'
    RELEASE_STAGE = 'release-stage'


def read_response(path: Path) -> dict[str, Any] | None:
    """Read and delete a container response file.

    Returns ``None`` if the container wrote no response.

    Raises:
        ContainerInvocationError: If the response is unreadable or
            carries an ``error_message``.
    """
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding='utf-8') or '{}')
    except json.JSONDecodeError as exc:
        raise ContainerInvocationError(f'{path.name} is not valid JSON: {exc}') from exc
    finally:
        path.unlink(missing_ok=True)
    message = data.get('error_message', '') if isinstance(data, dict) else ''
    if message:
        raise ContainerInvocationError(
            f'container reported an error in {path.name}: {message}',
        )
    return data


class DockerRunner:
    """:class:`~clientkit.backends.container.ContainerRunner` using ``docker``.

    Args:
        image: Container image reference.
        host_mount: Optional ``hostDir:localDir`` pair. When clientkit
            itself runs in a container, output paths starting with
            ``hostDir`` are rewritten to ``localDir`` for the docker
            daemon.
    """

    def __init__(self, image: str, *, host_mount: str = '') -> None:
        """Initialize with the image and mount options."""
        self._image = image
        self._host_mount = host_mount

    @property
    def image(self) -> str:
        """Container image reference."""
        return self._image

    def _host_path(self, path: Path) -> str:
        text = str(path)
        if not self._host_mount:
            return text
        host, _, local = self._host_mount.partition(':')
        if text.startswith(host):
            return local + text[len(host) :]
        return text

    def docker_args(
        self,
        command: ContainerCommand,
        mounts: list[str],
        flags: list[str],
    ) -> list[str]:
        """Assemble the ``docker run`` argument list."""
        args = ['docker', 'run', '--rm']
        for mount in mounts:
            args.extend(['-v', mount])
        args.extend([self._image, command.value, *flags])
        return args

    def _run(self, command: ContainerCommand, repo_dir: Path, mounts: list[str], flags: list[str]) -> None:
        args = self.docker_args(command, mounts, flags)
        result = run_command(args, cwd=repo_dir, timeout=CONTAINER_TIMEOUT_SECONDS)
        if not result.ok:
            raise ContainerInvocationError(
                f'{command.value} container exited with code {result.return_code}',
                hint=result.error_summary,
            )

    @staticmethod
    def _write_request(repo_dir: Path, command: ContainerCommand, payload: dict[str, Any]) -> None:
        librarian = repo_dir / LIBRARIAN_DIR
        librarian.mkdir(parents=True, exist_ok=True)
        (librarian / f'{command.value}-request.json').write_text(json.dumps(payload, indent=2) + '\n', encoding='utf-8')

    @staticmethod
    def _response_path(repo_dir: Path, command: ContainerCommand) -> Path:
        return repo_dir / LIBRARIAN_DIR / f'{command.value}-response.json'

    def _base_mounts(self, repo_dir: Path, output: Path, api_root: Path) -> list[str]:
        return [
            f'{repo_dir}/{LIBRARIAN_DIR}:/librarian',
            f'{repo_dir}/{LIBRARIAN_DIR}/{GENERATOR_INPUT_DIR}:/input',
            f'{self._host_path(output)}:/output',
            f'{api_root}:/source:ro',
        ]

    def _configure(
        self,
        repo_dir: Path,
        library: Library,
        api_root: Path,
        output: Path,
        global_files: list[str],
    ) -> Library:
        command = ContainerCommand.CONFIGURE
        self._write_request(repo_dir, command, library_to_dict(library))
        mounts = self._base_mounts(repo_dir, output, api_root)
        mounts.extend(f'{repo_dir}/{path}:/repo/{path}:ro' for path in global_files)
        flags = ['--librarian=/librarian', '--input=/input', '--output=/output', '--repo=/repo', '--source=/source']
        self._run(command, repo_dir, mounts, flags)
        data = read_response(self._response_path(repo_dir, command))
        if not data:
            raise ContainerInvocationError(f'no response file for the configure command of {library.id}')
        return library_from_dict(data)

    def _generate(self, repo_dir: Path, library: Library, api_root: Path, output: Path) -> None:
        command = ContainerCommand.GENERATE
        self._write_request(repo_dir, command, library_to_dict(library))
        mounts = self._base_mounts(repo_dir, output, api_root)
        flags = ['--librarian=/librarian', '--input=/input', '--output=/output', '--source=/source']
        self._run(command, repo_dir, mounts, flags)
        read_response(self._response_path(repo_dir, command))

    def _build(self, repo_dir: Path, library: Library) -> None:
        command = ContainerCommand.BUILD
        self._write_request(repo_dir, command, library_to_dict(library))
        mounts = [f'{repo_dir}/{LIBRARIAN_DIR}:/librarian', f'{repo_dir}:/repo']
        self._run(command, repo_dir, mounts, ['--librarian=/librarian', '--repo=/repo'])
        read_response(self._response_path(repo_dir, command))

    def _release_stage(self, repo_dir: Path, batch: Batch, output: Path) -> None:
        command = ContainerCommand.RELEASE_STAGE
        self._write_request(repo_dir, command, batch_to_dict(batch))
        mounts = [
            f'{repo_dir}/{LIBRARIAN_DIR}:/librarian',
            f'{repo_dir}:/repo:ro',
            f'{self._host_path(output)}:/output',
        ]
        self._run(command, repo_dir, mounts, ['--librarian=/librarian', '--repo=/repo', '--output=/output'])
        read_response(self._response_path(repo_dir, command))

    async def configure(
        self,
        repo_dir: Path,
        library: Library,
        *,
        api_root: Path,
        output: Path,
        global_files: list[str],
    ) -> Library:
        """Configure a new library; returns the library as the container completed it."""
        log.info('container_configure', library=library.id, image=self._image)
        return await asyncio.to_thread(self._configure, repo_dir, library, api_root, output, global_files)

    async def generate(self, repo_dir: Path, library: Library, *, api_root: Path, output: Path) -> None:
        """Generate ``library`` into ``output``."""
        log.info('container_generate', library=library.id, image=self._image)
        await asyncio.to_thread(self._generate, repo_dir, library, api_root, output)

    async def build(self, repo_dir: Path, library: Library) -> None:
        """Build and test ``library`` in place."""
        log.info('container_build', library=library.id, image=self._image)
        await asyncio.to_thread(self._build, repo_dir, library)

    async def release_stage(self, repo_dir: Path, batch: Batch, *, output: Path) -> None:
        """Apply staged versions and changelogs for every triggered library into ``output``."""
        log.info('container_release_stage', libraries=len(batch.triggered()), image=self._image)
        await asyncio.to_thread(self._release_stage, repo_dir, batch, output)


__all__ = [
    'CONTAINER_TIMEOUT_SECONDS',
    'ContainerCommand',
    'DockerRunner',
    'GENERATOR_INPUT_DIR',
    'read_response',
]
