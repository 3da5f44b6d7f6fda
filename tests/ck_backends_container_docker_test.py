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

"""Tests for the docker container backend.

Mocks run_command; the fake "container" writes its response file the
way a real language image would.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from clientkit.backends._run import CommandResult
from clientkit.backends.container import ContainerRunner
from clientkit.backends.container.docker import CONTAINER_TIMEOUT_SECONDS, ContainerCommand, DockerRunner, read_response
from clientkit.errors import ContainerInvocationError
from clientkit.state import ApiState, Batch, Library

_RUN = 'clientkit.backends.container.docker.run_command'


def _library() -> Library:
    return Library(id='secretmanager', apis=[ApiState(path='google/cloud/secretmanager/v1')], source_roots=['secretmanager'])


def _container(repo: Path, command: str, response: dict[str, Any] | None, *, return_code: int = 0) -> Any:  # noqa: ANN401
    """Return a run_command stand-in that writes ``response`` for ``command``."""

    def run(args: list[str], **kw: Any) -> CommandResult:  # noqa: ANN401
        if response is not None:
            (repo / '.librarian' / f'{command}-response.json').write_text(json.dumps(response), encoding='utf-8')
        return CommandResult(command=args, return_code=return_code, stderr='boom' if return_code else '')

    return run


class TestReadResponse:
    """Tests for read_response."""

    def test_missing(self, tmp_path: Path) -> None:
        """No file is no response."""
        assert read_response(tmp_path / 'generate-response.json') is None

    def test_reads_and_deletes(self, tmp_path: Path) -> None:
        """The response is parsed and removed."""
        path = tmp_path / 'configure-response.json'
        path.write_text('{"id": "a", "version": "1.0.0"}', encoding='utf-8')
        assert read_response(path) == {'id': 'a', 'version': '1.0.0'}
        assert not path.exists()

    def test_error_message(self, tmp_path: Path) -> None:
        """A reported error is a failure even on exit zero."""
        path = tmp_path / 'generate-response.json'
        path.write_text('{"error_message": "protoc failed"}', encoding='utf-8')
        with pytest.raises(ContainerInvocationError, match='protoc failed'):
            read_response(path)

    def test_invalid_json(self, tmp_path: Path) -> None:
        """Garbage is a failure and is still deleted."""
        path = tmp_path / 'generate-response.json'
        path.write_text('{', encoding='utf-8')
        with pytest.raises(ContainerInvocationError):
            read_response(path)
        assert not path.exists()


class TestDockerArgs:
    """Tests for docker_args."""

    def test_args(self) -> None:
        """Mounts come before the image, flags after the command."""
        runner = DockerRunner('gcr.io/lang:latest')
        args = runner.docker_args(ContainerCommand.BUILD, ['/r:/repo'], ['--repo=/repo'])
        assert args == ['docker', 'run', '--rm', '-v', '/r:/repo', 'gcr.io/lang:latest', 'build', '--repo=/repo']

    def test_satisfies_protocol(self) -> None:
        """DockerRunner is a ContainerRunner."""
        assert isinstance(DockerRunner('img'), ContainerRunner)


class TestDockerRunner:
    """Tests for the container commands."""

    @pytest.mark.asyncio()
    async def test_generate_writes_request(self, tmp_path: Path) -> None:
        """The library is handed over as a request file."""
        runner = DockerRunner('img')
        with patch(_RUN, side_effect=_container(tmp_path, 'generate', {})) as m:
            await runner.generate(tmp_path, _library(), api_root=tmp_path / 'api', output=tmp_path / 'out')
        request = json.loads((tmp_path / '.librarian' / 'generate-request.json').read_text(encoding='utf-8'))
        assert request['id'] == 'secretmanager'
        args = m.call_args.args[0]
        assert f'{tmp_path}/out:/output' in args
        assert f'{tmp_path / "api"}:/source:ro' in args
        assert args[args.index('img') + 1] == 'generate'

    @pytest.mark.asyncio()
    async def test_host_mount(self, tmp_path: Path) -> None:
        """Output paths are rewritten for docker-in-docker."""
        runner = DockerRunner('img', host_mount=f'{tmp_path}:/host')
        with patch(_RUN, side_effect=_container(tmp_path, 'generate', None)) as m:
            await runner.generate(tmp_path, _library(), api_root=tmp_path / 'api', output=tmp_path / 'out')
        assert '/host/out:/output' in m.call_args.args[0]

    @pytest.mark.asyncio()
    async def test_non_zero_exit(self, tmp_path: Path) -> None:
        """A failing container raises."""
        runner = DockerRunner('img')
        with patch(_RUN, side_effect=_container(tmp_path, 'build', None, return_code=1)):
            with pytest.raises(ContainerInvocationError) as exc_info:
                await runner.build(tmp_path, _library())
        assert exc_info.value.hint == 'boom'

    @pytest.mark.asyncio()
    async def test_long_running_timeout(self, tmp_path: Path) -> None:
        """Container runs get the long container timeout."""
        runner = DockerRunner('img')
        with patch(_RUN, side_effect=_container(tmp_path, 'build', None)) as m:
            await runner.build(tmp_path, _library())
        assert m.call_args.kwargs['timeout'] == CONTAINER_TIMEOUT_SECONDS

    @pytest.mark.asyncio()
    async def test_configure_returns_library(self, tmp_path: Path) -> None:
        """The configured library comes from the response file."""
        response = {
            'id': 'secretmanager',
            'version': '0.1.0',
            'apis': [{'path': 'google/cloud/secretmanager/v1', 'service_config': 'secretmanager_v1.yaml'}],
            'source_roots': ['secretmanager', 'internal/generated/snippets/secretmanager'],
        }
        runner = DockerRunner('img')
        with patch(_RUN, side_effect=_container(tmp_path, 'configure', response)) as m:
            configured = await runner.configure(
                tmp_path,
                _library(),
                api_root=tmp_path / 'api',
                output=tmp_path / 'out',
                global_files=['go.work'],
            )
        assert configured.version == '0.1.0'
        assert configured.source_roots == ['secretmanager', 'internal/generated/snippets/secretmanager']
        assert f'{tmp_path}/go.work:/repo/go.work:ro' in m.call_args.args[0]

    @pytest.mark.asyncio()
    async def test_configure_without_response(self, tmp_path: Path) -> None:
        """Configure must answer."""
        runner = DockerRunner('img')
        with patch(_RUN, side_effect=_container(tmp_path, 'configure', None)):
            with pytest.raises(ContainerInvocationError):
                await runner.configure(tmp_path, _library(), api_root=tmp_path, output=tmp_path, global_files=[])

    @pytest.mark.asyncio()
    async def test_release_stage_sends_batch(self, tmp_path: Path) -> None:
        """Release staging receives the whole batch."""
        batch = Batch(libraries=[Library(id='a', version='1.1.0', release_triggered=True)])
        runner = DockerRunner('img')
        with patch(_RUN, side_effect=_container(tmp_path, 'release-stage', {})):
            await runner.release_stage(tmp_path, batch, output=tmp_path / 'out')
        request = json.loads((tmp_path / '.librarian' / 'release-stage-request.json').read_text(encoding='utf-8'))
        assert request['libraries'][0]['release_triggered'] is True
