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

"""Protocol-based collaborator layer for clientkit.

All external calls (git, docker, GitHub API) go through injectable
Protocol interfaces defined here, so the classification and pipeline
code can run against fakes in tests.

Protocols (defined in subpackage ``__init__.py`` files):

- :class:`VCS` - changed files, content hashes, commit, push (default: :class:`GitCLIBackend`)
- :class:`ContainerRunner` - configure, generate, build, release-stage (default: :class:`DockerRunner`)
- :class:`Forge` - pull requests, labels, tags, releases (default: :class:`GitHubAPIBackend`)
"""

from clientkit.backends._run import CommandResult, run_command
from clientkit.backends.container import ContainerRunner, DockerRunner
from clientkit.backends.forge import Forge, GitHubAPIBackend
from clientkit.backends.vcs import VCS, GitCLIBackend

__all__ = [
    'CommandResult',
    'ContainerRunner',
    'DockerRunner',
    'Forge',
    'GitCLIBackend',
    'GitHubAPIBackend',
    'VCS',
    'run_command',
]
