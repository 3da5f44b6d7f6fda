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

"""Container runner protocol for clientkit.

The :class:`ContainerRunner` protocol is the per-language generator and
builder. Every method raises
:class:`~clientkit.errors.ContainerInvocationError` on a non-zero exit
or when the container's response names an error. Implementations:

- :class:`~clientkit.backends.container.docker.DockerRunner` - ``docker run``
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from clientkit.backends.container.docker import DockerRunner as DockerRunner
from clientkit.state import Batch, Library

__all__ = [
    'ContainerRunner',
    'DockerRunner',
]


@runtime_checkable
class ContainerRunner(Protocol):
    """Protocol for the language container."""

    async def configure(
        self,
        repo_dir: Path,
        library: Library,
        *,
        api_root: Path,
        output: Path,
        global_files: list[str],
    ) -> Library:
        """Configure a new library and return its completed state."""
        ...

    async def generate(self, repo_dir: Path, library: Library, *, api_root: Path, output: Path) -> None:
        """Generate ``library`` into ``output``."""
        ...

    async def build(self, repo_dir: Path, library: Library) -> None:
        """Build and test ``library`` in place."""
        ...

    async def release_stage(self, repo_dir: Path, batch: Batch, *, output: Path) -> None:
        """Stage releases for every triggered library into ``output``."""
        ...
