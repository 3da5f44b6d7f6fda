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

"""Release tag names.

A tag format is a template with ``{id}`` and ``{version}`` placeholders,
e.g. ``{id}/v{version}`` renders ``secretmanager/v1.3.0``.

Resolution order for a library's format::

    config.yaml libraries[].tag_format
         │ (empty)
         ▼
    config.yaml tag_format
         │ (empty)
         ▼
    state.yaml libraries[].tag_format   (deprecated)
         │ (empty)
         ▼
    '{id}-{version}'
"""

from __future__ import annotations

from clientkit.config import ClientKitConfig
from clientkit.logging import get_logger
from clientkit.state import Library

logger = get_logger(__name__)

DEFAULT_TAG_FORMAT = '{id}-{version}'


def determine_tag_format(library: Library | None, config: ClientKitConfig | None, library_id: str = '') -> str:
    """Pick the tag format for a library."""
    library_id = library_id or (library.id if library else '')
    if config is not None:
        lib_cfg = config.library_config(library_id)
        if lib_cfg is not None and lib_cfg.tag_format:
            return lib_cfg.tag_format
        if config.tag_format:
            return config.tag_format
    if library is not None and library.tag_format:
        return library.tag_format
    logger.warning('tag_format_defaulted', library=library_id, format=DEFAULT_TAG_FORMAT)
    return DEFAULT_TAG_FORMAT


def format_tag(tag_format: str, library_id: str, version: str) -> str:
    """Render ``tag_format`` for ``library_id`` at ``version``."""
    if not tag_format:
        tag_format = DEFAULT_TAG_FORMAT
    return tag_format.replace('{id}', library_id).replace('{version}', version)


__all__ = [
    'DEFAULT_TAG_FORMAT',
    'determine_tag_format',
    'format_tag',
]
