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

"""Tests for clientkit.logging module."""

from __future__ import annotations

import json
import logging

import pytest
import structlog
from clientkit.logging import bind_command, configure_logging, get_logger, library_context


@pytest.fixture(autouse=True)
def _clear_context() -> None:
    """Drop bound context between tests."""
    structlog.contextvars.clear_contextvars()


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_default_level_is_info(self) -> None:
        """Default logging level is INFO."""
        configure_logging()
        assert logging.root.level == logging.INFO

    def test_verbose_sets_debug(self) -> None:
        """Verbose sets DEBUG."""
        configure_logging(verbose=True)
        assert logging.root.level == logging.DEBUG

    def test_quiet_beats_verbose(self) -> None:
        """Quiet wins when both flags are given."""
        configure_logging(verbose=True, quiet=True)
        assert logging.root.level == logging.WARNING

    def test_json_log_emits_json(self, capsys: pytest.CaptureFixture[str]) -> None:
        """JSON mode writes one parseable object per event to stderr."""
        configure_logging(json_log=True)
        get_logger('clientkit.test').warning('library_skipped', library='pubsub')
        line = capsys.readouterr().err.strip().splitlines()[-1]
        event = json.loads(line)
        assert event['event'] == 'library_skipped'
        assert event['library'] == 'pubsub'
        assert event['level'] == 'warning'

    def test_httpx_quiet_by_default(self) -> None:
        """Per-request httpx logs are hidden unless verbose."""
        configure_logging()
        assert logging.getLogger('httpx').level == logging.WARNING
        configure_logging(verbose=True)
        assert logging.getLogger('httpx').level == logging.DEBUG


class TestRunContext:
    """Tests for bind_command() and library_context()."""

    def test_command_and_library_are_attached(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Events carry the bound command, and the library inside the block."""
        configure_logging(json_log=True)
        bind_command('generate')
        log = get_logger('clientkit.test')
        with library_context('pubsub'):
            log.warning('container_started')
        log.warning('generation_statistics')
        inside, outside = (json.loads(line) for line in capsys.readouterr().err.strip().splitlines()[-2:])
        assert inside['command'] == 'generate'
        assert inside['library'] == 'pubsub'
        assert outside['command'] == 'generate'
        assert 'library' not in outside


class TestGetLogger:
    """Tests for get_logger()."""

    def test_logger_can_log(self) -> None:
        """Loggers emit at every level without errors."""
        configure_logging(quiet=True)
        log = get_logger()
        log.info('info_event', key='value')
        log.debug('debug_event')
        log.warning('warning_event')
