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

"""Structured logging for clientkit.

Configures `structlog <https://www.structlog.org/>`_ for batch runs that
mostly execute in CI. Console output is the default; ``--json-log``
switches to one JSON object per line. Both go to stderr, which keeps
stdout for the pull request URL or ``pr-body.txt`` path.

Events are snake_case names with key/value context. Two pieces of
context are bound once instead of passed to every call:

- ``command``: the subcommand, bound by the CLI for the whole run.
- ``library``: bound by the batch loops while one library is processed,
  so git, docker and GitHub events from the backends say which library
  they belong to.

httpx logs each request at INFO, which buries the batch progress; its
loggers stay at WARNING unless ``--verbose`` is given.

Usage::

    from clientkit.logging import configure_logging, get_logger, library_context

    configure_logging(verbose=True)
    log = get_logger(__name__)
    with library_context('secretmanager'):
        log.info('library_skipped', reason='generate_blocked')
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

_CHATTY_LOGGERS = ('httpx', 'httpcore')


def configure_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    json_log: bool = False,
) -> None:
    """Configure structlog for a clientkit run.

    Call once at startup. ``quiet`` wins over ``verbose``.
    """
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(format='%(message)s', stream=sys.stderr, level=level, force=True)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(level if verbose else max(level, logging.WARNING))

    if json_log:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt='iso', utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )
    for handler in logging.root.handlers:
        handler.setFormatter(formatter)


def bind_command(command: str) -> None:
    """Tag every later event of this run with ``command``."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(command=command)


@contextmanager
def library_context(library_id: str) -> Iterator[None]:
    """Tag events logged inside the block with ``library``."""
    with structlog.contextvars.bound_contextvars(library=library_id):
        yield


def get_logger(name: str = 'clientkit') -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named ``name``."""
    return structlog.get_logger(name)


__all__ = [
    'bind_command',
    'configure_logging',
    'get_logger',
    'library_context',
]
