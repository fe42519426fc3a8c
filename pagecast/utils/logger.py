# Copyright 2026 Firefly Software Solutions Inc
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

"""Logging configuration for Pagecast.

Every component logs through the shared ``pagecast`` logger, tagging its
messages with a bracketed component prefix such as ``[ENCODER]``. Stream
keys registered with :func:`redact` are masked in every record, including
the ffmpeg command line and its diagnostic output.
"""

import logging
import sys
from typing import Optional, Set, Union

LOGGER_NAME = "pagecast"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def mask(secret: str) -> str:
    """Shorten ``secret`` to its first four characters followed by ``****``."""
    if len(secret) <= 4:
        return "****"
    return secret[:4] + "****"


class SecretFilter(logging.Filter):
    """Rewrites records so registered secrets never reach a handler."""

    def __init__(self) -> None:
        super().__init__()
        self.secrets: Set[str] = set()

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        for secret in self.secrets:
            message = message.replace(secret, mask(secret))
        record.msg = message
        record.args = None
        return True


_secret_filter = SecretFilter()


def setup_logger(
    name: str = LOGGER_NAME,
    level: int = logging.INFO,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Build the stdout logger used by Pagecast.

    Calling it again replaces the handler, so the level can be changed
    after the CLI has parsed its arguments.

    Args:
        name: Logger name
        level: Logging level
        format_string: Record format, defaults to DEFAULT_FORMAT

    Returns:
        The configured logger
    """
    log = logging.getLogger(name)
    log.setLevel(level)
    log.handlers.clear()
    if _secret_filter not in log.filters:
        log.addFilter(_secret_filter)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))
    log.addHandler(handler)
    return log


def configure_logging(level: Union[int, str] = logging.INFO) -> logging.Logger:
    """Reconfigure the shared logger; ``level`` may be a name like "DEBUG"."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    return setup_logger(level=level)


def redact(secret: Optional[str]) -> None:
    """Mask ``secret`` in every record logged from now on."""
    if secret:
        _secret_filter.secrets.add(secret)


logger = setup_logger()
