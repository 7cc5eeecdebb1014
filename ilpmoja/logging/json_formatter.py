"""
JSON logging formatter for the bridge.

Formats log entries as single-line JSON objects with a fixed prefix so bridge
output can be separated from connector output in shared log streams.
"""

"""
Copyright (c) 2025 Firefly Software Solutions Inc.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at:

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

DEFAULT_PREFIX = "ilpmoja::bridge::log"

# Attributes every LogRecord carries; anything else on a record came from ``extra``
RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.NOTSET, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def _json_default(value: Any) -> Any:
    # packet bytes and envelope kinds show up in extra fields
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, Enum):
        return value.value
    return str(value)


class BridgeJSONFormatter(logging.Formatter):
    """
    JSON formatter for bridge log records.

    Extra fields passed through ``logger.info(..., extra={...})`` (for example
    ``transaction_id`` or ``message_kind``) are merged into the JSON object.
    Timestamps are UTC.
    """

    def __init__(self, prefix: Optional[str] = None, include_extra: bool = True):
        """
        Initialize the JSON formatter.

        Args:
            prefix: Log prefix to use. If None, defaults to ilpmoja::bridge::log
            include_extra: Whether to include extra fields from log records
        """
        super().__init__()
        self.prefix = prefix or DEFAULT_PREFIX
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "prefix": self.prefix,
            "module": record.filename,
            "line": record.lineno,
        }
        if record.funcName and record.funcName != "<module>":
            entry["function"] = record.funcName

        if self.include_extra:
            entry.update(self.extra_fields(record))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        elif record.stack_info:
            entry["stack"] = self.formatStack(record.stack_info)

        return json.dumps(entry, separators=(",", ":"), default=_json_default)

    @staticmethod
    def extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
        """Non-empty attributes added to the record through ``extra``."""
        return {
            key: value
            for key, value in record.__dict__.items()
            if key not in RESERVED_ATTRS
            and not key.startswith("_")
            and value is not None
            and value != ""
        }


def create_json_handler(level: int = logging.INFO, stream=None) -> logging.Handler:
    """
    Create a stream handler with JSON formatting.

    Args:
        level: Logging level
        stream: Output stream (defaults to sys.stdout)
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(BridgeJSONFormatter())
    return handler
