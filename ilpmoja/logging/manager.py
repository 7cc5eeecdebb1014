"""
Centralized logging manager for the bridge.

Installs console and rotating file handlers according to ``LoggingConfig``.
Components do not reach for this module themselves; they receive a logger at
construction and default to ``logging.getLogger(__name__)``.
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

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import List, Optional, Union

from ..config.bridge_config import BridgeConfig, LoggingConfig
from .json_formatter import BridgeJSONFormatter

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

ROOT_LOGGER = "ilpmoja"

BRIDGE_LOGGERS = [
    "ilpmoja.engine",
    "ilpmoja.integration",
    "ilpmoja.events",
    "ilpmoja.cli",
]


class BridgeLoggingManager:
    """Installs and removes the handlers of the ``ilpmoja`` logger tree."""

    def __init__(self, config: Union[BridgeConfig, LoggingConfig, None] = None):
        """
        Initialize the logging manager.

        Args:
            config: BridgeConfig or its LoggingConfig section. Defaults apply if omitted.
        """
        if isinstance(config, BridgeConfig):
            config = config.logging
        self.settings: LoggingConfig = config or LoggingConfig()
        self.configured = False
        self._handlers: List[logging.Handler] = []

    @property
    def log_level(self) -> int:
        return logging.getLevelName(self.settings.level)

    @property
    def format_type(self) -> str:
        return self.settings.format

    @property
    def output_file(self) -> Optional[str]:
        return self.settings.output_file

    def _formatter(self) -> logging.Formatter:
        if self.format_type == "json":
            return BridgeJSONFormatter()
        return logging.Formatter(TEXT_FORMAT)

    def _build_handlers(self) -> List[logging.Handler]:
        handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

        if self.output_file:
            path = Path(self.output_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(
                logging.handlers.RotatingFileHandler(
                    filename=str(path),
                    maxBytes=self.settings.max_file_size_mb * 1024 * 1024,
                    backupCount=self.settings.backup_count,
                    encoding="utf-8",
                )
            )

        for handler in handlers:
            handler.setFormatter(self._formatter())
            handler.setLevel(self.log_level)
        return handlers

    def setup_logging(self) -> None:
        """Attach handlers to the ``ilpmoja`` logger. Calling it twice is a no-op."""
        if self.configured:
            return

        root = logging.getLogger(ROOT_LOGGER)
        root.setLevel(self.log_level)
        for handler in self._build_handlers():
            root.addHandler(handler)
            self._handlers.append(handler)

        for name in BRIDGE_LOGGERS:
            component = logging.getLogger(name)
            component.setLevel(self.log_level)
            component.propagate = True

        self.configured = True

        logging.getLogger("ilpmoja.logging").info(
            "Bridge logging initialized",
            extra={
                "log_level": self.settings.level,
                "format_type": self.format_type,
                "output_file": self.output_file,
            },
        )

    def get_logger(self, name: str) -> logging.Logger:
        if not self.configured:
            self.setup_logging()
        return logging.getLogger(name)

    def shutdown(self) -> None:
        """Detach and close the handlers this manager installed."""
        root = logging.getLogger(ROOT_LOGGER)
        while self._handlers:
            handler = self._handlers.pop()
            root.removeHandler(handler)
            handler.close()
        self.configured = False


_logging_manager: Optional[BridgeLoggingManager] = None


def get_logging_manager(config=None) -> BridgeLoggingManager:
    """Get or create the process logging manager."""
    global _logging_manager

    if _logging_manager is None:
        _logging_manager = BridgeLoggingManager(config)

    return _logging_manager


def setup_bridge_logging(config=None) -> None:
    """Setup bridge logging from a BridgeConfig."""
    get_logging_manager(config).setup_logging()


def get_bridge_logger(name: str) -> logging.Logger:
    """Get a logger under the ``ilpmoja`` namespace."""
    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def shutdown_bridge_logging() -> None:
    global _logging_manager

    if _logging_manager is not None:
        _logging_manager.shutdown()
        _logging_manager = None
