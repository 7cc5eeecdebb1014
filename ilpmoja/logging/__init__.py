"""
Logging utilities and configuration for ilpmoja.

Provides JSON logging with a bridge prefix and centralized handler setup.
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

from .json_formatter import BridgeJSONFormatter, create_json_handler
from .manager import (
    BridgeLoggingManager,
    get_bridge_logger,
    get_logging_manager,
    setup_bridge_logging,
    shutdown_bridge_logging,
)

__all__ = [
    "BridgeJSONFormatter",
    "create_json_handler",
    "BridgeLoggingManager",
    "get_logging_manager",
    "setup_bridge_logging",
    "get_bridge_logger",
    "shutdown_bridge_logging",
]
