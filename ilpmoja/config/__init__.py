"""
Configuration module for ilpmoja.

Copyright (c) 2025 Firefly Software Solutions Inc.
Licensed under the Apache License, Version 2.0 (the "License");
"""

from .bridge_config import (
    DEFAULT_QUOTE_EXPIRY,
    DEFAULT_RESPONSE_TIMEOUT_MS,
    BridgeConfig,
    ConfigurationManager,
    EndpointsConfig,
    ListenerConfig,
    LoggingConfig,
)

__all__ = [
    "BridgeConfig",
    "ListenerConfig",
    "EndpointsConfig",
    "LoggingConfig",
    "ConfigurationManager",
    "DEFAULT_RESPONSE_TIMEOUT_MS",
    "DEFAULT_QUOTE_EXPIRY",
]
