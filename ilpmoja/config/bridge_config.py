#!/usr/bin/env python3
"""
Configuration classes for the ILP/FSPIOP bridge.

Provides configuration management for the listener, outbound endpoints,
timeouts and logging.
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
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import toml
import yaml
from pydantic import BaseModel, Field, field_validator

from ..core.packets import truncate_to_millis

# Waiters for a counterparty PUT are bounded by this default (milliseconds)
DEFAULT_RESPONSE_TIMEOUT_MS = 35000

# Quotes expire at a fixed platform-wide cutoff instead of the request's own expiry
DEFAULT_QUOTE_EXPIRY = datetime(2019, 2, 28, tzinfo=timezone.utc)


class ListenerConfig(BaseModel):
    """Configuration for the inbound FSPIOP listener."""

    enabled: bool = Field(default=True, description="Start the HTTP listener on connect")
    host: str = Field(default="localhost", description="Interface to bind")
    port: int = Field(default=1080, ge=0, le=65535, description="Port to bind")
    base_path: str = Field(default="", description="Path prefix for all inbound routes")

    @field_validator("base_path")
    @classmethod
    def normalize_base_path(cls, v):
        v = v.strip()
        if not v or v == "/":
            return ""
        if not v.startswith("/"):
            v = "/" + v
        return v.rstrip("/")


class EndpointsConfig(BaseModel):
    """Base URLs of the FSPIOP switch resources."""

    transfers: str = Field(
        default="http://localhost:3000", description="Base URL for /transfers calls"
    )
    quotes: str = Field(default="http://localhost:3002", description="Base URL for /quotes calls")

    @field_validator("transfers", "quotes")
    @classmethod
    def validate_url(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("endpoint must be an http(s) URL")
        return v.rstrip("/")

    def for_resource(self, resource: str) -> str:
        """Get the base URL for "transfers" or "quotes"."""
        if resource == "transfers":
            return self.transfers
        if resource == "quotes":
            return self.quotes
        raise ValueError(f"Unknown resource: {resource}")


class LoggingConfig(BaseModel):
    """Configuration for bridge logging."""

    level: str = Field(default="INFO", description="Logging level")
    format: str = Field(default="json", description="Log format: json or text")
    output_file: Optional[str] = Field(default=None, description="Log output file path")
    max_file_size_mb: int = Field(default=100, ge=1, description="Maximum log file size in MB")
    backup_count: int = Field(default=5, ge=1, description="Number of backup log files to keep")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v):
        valid_formats = {"json", "text"}
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of: {valid_formats}")
        return v.lower()


class BridgeConfig(BaseModel):
    """Main configuration class for the bridge."""

    ilp_address: str = Field(
        default="moja.adapter", min_length=1, description="Own ILP address / FSP identifier"
    )
    listener: ListenerConfig = Field(
        default_factory=ListenerConfig, description="Inbound listener configuration"
    )
    endpoints: EndpointsConfig = Field(
        default_factory=EndpointsConfig, description="Outbound FSPIOP endpoints"
    )
    response_timeout_ms: int = Field(
        default=DEFAULT_RESPONSE_TIMEOUT_MS,
        ge=1,
        description="Upper bound on waiting for a counterparty PUT",
    )
    http_timeout_ms: int = Field(
        default=10000, ge=1, description="Timeout for individual outbound HTTP calls"
    )
    asset_scale: int = Field(
        default=0,
        ge=0,
        le=18,
        description=(
            "Decimal places of FSPIOP amounts carried into ILP units; with the default 0, "
            "fractional amounts such as 123.45 are rejected"
        ),
    )
    quote_expiry: datetime = Field(
        default=DEFAULT_QUOTE_EXPIRY, description="Fixed expiry stamped on quote prepares"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    @field_validator("quote_expiry")
    @classmethod
    def quote_expiry_utc(cls, v):
        return truncate_to_millis(v)

    @property
    def response_timeout(self) -> float:
        """Response timeout in seconds."""
        return self.response_timeout_ms / 1000

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "BridgeConfig":
        """Load configuration from a JSON, YAML or TOML file."""
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        content = path.read_text(encoding="utf-8")
        suffix = path.suffix.lower()

        try:
            if suffix in [".yml", ".yaml"]:
                data = yaml.safe_load(content)
            elif suffix == ".toml":
                data = toml.loads(content)
            else:
                data = json.loads(content)
        except (json.JSONDecodeError, yaml.YAMLError, toml.TomlDecodeError) as e:
            raise ValueError(f"Failed to parse configuration file: {e}")

        return cls(**(data or {}))

    @classmethod
    def from_env(cls, prefix: str = "ILPMOJA_") -> "BridgeConfig":
        """Load configuration from environment variables.

        Only explicitly set variables are applied; everything else keeps the
        model defaults.
        """
        return cls(**ConfigurationManager._get_env_overrides(prefix))

    def to_file(self, config_path: Union[str, Path], format: str = "auto") -> None:
        """Save configuration to a file."""
        path = Path(config_path)

        if format == "auto":
            suffix = path.suffix.lower()
            if suffix in [".yml", ".yaml"]:
                format = "yaml"
            elif suffix == ".toml":
                format = "toml"
            else:
                format = "json"

        data = self.model_dump(mode="json", exclude_none=True)

        if format == "yaml":
            content = yaml.dump(data, default_flow_style=False, sort_keys=False, indent=2)
        elif format == "toml":
            content = toml.dumps(data)
        else:
            content = json.dumps(data, indent=2)

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    def validate_configuration(self) -> List[str]:
        """Validate the configuration and return any warnings."""
        warnings = []

        if self.quote_expiry <= datetime.now(timezone.utc):
            warnings.append("quote_expiry is in the past; connectors may reject quote prepares")

        if self.http_timeout_ms > self.response_timeout_ms:
            warnings.append("http_timeout_ms is larger than response_timeout_ms")

        if self.listener.enabled and self.listener.host in ("0.0.0.0", "::"):
            warnings.append("listener binds all interfaces and has no authentication")

        return warnings


class ConfigurationManager:
    """Utility class for managing configurations."""

    @staticmethod
    def create_default_config_file(path: Union[str, Path], format: str = "yaml") -> None:
        """Create a default configuration file."""
        config = BridgeConfig()
        config.to_file(path, format)

    @staticmethod
    def merge_configs(*configs: BridgeConfig) -> BridgeConfig:
        """Merge multiple configurations, with later configs taking precedence."""
        if not configs:
            return BridgeConfig()

        merged_data = configs[0].model_dump()

        for config in configs[1:]:
            config_data = config.model_dump(exclude_unset=True)
            merged_data = ConfigurationManager._deep_merge(merged_data, config_data)

        return BridgeConfig(**merged_data)

    @staticmethod
    def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = ConfigurationManager._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    @staticmethod
    def load_config(
        config_file: Optional[Union[str, Path]] = None,
        env_prefix: str = "ILPMOJA_",
        use_env: bool = True,
    ) -> BridgeConfig:
        """Load configuration from file and/or environment variables."""

        # Start with base configuration (file or defaults)
        if config_file:
            try:
                base_config = BridgeConfig.from_file(config_file)
            except FileNotFoundError:
                base_config = BridgeConfig()
        else:
            base_config = BridgeConfig()

        if use_env:
            env_overrides = ConfigurationManager._get_env_overrides(env_prefix)
            if env_overrides:
                base_data = base_config.model_dump()
                merged_data = ConfigurationManager._deep_merge(base_data, env_overrides)
                return BridgeConfig(**merged_data)

        return base_config

    @staticmethod
    def _get_env_overrides(prefix: str = "ILPMOJA_") -> Dict[str, Any]:
        """Get only the environment variable overrides that are actually set."""
        config_data = {}

        env_mappings = {
            f"{prefix}ILP_ADDRESS": ("ilp_address", str),
            f"{prefix}LISTENER_ENABLED": ("listener.enabled", lambda x: x.lower() == "true"),
            f"{prefix}LISTENER_HOST": ("listener.host", str),
            f"{prefix}LISTENER_PORT": ("listener.port", int),
            f"{prefix}LISTENER_BASE_PATH": ("listener.base_path", str),
            f"{prefix}TRANSFERS_ENDPOINT": ("endpoints.transfers", str),
            f"{prefix}QUOTES_ENDPOINT": ("endpoints.quotes", str),
            f"{prefix}RESPONSE_TIMEOUT_MS": ("response_timeout_ms", int),
            f"{prefix}HTTP_TIMEOUT_MS": ("http_timeout_ms", int),
            f"{prefix}ASSET_SCALE": ("asset_scale", int),
            f"{prefix}LOG_LEVEL": ("logging.level", str),
            f"{prefix}LOG_FORMAT": ("logging.format", str),
            f"{prefix}LOG_FILE": ("logging.output_file", str),
        }

        for env_var, (config_key, converter) in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                try:
                    converted_value = converter(value)
                    # Handle nested keys
                    if "." in config_key:
                        parts = config_key.split(".")
                        current = config_data
                        for part in parts[:-1]:
                            if part not in current:
                                current[part] = {}
                            current = current[part]
                        current[parts[-1]] = converted_value
                    else:
                        config_data[config_key] = converted_value
                except (ValueError, TypeError) as e:
                    raise ValueError(f"Invalid value for {env_var}: {value} ({e})")

        return config_data

    @staticmethod
    def get_default_config() -> BridgeConfig:
        """
        Get the default configuration for development.

        This configuration uses:
        - Listener on localhost:1080
        - Local switch endpoints
        - 35 second response timeout

        Returns:
            BridgeConfig: Default development configuration
        """
        return BridgeConfig()
