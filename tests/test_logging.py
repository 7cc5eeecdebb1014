#!/usr/bin/env python3
"""
Unit tests for the bridge JSON log formatter and logging manager.
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

import io
import json
import logging
import sys

import pytest

from ilpmoja.config import BridgeConfig, LoggingConfig
from ilpmoja.core.envelope import MessageKind
from ilpmoja.logging import (
    BridgeJSONFormatter,
    BridgeLoggingManager,
    create_json_handler,
    get_bridge_logger,
    get_logging_manager,
    setup_bridge_logging,
    shutdown_bridge_logging,
)
from ilpmoja.logging.manager import BRIDGE_LOGGERS


def make_record(msg="hello", level=logging.INFO, **extra):
    record = logging.LogRecord("ilpmoja.test", level, "bridge.py", 42, msg, None, None, "handle")
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_levels():
    names = ["ilpmoja"] + BRIDGE_LOGGERS
    levels = {name: logging.getLogger(name).level for name in names}
    yield
    shutdown_bridge_logging()
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


class TestBridgeJSONFormatter:
    """Test BridgeJSONFormatter."""

    def test_basic_fields(self):
        data = json.loads(BridgeJSONFormatter().format(make_record()))

        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["logger"] == "ilpmoja.test"
        assert data["prefix"] == "ilpmoja::bridge::log"
        assert data["module"] == "bridge.py"
        assert data["function"] == "handle"
        assert data["line"] == 42

    def test_extra_fields_are_merged(self):
        record = make_record(transaction_id="T1", message_kind="TransferInitiate", empty="")
        data = json.loads(BridgeJSONFormatter().format(record))

        assert data["transaction_id"] == "T1"
        assert data["message_kind"] == "TransferInitiate"
        assert "empty" not in data

    def test_extra_fields_can_be_disabled(self):
        record = make_record(transaction_id="T1")
        data = json.loads(BridgeJSONFormatter(include_extra=False).format(record))

        assert "transaction_id" not in data

    def test_custom_prefix(self):
        data = json.loads(BridgeJSONFormatter(prefix="moja").format(make_record()))
        assert data["prefix"] == "moja"

    def test_exception_is_formatted(self):
        try:
            raise ValueError("bad packet")
        except ValueError:
            record = make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        data = json.loads(BridgeJSONFormatter().format(record))

        assert "ValueError: bad packet" in data["exception"]

    def test_packet_bytes_are_hex(self):
        data = json.loads(BridgeJSONFormatter().format(make_record(packet=b"\x0d\x21")))
        assert data["packet"] == "0d21"

    def test_enum_extra_uses_value(self):
        record = make_record(message_kind=MessageKind.QUOTE_ERROR)
        data = json.loads(BridgeJSONFormatter().format(record))
        assert data["message_kind"] == "QuoteError"

    def test_create_json_handler(self):
        stream = io.StringIO()
        handler = create_json_handler(logging.WARNING, stream)

        handler.handle(make_record(level=logging.WARNING))

        assert handler.level == logging.WARNING
        assert json.loads(stream.getvalue())["level"] == "WARNING"


class TestBridgeLoggingManager:
    """Test BridgeLoggingManager setup and teardown."""

    def test_defaults(self):
        manager = BridgeLoggingManager()

        assert manager.log_level == logging.INFO
        assert manager.format_type == "json"
        assert manager.output_file is None

    def test_reads_bridge_config(self):
        config = BridgeConfig(logging=LoggingConfig(level="DEBUG", format="text"))
        manager = BridgeLoggingManager(config)

        assert manager.log_level == logging.DEBUG
        assert manager.format_type == "text"

    def test_accepts_logging_config(self):
        manager = BridgeLoggingManager(LoggingConfig(level="ERROR"))
        assert manager.log_level == logging.ERROR

    def test_setup_and_shutdown(self, restore_levels):
        manager = BridgeLoggingManager(BridgeConfig())
        root = logging.getLogger("ilpmoja")
        before = len(root.handlers)

        manager.setup_logging()
        manager.setup_logging()

        assert manager.configured
        assert len(root.handlers) == before + 1
        assert logging.getLogger("ilpmoja.integration").level == logging.INFO

        manager.shutdown()

        assert not manager.configured
        assert len(root.handlers) == before

    def test_file_logging(self, tmp_path, restore_levels):
        log_file = tmp_path / "logs" / "bridge.log"
        config = BridgeConfig(logging=LoggingConfig(output_file=str(log_file)))
        manager = BridgeLoggingManager(config)

        manager.setup_logging()
        logging.getLogger("ilpmoja.integration.test").info(
            "round trip done", extra={"transaction_id": "T7"}
        )
        manager.shutdown()

        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        entry = next(line for line in lines if line["message"] == "round trip done")
        assert entry["transaction_id"] == "T7"


class TestModuleHelpers:
    def test_get_bridge_logger_namespaces(self):
        assert get_bridge_logger("custom").name == "ilpmoja.custom"
        assert get_bridge_logger("ilpmoja.engine").name == "ilpmoja.engine"

    def test_global_manager_lifecycle(self, restore_levels):
        setup_bridge_logging(BridgeConfig())
        manager = get_logging_manager()

        assert manager.configured
        assert get_logging_manager() is manager

        shutdown_bridge_logging()

        assert not manager.configured
        assert get_logging_manager() is not manager
