"""
Bridge events.

Copyright (c) 2025 Firefly Software Solutions Inc.
Licensed under the Apache License, Version 2.0 (the "License");
"""

from .emitter import BridgeEvent, EventEmitter

__all__ = ["BridgeEvent", "EventEmitter"]
