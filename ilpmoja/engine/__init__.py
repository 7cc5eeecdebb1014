"""
Plugin engine for ilpmoja.

Copyright (c) 2025 Firefly Software Solutions Inc.
Licensed under the Apache License, Version 2.0 (the "License");
"""

from .plugin import MojaHttpPlugin, ReadyState

__all__ = ["MojaHttpPlugin", "ReadyState"]
