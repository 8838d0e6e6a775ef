# Copyright (c) 2026 Ollama-Bridge Authors.
# This software is released under the GNU General Public License v3.0.
# See the LICENSE file in the project root for full license information.

"""
Ollama-Bridge: HTTP facade that relays Ollama code conversions as SSE.
"""

from .bridge import ConversionBridge, ConversionRequest
from .config import BridgeConfig, ConfigurationError, load_config

__all__ = [
    "BridgeConfig",
    "ConfigurationError",
    "ConversionBridge",
    "ConversionRequest",
    "load_config",
]

__version__ = "0.1.0"
