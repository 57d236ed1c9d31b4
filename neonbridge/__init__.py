"""Public API surface for NeonBridge.

NeonBridge relays commands from a remote controller to a locally spawned
Claude Code CLI and streams its output back.
"""

from neonbridge.config import BridgeConfig, ConfigError, ConfigStore
from neonbridge.connection import ConnectionManager, ReconnectBackoff
from neonbridge.core import AgentResponse, Command, Heartbeat
from neonbridge.executor import ClaudeCodeExecutor, ExecuteOptions
from neonbridge.system_info import SystemInfoProvider

__version__ = "0.1.0"

__all__ = [
    "AgentResponse",
    "BridgeConfig",
    "ClaudeCodeExecutor",
    "Command",
    "ConfigError",
    "ConfigStore",
    "ConnectionManager",
    "ExecuteOptions",
    "Heartbeat",
    "ReconnectBackoff",
    "SystemInfoProvider",
    "__version__",
]
