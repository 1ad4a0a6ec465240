"""LegisMCP - client for the legislative-data tool server."""

__version__ = "0.1.0"
__license__ = "MIT"

from legismcp.client import McpClient, create_client
from legismcp.config import Config, load_config
from legismcp.telemetry import TelemetrySink, UsageLogger

__all__ = [
    "McpClient",
    "create_client",
    "Config",
    "load_config",
    "TelemetrySink",
    "UsageLogger",
    "__version__",
]
