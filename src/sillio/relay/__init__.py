from .assembler import InboundAssembler
from .engine import FatalGatewayError, RelayEngine
from .forwarder import ForwardError, WebhookForwarder
from .watchdog import HealthCheckWatchdog

__all__ = [
    "FatalGatewayError",
    "ForwardError",
    "HealthCheckWatchdog",
    "InboundAssembler",
    "RelayEngine",
    "WebhookForwarder",
]
