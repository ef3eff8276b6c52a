"""Monitor — evaluation loop, stack wiring and the JSON query API."""

from tradeops.monitor.factory import MonitorStack, create_monitor_stack
from tradeops.monitor.loop import MonitorLoop

__all__ = ["MonitorLoop", "MonitorStack", "create_monitor_stack"]
