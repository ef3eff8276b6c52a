"""Synthetic event source for drills and load tests."""

from tradeops.sim.driver import SimulationDriver
from tradeops.sim.simulator import MarketSimulator

__all__ = ["MarketSimulator", "SimulationDriver"]
