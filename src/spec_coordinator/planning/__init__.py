"""Spec dependency planning."""

from spec_coordinator.planning.spec_graph import detect_cycles, order_specs

__all__ = ["detect_cycles", "order_specs"]
