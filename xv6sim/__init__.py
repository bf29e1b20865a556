"""Simulation of a small teaching Unix kernel: paging, processes, locks, a shell parser and user tools."""

__version__ = "0.1.0"