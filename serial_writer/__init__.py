"""Serialized-novel chapter generation: agents, memory, plot state and quality gate."""

__version__ = "0.1.0"
