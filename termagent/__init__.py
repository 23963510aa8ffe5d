"""Terminal coding agent core: provider streaming, tool dispatch and the agent loop."""

__version__ = "0.1.0"
