"""Message relay: provider routing, delivery orchestration and conversation threading."""

__version__ = "0.1.0"
