"""SwapHub - item swap negotiation with real-time chat."""

__version__ = "0.1.0"
