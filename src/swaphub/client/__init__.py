"""Client module - HTTP client, event listener and local state."""

from swaphub.client.api import APIError, SwapClient
from swaphub.client.listener import EventListener
from swaphub.client.reconciler import ClientReconciler

__all__ = [
    "APIError",
    "ClientReconciler",
    "EventListener",
    "SwapClient",
]
