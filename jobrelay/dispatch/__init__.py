"""
Dispatch module.
Contains the listener registry, pending queue, dispatcher, expiry
supervisor and cancellation channel.
"""

from jobrelay.dispatch.cancellation import CancellationChannel
from jobrelay.dispatch.dispatcher import Delivery, Dispatcher, describe_error
from jobrelay.dispatch.expiry import ExpirySupervisor
from jobrelay.dispatch.queue import PendingQueue
from jobrelay.dispatch.registry import Handler, Listener, ListenerRegistry

__all__ = [
    "Dispatcher",
    "Delivery",
    "describe_error",
    "ListenerRegistry",
    "Listener",
    "Handler",
    "PendingQueue",
    "ExpirySupervisor",
    "CancellationChannel",
]
