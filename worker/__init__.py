"""Asynchronous synopsis refresh on a dramatiq broker."""

from .synopsis_worker import (
    SYNOPSIS_QUEUE,
    SynopsisRefresher,
    create_broker,
    create_synopsis_actor,
    create_worker,
)

__all__ = [
    "SYNOPSIS_QUEUE",
    "SynopsisRefresher",
    "create_broker",
    "create_synopsis_actor",
    "create_worker",
]
