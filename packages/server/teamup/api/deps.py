"""Shared FastAPI dependencies for lifecycle-scoped components."""

from fastapi import Request

from teamup.core.fanout import Fanout
from teamup.core.presence import PresenceBroadcaster


def get_fanout(request: Request) -> Fanout:
    return request.app.state.fanout


def get_presence(request: Request) -> PresenceBroadcaster:
    return request.app.state.presence
