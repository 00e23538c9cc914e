from fastapi import Request

from medremind.scheduling.poller import PollerRegistry


def get_clock(request: Request):
    return request.app.state.clock


def get_pollers(request: Request) -> PollerRegistry:
    return request.app.state.pollers
