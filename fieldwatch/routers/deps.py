from fastapi import Request

from ..core.session import DashboardSession


def get_session(request: Request) -> DashboardSession:
    return request.app.state.session
