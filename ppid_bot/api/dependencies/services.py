"""
Dependency accessors for the process-wide service container.
"""
from fastapi import Depends, Request

from ppid_bot.domain.container import ServiceContainer
from ppid_bot.domain.services.operator_service import OperatorService


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_operator_service(container: ServiceContainer = Depends(get_container)) -> OperatorService:
    return container.operator
