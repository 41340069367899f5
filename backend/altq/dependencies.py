"""
FastAPI dependencies for the process-wide services on ``app.state``.
"""

from fastapi import Depends, Request

from altq.services.queue_service import QueueService
from altq.services.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_queue_service(runtime: Runtime = Depends(get_runtime)) -> QueueService:
    return runtime.queue_service
