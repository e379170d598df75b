"""REST API for the autonomous service.

Endpoints:
  GET  /health                   - Liveness
  GET  /status                   - Loop state + current plan tally
  GET  /plan                     - Current plan (404 when none)
  PUT  /plan/subtasks/{id}       - Update a subtask status
  POST /messages                 - Feed a message into the state window
"""

from __future__ import annotations

import logging
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from autonomy.events import Event, EventBus, EventType
from autonomy.planning import SubtaskStatus
from autonomy.service import AutonomousService
from autonomy.state import MessageBuffer

logger = logging.getLogger(__name__)

_VALID_STATUSES = [s.value for s in SubtaskStatus]


def create_app(
    service: AutonomousService,
    buffer: MessageBuffer | None = None,
    bus: EventBus | None = None,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    async def health(request: Request) -> JSONResponse:
        """GET /health - Liveness check."""
        return JSONResponse({"status": "ok", "running": service.running})

    async def status(request: Request) -> JSONResponse:
        """GET /status - Loop state and plan tally."""
        return JSONResponse(service.status())

    async def get_plan(request: Request) -> JSONResponse:
        """GET /plan - Current plan."""
        plan = service.current_plan
        if plan is None:
            return JSONResponse({"error": "No active plan"}, status_code=404)
        return JSONResponse(plan.model_dump(mode="json"))

    async def update_subtask(request: Request) -> JSONResponse:
        """PUT /plan/subtasks/{subtask_id} - Set a subtask's status."""
        subtask_id = request.path_params["subtask_id"]
        try:
            body = await request.json()
        except Exception:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        new_status = body.get("status") if isinstance(body, dict) else None
        if new_status not in _VALID_STATUSES:
            return JSONResponse(
                {"error": f"status must be one of {_VALID_STATUSES}"},
                status_code=400,
            )

        updated = await service.update_subtask_status(
            subtask_id, new_status, plan_id=body.get("plan_id")
        )
        if not updated:
            return JSONResponse({"error": "Plan or subtask not found"}, status_code=404)

        plan = service.current_plan
        subtask = plan.get_subtask(subtask_id) if plan else None
        return JSONResponse(
            {
                "plan_id": plan.id if plan else None,
                "subtask": subtask.model_dump(mode="json") if subtask else None,
            }
        )

    async def post_message(request: Request) -> JSONResponse:
        """POST /messages - Record a message for the next planning snapshot."""
        try:
            body = await request.json()
        except Exception:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        text = body.get("text") if isinstance(body, dict) else None
        if not text:
            return JSONResponse({"error": "Missing required field: text"}, status_code=400)
        sender = body.get("sender", "user")

        if bus is not None and bus.running:
            await bus.emit(
                Event(
                    type=EventType.MESSAGE_RECEIVED,
                    agent_id=service.diagnostics.agent_id,
                    data={"text": text, "sender": sender},
                )
            )
        elif buffer is not None:
            buffer.add(text, sender=sender)
        else:
            return JSONResponse({"error": "No state buffer configured"}, status_code=503)

        return JSONResponse({"accepted": True}, status_code=202)

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/status", status, methods=["GET"]),
        Route("/plan", get_plan, methods=["GET"]),
        Route("/plan/subtasks/{subtask_id}", update_subtask, methods=["PUT"]),
        Route("/messages", post_message, methods=["POST"]),
    ]

    return Starlette(routes=routes, lifespan=lifespan)
