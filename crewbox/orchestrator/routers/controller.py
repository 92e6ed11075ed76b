"""Sandbox controller endpoint (RPC-style)."""

from __future__ import annotations

from fastapi import APIRouter

from crewbox.orchestrator.deps import Controller
from crewbox.orchestrator.models.api import ControllerChat, ControllerReply

router = APIRouter(prefix="/controller", tags=["controller"])


@router.post("/chat", response_model=ControllerReply)
async def chat(body: ControllerChat, controller: Controller) -> ControllerReply:
    """Run one conversational turn; send ``history`` back to continue."""
    return await controller.chat(body.message, body.history, max_iterations=body.max_iterations)
