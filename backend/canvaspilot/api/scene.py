"""Scene endpoints — index a scene, build a budgeted context, execute actions."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from canvaspilot.dependencies import get_runner, get_settings
from canvaspilot.models.actions import ActionResult
from canvaspilot.models.requests import ContextRequest, ExecuteRequest, IndexRequest, ScenePayload
from canvaspilot.models.responses import ContextResponse, ExecuteResponse
from canvaspilot.models.scene import SceneSnapshot
from canvaspilot.scene.engine import InMemoryScene
from canvaspilot.streaming.runner import SessionRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scene")


def load_scene(payload: ScenePayload) -> InMemoryScene:
    return InMemoryScene.from_payload(payload.model_dump())


@router.post("/index", response_model=SceneSnapshot)
async def index(req: IndexRequest) -> SceneSnapshot:
    from canvaspilot.scene.indexer import index_scene

    return index_scene(load_scene(req.scene))


@router.post("/context", response_model=ContextResponse)
async def context(req: ContextRequest, settings=Depends(get_settings)) -> ContextResponse:
    from canvaspilot.llm.context_budget import build_context
    from canvaspilot.scene.indexer import index_scene, minimal_context

    snapshot = index_scene(load_scene(req.scene))
    pruned = build_context(snapshot, req.history, req.budget or settings.budget_config())
    return ContextResponse(
        snapshot=pruned.snapshot,
        messages=pruned.messages,
        total_tokens=pruned.total_tokens,
        was_pruned=pruned.was_pruned,
        minimal=minimal_context(pruned.snapshot),
    )


@router.post("/execute", response_model=ExecuteResponse)
async def execute(req: ExecuteRequest, runner: SessionRunner = Depends(get_runner)) -> ExecuteResponse:
    from canvaspilot.streaming.parser import describe_action

    scene = load_scene(req.scene)
    executor = runner.executor_for(scene)

    results: list[ActionResult] = []
    initial = executor.capture_selection()
    try:
        for i, raw in enumerate(req.actions):
            action = describe_action(raw)
            if action is None:
                results.append(ActionResult(action_id=f"invalid_{i}", type="unknown", success=False, message="Action has no type"))
                continue
            results.append(await executor.execute_in_batch(action, initial))
    finally:
        executor.restore_interactivity()

    logger.info("Executed %d action(s): %d ok", len(results), sum(r.success for r in results))
    return ExecuteResponse(results=results, scene=scene.to_payload())
