"""POST /api/intent — text to actions without streaming."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from canvaspilot.models.requests import IntentRequest
from canvaspilot.models.responses import IntentResponse

router = APIRouter()


@router.post("/intent", response_model=IntentResponse)
async def intent(req: IntentRequest) -> IntentResponse:
    from canvaspilot.intent.strategy import get_strategy

    try:
        strategy = get_strategy(req.strategy)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    actions = strategy.parse(req.text)
    return IntentResponse(
        strategy=strategy.name,
        actions=actions,
        message=getattr(strategy, "last_message", ""),
    )
