"""
Status API routes.
"""

from fastapi import APIRouter, HTTPException, Request
from typing import Any, Dict, List

router = APIRouter()


@router.get("/status")
async def get_status(request: Request) -> Dict[str, Any]:
    """Current triggers with next-fire times, known vulnerabilities and counters."""
    status_fn = request.app.state.status_fn
    try:
        return status_fn()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/triggers")
async def list_triggers(request: Request) -> List[Dict[str, Any]]:
    """Only the trigger list, without touching the database."""
    return request.app.state.triggers_fn()


@router.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}
