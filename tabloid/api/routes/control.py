"""Remote-control routes for the 3D gallery view.

Endpoints:
    POST /api/control/orbit   {dx, dy} in [-1, 1]
    POST /api/control/pan     {dy} in [-1, 1]
    POST /api/control/zoom    {zoom} in [0, 1], default 0.5
    POST /api/control/reset

Each broadcasts a control_* event. These are advisory UI messages: nothing
in the run core reads them.
"""

import math
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from tabloid.runs.event_bus import EventBus, get_event_bus
from tabloid.runs.schemas import EventType

router = APIRouter(prefix="/api/control", tags=["control"])


class ControlRequest(BaseModel):
    dx: Any = 0
    dy: Any = 0
    zoom: Any = 0.5


def clamp(value: Any, low: float, high: float, default: float) -> float:
    """Coerce to a finite float in [low, high]; junk becomes `default`."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return max(low, min(high, number))


@router.post("/orbit")
async def orbit(body: Optional[ControlRequest] = None, bus: EventBus = Depends(get_event_bus)):
    body = body or ControlRequest()
    bus.emit(EventType.CONTROL_ORBIT, dx=clamp(body.dx, -1, 1, 0), dy=clamp(body.dy, -1, 1, 0))
    return {"ok": True}


@router.post("/pan")
async def pan(body: Optional[ControlRequest] = None, bus: EventBus = Depends(get_event_bus)):
    body = body or ControlRequest()
    bus.emit(EventType.CONTROL_PAN, dy=clamp(body.dy, -1, 1, 0))
    return {"ok": True}


@router.post("/zoom")
async def zoom(body: Optional[ControlRequest] = None, bus: EventBus = Depends(get_event_bus)):
    body = body or ControlRequest()
    bus.emit(EventType.CONTROL_ZOOM, zoom=clamp(body.zoom, 0, 1, 0.5))
    return {"ok": True}


@router.post("/reset")
async def reset_view(bus: EventBus = Depends(get_event_bus)):
    bus.emit(EventType.CONTROL_RESET)
    return {"ok": True}
