"""Tick trigger route for external schedulers (cron, uptime pingers).

Calls must carry TICK_SECRET. Without a configured secret the route refuses
every call unless TICK_ALLOW_UNAUTHENTICATED is set.
"""

import hmac

from fastapi import APIRouter, Header, HTTPException
from typing import Optional

from mission_engine import config
from mission_engine.tick import TickDriver

router = APIRouter(prefix="/api", tags=["tick"])


def _authorized(authorization: Optional[str], cron_secret: Optional[str]) -> bool:
    if not config.TICK_SECRET:
        return config.TICK_ALLOW_UNAUTHENTICATED
    supplied = cron_secret or ""
    if authorization and authorization.startswith("Bearer "):
        supplied = authorization[len("Bearer "):]
    return hmac.compare_digest(supplied, config.TICK_SECRET)


@router.post("/tick")
def run_tick(authorization: Optional[str] = Header(None),
             x_cron_secret: Optional[str] = Header(None)):
    if not _authorized(authorization, x_cron_secret):
        raise HTTPException(status_code=401, detail="Invalid tick secret")
    return TickDriver().run()
