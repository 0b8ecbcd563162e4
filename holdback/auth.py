# holdback/auth.py - PIN gate

import hmac
from typing import Optional

from fastapi import Cookie, Header, HTTPException

from holdback.config import settings


def check_pin(candidate: Optional[str], pin: Optional[str] = None) -> bool:
    """An empty configured PIN leaves the dashboard open"""
    expected = settings.DASHBOARD_PIN if pin is None else pin
    if not expected:
        return True
    if candidate is None:
        return False
    return hmac.compare_digest(candidate.encode(), expected.encode())


async def require_pin(
    x_dashboard_pin: Optional[str] = Header(None),
    dashboard_pin: Optional[str] = Cookie(None),
):
    if not check_pin(x_dashboard_pin or dashboard_pin):
        raise HTTPException(status_code=401, detail="Incorrect PIN")
