import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from fairflip.config import settings


def require_cron_secret(authorization: Optional[str] = Header(default=None)):
    """
    Guard for the processor and admin routes: `Authorization: Bearer <cron_secret>`.
    An empty cron_secret leaves the routes open (local development).
    """
    secret = settings.security.cron_secret
    if not secret:
        return
    expected = f"Bearer {secret}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
