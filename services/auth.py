import secrets

from fastapi import HTTPException, Request

from shared.config import config
from shared.logging_utils import setup_logging

logger = setup_logging("derivative-api")

INTERNAL_SECRET_HEADER = "X-Internal-Secret"
PUBLIC_PATHS = {"/health"}


def verify_internal_secret(request: Request) -> None:
    """
    Require the shared container secret on every route except health checks.

    Without a configured secret the check fails closed in production and is
    skipped elsewhere.
    """
    if request.url.path in PUBLIC_PATHS:
        return

    current_secret = config.get("container_auth_secret")
    if not current_secret:
        if config.is_production:
            logger.error("CONTAINER_AUTH_SECRET not configured in production")
            raise HTTPException(status_code=500, detail="Server misconfiguration: Auth secret not set")
        logger.warning("CONTAINER_AUTH_SECRET not set - allowing unauthenticated access (dev mode)")
        return

    provided = request.headers.get(INTERNAL_SECRET_HEADER) or ""
    if not secrets.compare_digest(provided.encode("utf-8"), str(current_secret).encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")
