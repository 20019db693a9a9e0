import logging
import os

from fastapi import Header, HTTPException, status

logger = logging.getLogger("scheduler.security")


def _is_dev_env() -> bool:
    return os.getenv("ENV", "dev").lower() in {"dev", "development", "local"}


def require_admin_api_key(
    x_admin_key: str | None = Header(default=None, alias="X-Admin-Key"),
) -> None:
    configured_key = os.getenv("ADMIN_API_KEY", "")

    if not configured_key:
        if _is_dev_env():
            logger.warning(
                "ADMIN_API_KEY is not set in dev; allowing host request without key."
            )
            return
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "ADMIN_AUTH_NOT_CONFIGURED",
                "human_message": "Admin API key is not configured.",
            },
        )

    if x_admin_key != configured_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "INVALID_ADMIN_API_KEY",
                "human_message": "Invalid admin API key.",
            },
        )
