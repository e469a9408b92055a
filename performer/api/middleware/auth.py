import hmac

from fastapi import HTTPException, Request, status


async def require_moderator(request: Request) -> None:
    """Dependency: require the moderator token for control endpoints.

    The token is sent as a header: X-Moderator-Token
    """
    config = request.app.state.config_manager.config
    expected = config.moderation.api_token

    # No token configured yet: the control surface is open
    if not expected:
        return

    token = request.headers.get("X-Moderator-Token")
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Moderator token required.",
        )

    if not hmac.compare_digest(token.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid moderator token.",
        )
