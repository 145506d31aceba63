"""
FastAPI dependencies for the push endpoints.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from chatpush.services.notifier import PushNotifier


def get_notifier(request: Request) -> PushNotifier:
    """The delivery engine wired up at startup."""
    return request.app.state.notifier


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> int:
    """Caller identity as asserted by the upstream authenticator (raises 401 if absent)."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    try:
        return int(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user id",
        )


# Type aliases for route signatures
Notifier = Annotated[PushNotifier, Depends(get_notifier)]
CurrentUserId = Annotated[int, Depends(get_current_user_id)]
