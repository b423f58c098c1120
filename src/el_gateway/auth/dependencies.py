"""FastAPI dependencies: caller identity.

Players authenticate against the upstream game gateway, which forwards the
verified player id in `X-Player-Id` (and optionally the display name in
`X-Player-Name`). This service trusts those headers and never sees tokens.

Usage in any protected router:
    from src.el_gateway.auth.dependencies import get_current_player_id

    @router.get("/protected")
    async def protected(player_id: str = Depends(get_current_player_id)):
        ...
"""

from fastapi import Depends, Header

from config.settings import settings
from src.el_common.errors import NotLoggedInError, OperatorRequiredError


async def get_current_player_id(
    x_player_id: str | None = Header(None, alias="X-Player-Id"),
) -> str:
    """Return the caller's player id. Raises NotLoggedInError (401) if absent."""
    if x_player_id is None or not x_player_id.strip():
        raise NotLoggedInError()
    return x_player_id.strip()


async def get_current_player_name(
    x_player_name: str | None = Header(None, alias="X-Player-Name"),
) -> str | None:
    """Display name snapshot for offers and history rows; optional."""
    if x_player_name is None or not x_player_name.strip():
        return None
    return x_player_name.strip()


async def require_operator(
    player_id: str = Depends(get_current_player_id),
) -> str:
    """Verify the caller is one of the configured operator accounts.

    Raises HTTP 403 (AppError code 1002) otherwise. Protects maintenance
    endpoints such as the expiry sweep.
    """
    if player_id not in settings.TRADE_OPERATOR_IDS:
        raise OperatorRequiredError()
    return player_id
