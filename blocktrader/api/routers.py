"""Paper-trading API routers — /paper-trading session endpoints.

No business logic.  Delegates to the ``SessionManager`` and maps session
errors to HTTP status codes.  The caller's identity comes from the
``X-User-Id`` header set by the upstream auth layer.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Header, HTTPException

from blocktrader.errors import (
    AuthorizationError,
    SessionNotActiveError,
    SessionNotFoundError,
    StrategyError,
    StrategyNotFoundError,
)
from blocktrader.market.provider import MarketDataProvider
from blocktrader.session_manager import SessionManager

logger = logging.getLogger("blocktrader.api")
router = APIRouter(prefix="/paper-trading")

# ── Shared state (set during app startup) ────────────────────────────────

_session_manager: Optional[SessionManager] = None  # Set via configure_routers()
_market_data_provider: Optional[MarketDataProvider] = None  # Set via configure_routers()


def configure_routers(
    session_manager: SessionManager,
    market_data_provider: Optional[MarketDataProvider] = None,
) -> None:
    """Inject dependencies from the application startup.

    Args:
        session_manager: The ``SessionManager`` serving every request.
        market_data_provider: Used by ``PUT /{id}/update`` when the request
            body carries no market data.
    """
    global _session_manager, _market_data_provider  # noqa: PLW0603
    _session_manager = session_manager
    _market_data_provider = market_data_provider


def _manager() -> SessionManager:
    if _session_manager is None:
        raise HTTPException(status_code=503, detail="Session manager not configured")
    return _session_manager


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return user_id


def _http_error(exc: Exception) -> HTTPException:
    """Translate a session-level error into an HTTP response."""
    if isinstance(exc, AuthorizationError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, SessionNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, SessionNotActiveError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


# ── Endpoints ────────────────────────────────────────────────────────────


@router.post("", status_code=201)
async def start_session(
    body: dict = Body(...),
    x_user_id: Optional[str] = Header(default=None),
):
    """Start a paper-trading session for a strategy."""
    user_id = _require_user(x_user_id)
    strategy_id = body.get("strategyId")
    if not strategy_id:
        raise HTTPException(status_code=400, detail="Strategy ID is required")
    try:
        session = _manager().create_session(user_id, str(strategy_id), body)
    except (StrategyNotFoundError, StrategyError, ValueError) as exc:
        raise HTTPException(
            status_code=400,
            detail=f"Failed to start paper trading session: {exc}",
        ) from exc
    except AuthorizationError as exc:
        raise _http_error(exc) from exc
    return session.to_dict()


@router.get("")
async def list_sessions(x_user_id: Optional[str] = Header(default=None)):
    """Return every session owned by the caller."""
    user_id = _require_user(x_user_id)
    return [s.to_dict() for s in _manager().list_sessions(user_id)]


@router.get("/{session_id}")
async def get_session(session_id: str, x_user_id: Optional[str] = Header(default=None)):
    """Return a single session."""
    user_id = _require_user(x_user_id)
    try:
        return _manager().get_session(session_id, user_id).to_dict()
    except (SessionNotFoundError, AuthorizationError) as exc:
        raise _http_error(exc) from exc


@router.put("/{session_id}/update")
async def update_session(
    session_id: str,
    body: Optional[dict] = Body(default=None),
    x_user_id: Optional[str] = Header(default=None),
):
    """Run one update cycle.

    The body is ``{"marketData": {SYMBOL: {price, timestamp, history}}}``.
    Without it, market data is fetched from the configured provider.
    """
    user_id = _require_user(x_user_id)
    manager = _manager()
    market_data = (body or {}).get("marketData")
    try:
        if market_data is not None:
            session = manager.update_session(session_id, market_data, user_id=user_id)
        elif _market_data_provider is not None:
            session = await manager.refresh_session(
                session_id, user_id, _market_data_provider,
            )
        else:
            raise HTTPException(status_code=400, detail="marketData is required")
    except (SessionNotFoundError, AuthorizationError, SessionNotActiveError) as exc:
        raise _http_error(exc) from exc
    return session.to_dict()


@router.put("/{session_id}/stop")
async def stop_session(session_id: str, x_user_id: Optional[str] = Header(default=None)):
    """Stop a session; it stays readable until deleted."""
    user_id = _require_user(x_user_id)
    try:
        return _manager().stop_session(session_id, user_id).to_dict()
    except (SessionNotFoundError, AuthorizationError) as exc:
        raise _http_error(exc) from exc


@router.delete("/{session_id}")
async def delete_session(session_id: str, x_user_id: Optional[str] = Header(default=None)):
    """Delete a session in any state."""
    user_id = _require_user(x_user_id)
    try:
        deleted = _manager().delete_session(session_id, user_id)
    except AuthorizationError as exc:
        raise _http_error(exc) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Paper trading session not found")
    logger.info("Session '%s' deleted via API.", session_id)
    return {"id": session_id}
