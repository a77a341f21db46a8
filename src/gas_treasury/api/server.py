"""FastAPI REST API for the Kazar gas treasury.

Every action route accepts its parameters either in the query string (so it
can be driven from a browser) or in a JSON body.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from typing import Any, Awaitable, Callable

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse

from gas_treasury.chain.manager import GasManager, MintError, UserNotFound, to_wei
from gas_treasury.config import ConfigError
from gas_treasury.policy import InsufficientTreasury, NotMinter, TreasuryError, Unauthorized

logger = logging.getLogger("gas_treasury.api")

INDEX_HTML = """
<h2>Kazar Gas Treasury API</h2>
<ul>
  <li>Health: <code>/health</code></li>
  <li>Create user: <code>/api/user/create?username=player_123</code></li>
  <li>Get user: <code>/api/user/player_123</code></li>
  <li>Fund contract: <code>/api/contract/fund?amount=0.5</code></li>
  <li>Add minter: <code>/api/contract/add-minter?username=player_123</code></li>
  <li>Top up: <code>/api/contract/topup?usernames=player_123&amp;amount=0.0002&amp;threshold=0.0001</code></li>
  <li>Mint (auto ID): <code>/api/mint?username=player_123</code></li>
  <li>Mint (pick range): <code>/api/mint?username=player_123&amp;startId=1&amp;scanLimit=1000</code></li>
  <li>Check-in: <code>/api/checkin?username=player_123&amp;tokenId=42</code></li>
</ul>
"""


class MissingParam(ValueError):
    pass


def _error(status: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse({"ok": False, "error": error, **extra}, status_code=status)


async def _params(request: Request) -> dict:
    """Query parameters, then JSON body fields for keys the query lacks."""
    params: dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        try:
            body = await request.json()
        except (json.JSONDecodeError, ValueError):
            body = None
        if isinstance(body, dict):
            for key, value in body.items():
                params.setdefault(key, value)
    return params


def _require(params: dict, *keys: str) -> list[Any]:
    missing = [k for k in keys if params.get(k) in (None, "")]
    if missing:
        raise MissingParam(f"{' and '.join(missing)} required")
    return [params[k] for k in keys]


def _guarded(handler: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """Map domain errors onto HTTP responses with the ``{ok, error}`` envelope."""

    @functools.wraps(handler)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await handler(*args, **kwargs)
        except MissingParam as e:
            return _error(400, str(e))
        except UserNotFound:
            return _error(404, "user not found")
        except InsufficientTreasury as e:
            return _error(409, "insufficient treasury", detail=e.to_dict())
        except Unauthorized as e:
            return _error(403, str(e))
        except NotMinter as e:
            return _error(409, str(e))
        except MintError as e:
            return _error(500, str(e), detail=e.detail, debug=e.debug)
        except (TreasuryError, ConfigError) as e:
            return _error(500, str(e))
        except ValueError as e:
            return _error(400, str(e))
        except Exception as e:
            logger.exception(f"Unhandled error in {handler.__name__}")
            return _error(500, str(e))

    return wrapper


def create_app(manager: GasManager) -> FastAPI:
    """Build the API around an already-configured :class:`GasManager`."""
    app = FastAPI(title="Kazar Gas Treasury API")
    app.state.manager = manager

    @app.get("/")
    async def index():
        return HTMLResponse(INDEX_HTML)

    @app.get("/health")
    async def health():
        try:
            return await asyncio.to_thread(manager.health)
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            return _error(500, str(e))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @app.api_route("/api/user/create", methods=["GET", "POST"])
    @_guarded
    async def user_create(request: Request):
        (username,) = _require(await _params(request), "username")
        record, created = await asyncio.to_thread(manager.create_user, str(username))
        if not created:
            return {"ok": True, "message": "exists", "address": record.address}
        return {"ok": True, "address": record.address}

    @app.get("/api/user/{username}")
    @_guarded
    async def user_get(username: str):
        record = await asyncio.to_thread(manager.user, username)
        return {"ok": True, "address": record.address}

    # ------------------------------------------------------------------
    # Contract / treasury
    # ------------------------------------------------------------------

    @app.api_route("/api/contract/fund", methods=["GET", "POST"])
    @_guarded
    async def contract_fund(request: Request):
        (amount,) = _require(await _params(request), "amount")
        result = await asyncio.to_thread(manager.fund_contract, str(amount))
        return {"ok": True, **result}

    @app.api_route("/api/contract/add-minter", methods=["GET", "POST"])
    @_guarded
    async def contract_add_minter(request: Request):
        (username,) = _require(await _params(request), "username")
        record = await asyncio.to_thread(manager.user, str(username))
        added = await asyncio.to_thread(manager.ensure_minter, record.address)
        return {"ok": True, "minter": record.address, "added": added}

    @app.api_route("/api/contract/topup", methods=["GET", "POST"])
    @_guarded
    async def contract_topup(request: Request):
        params = await _params(request)
        usernames, amount, threshold = _require(params, "usernames", "amount", "threshold")
        if isinstance(usernames, str):
            usernames = [u.strip() for u in usernames.split(",") if u.strip()]
        result = await asyncio.to_thread(
            manager.top_up_users, list(usernames), to_wei(amount), to_wei(threshold)
        )
        return {"ok": True, **result.to_dict()}

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    @app.api_route("/api/mint", methods=["GET", "POST"])
    @_guarded
    async def mint(request: Request):
        params = await _params(request)
        (username,) = _require(params, "username")
        token_id = params.get("tokenId")
        return await asyncio.to_thread(
            manager.mint,
            str(username),
            int(token_id) if token_id not in (None, "") else None,
            int(params.get("startId") or 1),
            int(params.get("scanLimit") or 1000),
        )

    @app.api_route("/api/checkin", methods=["GET", "POST"])
    @_guarded
    async def checkin(request: Request):
        params = await _params(request)
        username, token_id = _require(params, "username", "tokenId")
        return await asyncio.to_thread(manager.check_in, str(username), int(token_id))

    return app


# ------------------------------------------------------------------
# Runner
# ------------------------------------------------------------------


def run_server(manager: GasManager, host: str = "127.0.0.1", port: int = 3000) -> None:
    app = create_app(manager)
    logger.info(f"API listening on http://{host}:{port}/")
    uvicorn.run(app, host=host, port=port, log_level="info")
