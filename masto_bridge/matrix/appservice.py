#!/usr/bin/env python3
"""
Application service HTTP API - endpoints the homeserver pushes to.

    PUT /_matrix/app/v1/transactions/{txn_id}   new events for the bridge
    GET /_matrix/app/v1/users/{user_id}         does this bridge user exist?
    GET /_matrix/app/v1/rooms/{alias}           room alias query (unsupported)
    POST /_matrix/app/v1/ping                   homeserver connectivity check

Every request must carry the registration's hs_token. Transactions are
acknowledged immediately; their events are handled in the background.
"""
import asyncio
import hmac
import logging
import re
from collections import OrderedDict
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse

from masto_bridge.matrix.registration import Registration

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], Awaitable[Any]]
UserQueryHandler = Callable[[str], Awaitable[Any]]

MAX_REMEMBERED_TRANSACTIONS = 1000


class TransactionLog:
    """Bounded memory of transaction ids already handled.

    The homeserver retries a transaction until it gets a 200, so the same
    txn_id can arrive more than once.
    """

    def __init__(self, max_size: int = MAX_REMEMBERED_TRANSACTIONS):
        self.max_size = max_size
        self._seen: "OrderedDict[str, None]" = OrderedDict()

    def __contains__(self, txn_id: str) -> bool:
        return txn_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def add(self, txn_id: str) -> None:
        self._seen[txn_id] = None
        self._seen.move_to_end(txn_id)
        while len(self._seen) > self.max_size:
            self._seen.popitem(last=False)


def _error(status_code: int, errcode: str, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"errcode": errcode, "error": error})


def create_appservice_app(
    registration: Registration,
    on_event: EventHandler,
    on_user_query: Optional[UserQueryHandler] = None,
    transactions: Optional[TransactionLog] = None,
) -> FastAPI:
    app = FastAPI(
        title="Mastodon Bridge Appservice",
        description="Matrix application service API for the Mastodon bridge",
        version="1.0.0",
    )
    seen = transactions if transactions is not None else TransactionLog()
    user_patterns = [re.compile(regex) for regex in registration.user_regexes]

    def check_token(request: Request) -> Optional[JSONResponse]:
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            token = auth[len("Bearer "):]
        else:
            # Pre-v1.4 homeservers send the token as a query parameter
            token = request.query_params.get("access_token", "")
        if not token:
            return _error(401, "M_UNAUTHORIZED", "Missing homeserver token")
        if not hmac.compare_digest(token, registration.hs_token):
            logger.warning("Rejected request with invalid homeserver token", extra={"path": request.url.path})
            return _error(403, "M_FORBIDDEN", "Invalid homeserver token")
        return None

    async def handle_events(txn_id: str, events: List[Dict[str, Any]]) -> None:
        results = await asyncio.gather(*(on_event(event) for event in events), return_exceptions=True)
        for event, result in zip(events, results):
            if isinstance(result, Exception):
                logger.error("Event handler failed", extra={
                    "txn_id": txn_id,
                    "event_id": event.get("event_id"),
                    "error": str(result),
                })

    async def put_transaction(txn_id: str, request: Request, background_tasks: BackgroundTasks):
        denied = check_token(request)
        if denied:
            return denied

        try:
            body = await request.json()
        except ValueError:
            return _error(400, "M_NOT_JSON", "Request body is not JSON")

        if txn_id in seen:
            logger.debug("Duplicate transaction ignored", extra={"txn_id": txn_id})
            return {}

        events = body.get("events") if isinstance(body, dict) else None
        if not isinstance(events, list):
            return _error(400, "M_BAD_JSON", "Transaction has no events list")

        seen.add(txn_id)
        logger.debug("Received transaction", extra={"txn_id": txn_id, "event_count": len(events)})
        if events:
            background_tasks.add_task(handle_events, txn_id, events)
        return {}

    async def query_user(user_id: str, request: Request):
        denied = check_token(request)
        if denied:
            return denied

        if not any(pattern.match(user_id) for pattern in user_patterns):
            return _error(404, "M_NOT_FOUND", "User is not in the bridge namespace")

        logger.info("onUserQuery", extra={"user_id": user_id})
        if on_user_query is not None:
            try:
                await on_user_query(user_id)
            except Exception as e:
                logger.error("Failed to provision queried user", extra={"user_id": user_id, "error": str(e)})
                return _error(404, "M_NOT_FOUND", "User could not be provisioned")
        return {}

    async def query_room(alias: str, request: Request):
        denied = check_token(request)
        if denied:
            return denied
        return _error(404, "M_NOT_FOUND", "This bridge does not provide room aliases")

    async def ping(request: Request):
        denied = check_token(request)
        if denied:
            return denied
        return {}

    async def health_check():
        return {
            "status": "healthy",
            "transactions_seen": len(seen),
            "timestamp": datetime.now().isoformat(),
        }

    for prefix in ("/_matrix/app/v1", ""):
        app.add_api_route(f"{prefix}/transactions/{{txn_id}}", put_transaction, methods=["PUT"])
        app.add_api_route(f"{prefix}/users/{{user_id}}", query_user, methods=["GET"])
        app.add_api_route(f"{prefix}/rooms/{{alias}}", query_room, methods=["GET"])
    app.add_api_route("/_matrix/app/v1/ping", ping, methods=["POST"])
    app.add_api_route("/health", health_check, methods=["GET"])

    return app
