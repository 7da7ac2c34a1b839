"""
POST /mcp: method-dispatch wrapper over the mailbox and delivery operations.

Body:
    {"method": "<name>", "params": {"username": ..., "password": ..., ...}}

Methods:
  list_mailboxes   params: username, password
  get_emails       params: username, password, mailbox?, limit?
  get_email        params: username, password, uid, mailbox?
  search_emails    params: username, password, mailbox?, query?, from?, to?,
                   subject?, since?, before?, limit?
  send_email       params: to, subject, text?, html?, cc?, bcc?, from?,
                   username?, password?

Success answers {"result": {...}}; failures answer {"error": "..."} with the
same status codes as the REST endpoints.
"""

import logging
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError as PydanticValidationError

from app.auth import credentials_from_params
from app.config import Settings, get_settings
from app.errors import MailBridgeError, ValidationError, to_http_exception
from app.models.mail import McpRequest, OutboundMessage, SearchFilters
from app.services import mailbox as mailbox_service
from app.services.delivery import Delivery, get_delivery

logger = logging.getLogger(__name__)

router = APIRouter()

Handler = Callable[[Mapping[str, Any], Settings, Delivery], Awaitable[Dict[str, Any]]]


# ---------------------------------------------------------------------------
# Param helpers
# ---------------------------------------------------------------------------

def _int_param(
    params: Mapping[str, Any],
    name: str,
    default: Optional[int],
    maximum: Optional[int] = None,
) -> Optional[int]:
    value = params.get(name)
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name}: {value!r}")
    if number < 1 or (maximum is not None and number > maximum):
        raise ValidationError(f"Invalid {name}: {value!r}")
    return number


def _date_param(params: Mapping[str, Any], name: str) -> Optional[date]:
    value = params.get(name)
    if not value:
        return None
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {name} date (expected YYYY-MM-DD): {value!r}")


def _str_param(params: Mapping[str, Any], name: str, default: Optional[str] = None) -> Optional[str]:
    value = params.get(name)
    return str(value) if value not in (None, "") else default


# ---------------------------------------------------------------------------
# Method handlers
# ---------------------------------------------------------------------------

async def _list_mailboxes(params, settings, delivery):
    credentials = credentials_from_params(params)
    mailboxes = await mailbox_service.list_mailboxes(settings, credentials)
    return {
        "mailboxes": [m.model_dump(by_alias=True) for m in mailboxes],
        "count": len(mailboxes),
    }


async def _get_emails(params, settings, delivery):
    credentials = credentials_from_params(params)
    listing = await mailbox_service.get_recent_emails(
        settings,
        credentials,
        mailbox=_str_param(params, "mailbox", mailbox_service.DEFAULT_MAILBOX),
        limit=_int_param(
            params, "limit", mailbox_service.DEFAULT_RECENT_LIMIT, mailbox_service.MAX_LIMIT
        ),
    )
    return listing.model_dump(by_alias=True, mode="json")


async def _get_email(params, settings, delivery):
    credentials = credentials_from_params(params)
    uid = _int_param(params, "uid", None)
    if uid is None:
        raise ValidationError("Missing required field: uid")
    email = await mailbox_service.get_email(
        settings,
        credentials,
        uid,
        mailbox=_str_param(params, "mailbox", mailbox_service.DEFAULT_MAILBOX),
    )
    return {"email": email.model_dump(by_alias=True, mode="json")}


async def _search_emails(params, settings, delivery):
    credentials = credentials_from_params(params)
    filters = SearchFilters(
        query=_str_param(params, "query"),
        from_address=_str_param(params, "from"),
        to_address=_str_param(params, "to"),
        subject=_str_param(params, "subject"),
        since=_date_param(params, "since"),
        before=_date_param(params, "before"),
    )
    listing = await mailbox_service.search_emails(
        settings,
        credentials,
        filters,
        mailbox=_str_param(params, "mailbox", mailbox_service.DEFAULT_MAILBOX),
        limit=_int_param(
            params, "limit", mailbox_service.DEFAULT_SEARCH_LIMIT, mailbox_service.MAX_LIMIT
        ),
    )
    return listing.model_dump(by_alias=True, mode="json")


async def _send_email(params, settings, delivery):
    try:
        message = OutboundMessage.model_validate(dict(params))
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid send_email params: {exc.errors()[0]['msg']}") from exc
    result = await delivery.send(message)
    return {"success": True, "messageId": result.message_id}


_METHODS: Dict[str, Handler] = {
    "list_mailboxes": _list_mailboxes,
    "get_emails": _get_emails,
    "get_email": _get_email,
    "search_emails": _search_emails,
    "send_email": _send_email,
}


@router.post("/mcp")
async def mcp(
    request: McpRequest,
    settings: Settings = Depends(get_settings),
    delivery: Delivery = Depends(get_delivery),
):
    """Dispatch an MCP-style method call."""
    if not request.method:
        raise HTTPException(status_code=400, detail="Missing method")

    handler = _METHODS.get(request.method)
    if handler is None:
        raise HTTPException(status_code=400, detail=f"Unknown method: {request.method}")

    try:
        result = await handler(request.params, settings, delivery)
    except MailBridgeError as exc:
        if exc.status_code >= 500:
            logger.error(f"MCP error ({request.method}): {exc.message}")
        raise to_http_exception(exc) from exc

    return {"result": result}
