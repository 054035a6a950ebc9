"""leave_message: deliver a contact message through the configured webhook."""
import logging
import uuid

import httpx

from fram.config import settings

from ...errors import ErrorType, ToolError
from ...handlers import BUILTIN_HANDLERS
from ...response import ToolResponse
from ..classify import classify_http_error

logger = logging.getLogger(__name__)


def render_email(args: dict) -> dict:
    company = args.get("company")
    subject = f"New message from {args['name']}" + (f" ({company})" if company else "")
    lines = [f"Name: {args['name']}"]
    if company:
        lines.append(f"Company: {company}")
    lines.append(f"Email: {args['email']}")
    if args.get("callback_after"):
        lines.append(f"Contact after: {args['callback_after']}")
    lines += ["", "Message:", args["message"]]
    return {"subject": subject, "reply_to": args["email"], "text": "\n".join(lines)}


@BUILTIN_HANDLERS.register("leave_message")
async def leave_message(args, ctx):
    if not settings.contact_webhook_url:
        raise ToolError(ErrorType.PERMANENT, "Messaging is not configured on this server")

    reference = uuid.uuid4().hex[:12]
    payload = {"reference": reference, "session_id": ctx.session_id, **render_email(args)}

    try:
        async with httpx.AsyncClient(timeout=10) as client:
            resp = await client.post(settings.contact_webhook_url, json=payload)
            resp.raise_for_status()
    except (httpx.ReadTimeout, httpx.RemoteProtocolError) as e:
        # Request left this process; we can't tell whether it landed
        logger.error(f"[{ctx.session_id}] leave_message delivery unknown ({reference}): {e}")
        raise ToolError(
            ErrorType.TRANSIENT,
            "Message delivery could not be confirmed; it may already have been sent",
            retryable=False,
            partial_side_effects=True,
            details={"reference": reference},
        ) from e
    except httpx.HTTPError as e:
        logger.error(f"[{ctx.session_id}] leave_message failed ({reference}): {e}")
        raise classify_http_error(e, "contact webhook") from e

    logger.info(f"[{ctx.session_id}] Message {reference} delivered from {args['email']}")
    ctx.audit("leave_message", reference=reference)
    return ToolResponse.success({"delivered": True, "reference": reference})
