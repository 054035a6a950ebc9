"""ignore_user: timeout for abusive users."""
import logging
import time
from datetime import datetime, timezone

from ...definition import Mode
from ...errors import ErrorType, ToolError
from ...handlers import BUILTIN_HANDLERS
from ...intents import END_AFTER_TURN, EndSession, RecordTimeout, SuppressTranscript
from ...response import ToolResponse

logger = logging.getLogger(__name__)


@BUILTIN_HANDLERS.register("ignore_user")
async def ignore_user(args, ctx):
    if not ctx.session.get("is_active", False):
        raise ToolError(ErrorType.SESSION_INACTIVE, "Cannot ignore user: session is not active")

    duration = args["duration_seconds"]
    farewell = args["farewell_message"]
    until = time.time() + duration

    delivered = False
    try:
        await ctx.send_message({
            "type": "timeout",
            "timeout_until": until,
            "duration_seconds": duration,
            "message": farewell,
        })
        if ctx.mode == Mode.VOICE:
            # Spoken by the provider as the closing turn
            delivered = True
        else:
            delivered = await ctx.send_message({"type": "message", "role": "assistant", "content": farewell})
    except Exception as e:
        # Timeout is still enforced server-side through RECORD_TIMEOUT
        logger.error(f"[{ctx.session_id}] Failed to notify client of timeout: {e}")

    until_iso = datetime.fromtimestamp(until, tz=timezone.utc).isoformat()
    logger.info(f"[{ctx.session_id}] User timed out for {duration}s until {until_iso}")
    ctx.audit("ignore_user", duration_seconds=duration, until=until_iso)

    return ToolResponse.success(
        {
            "timeout_until": until_iso,
            "duration_seconds": duration,
            "farewell_delivered": delivered,
            "farewell_message": farewell,
        },
        intents=[
            EndSession(after=END_AFTER_TURN, reason="ignored", closing_message=farewell),
            SuppressTranscript(value=True),
            RecordTimeout(until=until, duration_seconds=duration),
        ],
    )
