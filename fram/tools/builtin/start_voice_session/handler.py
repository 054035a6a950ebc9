"""start_voice_session: hand the conversation over to the voice channel."""
import logging

from ...handlers import BUILTIN_HANDLERS
from ...intents import SetPendingMessage
from ...response import ToolResponse

logger = logging.getLogger(__name__)


@BUILTIN_HANDLERS.register("start_voice_session")
async def start_voice_session(args, ctx):
    pending = (args.get("pending_request") or "").strip() or None
    logger.info(
        f"[{ctx.session_id}] Voice session requested"
        + (f" with pending request: {pending!r}" if pending else "")
    )
    await ctx.send_message({"type": "start_voice_session", "pending_request": pending})

    return ToolResponse.success(
        {
            "voice_session_requested": True,
            "pending_request": pending,
            "message": "Voice session will be activated by the client",
        },
        intents=[SetPendingMessage(message=pending)] if pending else [],
    )
