"""end_voice_session: graceful hang-up."""
import logging

from ...handlers import BUILTIN_HANDLERS
from ...intents import END_AFTER_TURN, END_IMMEDIATE, EndSession
from ...response import ToolResponse

logger = logging.getLogger(__name__)


@BUILTIN_HANDLERS.register("end_voice_session")
async def end_voice_session(args, ctx):
    reason = args["reason"]
    final_message = (args.get("final_message") or "").strip() or None
    after = END_AFTER_TURN if final_message else END_IMMEDIATE

    logger.info(f"[{ctx.session_id}] Ending voice session ({reason}, after={after})")
    ctx.audit("end_voice_session", reason=reason, after=after)

    return ToolResponse.success(
        {
            "reason": reason,
            "session_ending": True,
            "final_message": final_message,
            "after": after,
        },
        intents=[EndSession(after=after, reason=reason, closing_message=final_message)],
    )
