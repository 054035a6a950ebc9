"""query_tool_memory: let the model look back at its own earlier tool calls."""
import logging

from ...errors import ErrorType, ToolError
from ...handlers import BUILTIN_HANDLERS
from ...memory import summarize_args
from ...response import ToolResponse

logger = logging.getLogger(__name__)

NOTE = "Use get_full_response_for with a call_id to retrieve a full result. Only the 10 most recent calls keep one."


@BUILTIN_HANDLERS.register("query_tool_memory")
async def query_tool_memory(args, ctx):
    memory = ctx.memory
    if memory is None:
        raise ToolError(ErrorType.INTERNAL, "Tool memory is not available in this session")

    call_id = args.get("get_full_response_for")
    if call_id:
        full = memory.full_response(call_id)
        if full is None:
            raise ToolError(
                ErrorType.NOT_FOUND,
                f"No full response available for call_id: {call_id}.",
                details={"requested_call_id": call_id, "available_call_ids": memory.call_ids()},
            )
        return ToolResponse.success({"call_id": call_id, "full_response": full})

    tool_id = args.get("filter_tool")
    records = memory.query(
        tool_id=tool_id,
        time_range=args.get("filter_time_range", "all"),
        include_errors=args.get("include_errors", False),
    )
    logger.info(f"[{ctx.session_id}] query_tool_memory: {len(records)} of {len(memory)} calls")

    if not records:
        return ToolResponse.success({
            "tool_calls": [],
            "count": 0,
            "note": f"No {tool_id} calls found in this conversation." if tool_id
            else "No tool calls found matching your filters.",
        })
    return ToolResponse.success({
        "tool_calls": [
            {
                "call_id": r.call_id,
                "tool": r.tool_id,
                "args_summary": summarize_args(r.args),
                "turn": r.turn,
                "summary": r.summary,
                "success": r.ok,
                "duration_ms": r.duration_ms,
            }
            for r in records
        ],
        "count": len(records),
        "note": NOTE,
    })
