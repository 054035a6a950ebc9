"""Import builtin tool handlers to bind them into BUILTIN_HANDLERS."""
from . import kb_search
from . import kb_get
from . import web_search
from . import start_voice_session
from . import end_voice_session
from . import ignore_user
from . import leave_message
from . import query_tool_memory
