from pydantic import BaseModel
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# Load .env file if it exists (before reading os.getenv)
_env_path = Path(__file__).resolve().parent.parent / ".env"
if _env_path.exists():
    with open(_env_path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip().strip('"').strip("'")
                # Only set if not already in environment (env vars take precedence)
                if key not in os.environ:
                    os.environ[key] = value


def _sanitize_ascii(val: str) -> str:
    """Strip non-ASCII characters from config values (prevents encoding errors)"""
    return val.encode('ascii', errors='ignore').decode('ascii').strip()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    # Environment
    env: str = os.getenv("FRAM_ENV", "development")
    production: bool = _flag("FRAM_PRODUCTION", "true" if os.getenv("FRAM_ENV") == "production" else "false")

    # Tool registry artifact (built with `python -m fram.tools.builder`)
    registry_path: str = os.getenv("FRAM_REGISTRY_PATH", "tool_registry.json")

    # Network
    http_host: str = os.getenv("FRAM_HTTP_HOST", "0.0.0.0")
    http_port: int = int(os.getenv("FRAM_HTTP_PORT", "8000"))
    ws_host: str = os.getenv("FRAM_WS_HOST", "0.0.0.0")
    ws_port: int = int(os.getenv("FRAM_WS_PORT", "9001"))

    # OpenAI (sanitized to prevent 'ascii' codec errors)
    openai_api_key: str = _sanitize_ascii(os.getenv("OPENAI_API_KEY", ""))
    openai_base_url: str = _sanitize_ascii(os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"))
    openai_chat_model: str = _sanitize_ascii(os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini"))
    openai_embedding_model: str = _sanitize_ascii(os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"))
    openai_realtime_url: str = _sanitize_ascii(os.getenv("OPENAI_REALTIME_URL", "wss://api.openai.com/v1/realtime"))
    openai_realtime_model: str = _sanitize_ascii(os.getenv("OPENAI_REALTIME_MODEL", "gpt-4o-realtime-preview"))
    openai_realtime_voice: str = _sanitize_ascii(os.getenv("OPENAI_REALTIME_VOICE", "alloy"))

    # Gemini Live
    gemini_api_key: str = _sanitize_ascii(os.getenv("GEMINI_API_KEY", ""))
    gemini_live_url: str = _sanitize_ascii(os.getenv(
        "GEMINI_LIVE_URL",
        "wss://generativelanguage.googleapis.com/ws/"
        "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent",
    ))
    gemini_live_model: str = _sanitize_ascii(os.getenv("GEMINI_LIVE_MODEL", "models/gemini-2.0-flash-live-001"))

    # "openai" or "gemini"
    voice_provider: str = os.getenv("FRAM_VOICE_PROVIDER", "openai").strip().lower()

    # Knowledge base (Qdrant)
    qdrant_url: str = _sanitize_ascii(os.getenv("QDRANT_URL", "http://localhost:6333"))
    qdrant_api_key: str = _sanitize_ascii(os.getenv("QDRANT_API_KEY", ""))
    qdrant_collection: str = _sanitize_ascii(os.getenv("QDRANT_COLLECTION", "knowledge_base"))

    # Web search
    perplexity_api_key: str = _sanitize_ascii(os.getenv("PERPLEXITY_API_KEY", ""))
    perplexity_model: str = _sanitize_ascii(os.getenv("PERPLEXITY_MODEL", "sonar"))

    # Contact form delivery
    contact_webhook_url: str = _sanitize_ascii(os.getenv("CONTACT_WEBHOOK_URL", ""))

    # Turn budgets
    voice_max_retrieval_calls: int = int(os.getenv("VOICE_MAX_RETRIEVAL_CALLS", "2"))
    voice_max_total_calls: int = int(os.getenv("VOICE_MAX_TOTAL_CALLS", "3"))
    text_max_retrieval_calls: int = int(os.getenv("TEXT_MAX_RETRIEVAL_CALLS", "5"))
    text_max_total_calls: int = int(os.getenv("TEXT_MAX_CHAIN_LENGTH", "5"))

    # Orchestration
    idempotency_cache_size: int = int(os.getenv("IDEMPOTENCY_CACHE_SIZE", "64"))
    confirmation_ttl_s: int = int(os.getenv("CONFIRMATION_TTL", "300"))
    text_retry_delay_s: float = float(os.getenv("TEXT_RETRY_DELAY", "0.3"))
    text_session_idle_s: int = int(os.getenv("TEXT_SESSION_IDLE", "1800"))
    max_history: int = int(os.getenv("MAX_HISTORY", "40"))

settings = Settings()

# Log config for debugging
_oai_key = '***' + settings.openai_api_key[-4:] if len(settings.openai_api_key) > 4 else 'EMPTY'
logger.info(f"Config: env={settings.env}, registry={settings.registry_path}")
logger.info(f"Config: chat → {settings.openai_base_url} (key={_oai_key}), model={settings.openai_chat_model}")
logger.info(f"Config: voice provider={settings.voice_provider}")
