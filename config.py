"""
Configuration module for the orchestration core.
Handles environment variables, provider and model specifications, and runtime settings.
"""

import os
from dataclasses import dataclass
from typing import List, Dict, Any, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class AWSConfig:
    """AWS-specific configuration (Bedrock provider)"""
    region: str = os.getenv("AWS_REGION", "us-east-1")
    access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    session_token: str = os.getenv("AWS_SESSION_TOKEN", "")
    profile_name: str = os.getenv("AWS_PROFILE", "")

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class ProviderSettings:
    """Provider selection and credentials"""
    default_provider: str = os.getenv("DEFAULT_PROVIDER", "gemini")
    default_model: str = os.getenv("DEFAULT_MODEL", "")
    gemini_api_key: str = os.getenv("GEMINI_API_KEY", "")
    groq_api_key: str = os.getenv("GROQ_API_KEY", "")
    grok_api_key: str = os.getenv("XAI_API_KEY", "")
    moonshot_api_key: str = os.getenv("MOONSHOT_API_KEY", "")
    deepseek_api_key: str = os.getenv("DEEPSEEK_API_KEY", "")
    anthropic_api_key: str = os.getenv("ANTHROPIC_API_KEY", "")
    ollama_host: str = os.getenv("OLLAMA_HOST", "http://127.0.0.1:11434")
    # Moonshot: describe tools in the system prompt and parse TOOL_CALL lines
    moonshot_inline_tools: bool = os.getenv("MOONSHOT_INLINE_TOOLS", "false").lower() == "true"

    def api_key_for(self, provider: str) -> str:
        return getattr(self, f"{provider}_api_key", "") or ""


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "Polycodex"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "polycodex.log")
    working_directory: str = os.getenv("WORKING_DIRECTORY", ".")
    max_loop_iterations: int = int(os.getenv("MAX_LOOP_ITERATIONS", "30"))
    max_continuations: int = int(os.getenv("MAX_CONTINUATIONS", "10"))
    # Approval gate polling
    approval_poll_interval: float = float(os.getenv("APPROVAL_POLL_INTERVAL", "1"))
    approval_timeout: float = float(os.getenv("APPROVAL_TIMEOUT", "300"))
    # Stream recovery settings
    stream_max_retries: int = int(os.getenv("STREAM_MAX_RETRIES", "3"))
    stream_retry_backoff: float = float(os.getenv("STREAM_RETRY_BACKOFF", "2"))
    command_timeout: int = int(os.getenv("COMMAND_TIMEOUT", "300"))
    # Heuristic matcher for "Call `tool` with {...}" prose; off unless asked for
    reassembler_prose_calls: bool = os.getenv("REASSEMBLER_PROSE_CALLS", "false").lower() == "true"


# ============================================================
# Provider Specifications
# deadline_seconds is the hard client-side limit for one streamed turn.
# nudge_on_text_stop: a turn that ends with text only (no tool calls)
# gets a "continue" user turn instead of ending the session.
# ============================================================
PROVIDERS: List[Dict[str, Any]] = [
    {
        "id": "gemini",
        "name": "Google Gemini",
        "description": "Native Gemini API with 1M+ context. Best for complex tasks. RECOMMENDED.",
        "isFree": True,
        "base_url": "https://generativelanguage.googleapis.com/v1beta",
        "default_model": "gemini-2.5-flash",
        "deadline_seconds": 180,
        "nudge_on_text_stop": False,
        "requires_key": True,
    },
    {
        "id": "grok",
        "name": "Grok (xAI)",
        "description": "xAI Grok models with better rate limits than Groq. OpenAI-compatible API.",
        "isFree": False,
        "base_url": "https://api.x.ai/v1/",
        "default_model": "grok-4.1-fast",
        "deadline_seconds": 60,
        "nudge_on_text_stop": True,
        "requires_key": True,
    },
    {
        "id": "groq",
        "name": "Groq",
        "description": "Fast inference with Llama 3.3 70B (128K context). Free tier available.",
        "isFree": True,
        "base_url": "https://api.groq.com/openai/v1/",
        "default_model": "llama-3.3-70b-versatile",
        "deadline_seconds": 60,
        "nudge_on_text_stop": True,
        "requires_key": True,
    },
    {
        "id": "moonshot",
        "name": "Moonshot",
        "description": "Kimi AI with 128K context. China-based servers, may be slower.",
        "isFree": False,
        "base_url": "https://api.moonshot.cn/v1/",
        "default_model": "moonshot-v1-128k",
        "deadline_seconds": 60,
        "nudge_on_text_stop": False,
        "requires_key": True,
        "retry_server_errors": True,
    },
    {
        "id": "deepseek",
        "name": "DeepSeek",
        "description": "DeepSeek chat and reasoning models. OpenAI-compatible API.",
        "isFree": False,
        "base_url": "https://api.deepseek.com/v1/",
        "default_model": "deepseek-chat",
        "deadline_seconds": 60,
        "nudge_on_text_stop": False,
        "requires_key": True,
    },
    {
        "id": "anthropic",
        "name": "Anthropic",
        "description": "Claude models through the Anthropic Messages API.",
        "isFree": False,
        "base_url": "https://api.anthropic.com/v1/",
        "default_model": "claude-3-5-sonnet-20240620",
        "deadline_seconds": 180,
        "nudge_on_text_stop": False,
        "requires_key": True,
    },
    {
        "id": "ollama",
        "name": "Ollama (Local)",
        "description": "Run models locally for privacy and offline use. No API keys required.",
        "isFree": True,
        "base_url": "",  # from ProviderSettings.ollama_host
        "default_model": "llama3.1",
        "deadline_seconds": 300,
        "nudge_on_text_stop": False,
        "requires_key": False,
    },
    {
        "id": "bedrock",
        "name": "Amazon Bedrock",
        "description": "Claude on Amazon Bedrock using AWS credentials.",
        "isFree": False,
        "base_url": "",
        "default_model": "us.anthropic.claude-sonnet-4-5-20250929-v1:0",
        "deadline_seconds": 180,
        "nudge_on_text_stop": False,
        "requires_key": False,
    },
]


# ============================================================
# Model Specifications
# max_output_tokens is the ceiling a request's max_tokens is clamped to.
# ============================================================
AVAILABLE_MODELS: List[Dict[str, Any]] = [
    # ----- Gemini -----
    {"id": "gemini-3-flash-preview", "name": "Gemini 3 Flash Preview", "provider": "gemini",
     "desc": "State-of-the-art, Pro-grade reasoning at Flash speed", "limits": "5 RPM (free tier)",
     "max_output_tokens": 65536, "thinking_budget": 8192},
    {"id": "gemini-2.5-flash", "name": "Gemini 2.5 Flash", "provider": "gemini",
     "desc": "Fast, 1M context, 65K output - RECOMMENDED", "limits": "15 RPM, 1M RPD (free)",
     "max_output_tokens": 65536, "recommended": True},
    {"id": "gemini-2.5-pro", "name": "Gemini 2.5 Pro", "provider": "gemini",
     "desc": "Advanced reasoning, 1M context (slower)", "limits": "2 RPM, 50 RPD (free)",
     "max_output_tokens": 65536},
    {"id": "gemini-2.5-flash-lite", "name": "Gemini 2.5 Flash Lite", "provider": "gemini",
     "desc": "Most efficient, 1M context", "limits": "15 RPM (free)",
     "max_output_tokens": 65536},
    # ----- Grok -----
    {"id": "grok-4.1-fast", "name": "Grok 4.1 Fast", "provider": "grok",
     "desc": "Optimized for tool-calling and agentic workflows, 2M token context",
     "limits": "Better rate limits than Groq, optimized for agents",
     "max_output_tokens": 32768, "recommended": True},
    {"id": "grok-4.1", "name": "Grok 4.1", "provider": "grok",
     "desc": "Latest Grok model with enhanced reasoning and multimodal understanding",
     "limits": "Better rate limits than Groq", "max_output_tokens": 32768},
    {"id": "grok-beta", "name": "Grok Beta", "provider": "grok",
     "desc": "Beta model with extended context (legacy)", "limits": "Better rate limits than Groq",
     "max_output_tokens": 32768},
    # ----- Groq -----
    {"id": "llama-3.3-70b-versatile", "name": "Llama 3.3 70B Versatile", "provider": "groq",
     "desc": "128K context, excellent reasoning", "limits": "Fast, free tier available",
     "max_output_tokens": 32768, "recommended": True},
    {"id": "llama-3.1-8b-instant", "name": "Llama 3.1 8B Instant", "provider": "groq",
     "desc": "128K context, very fast", "limits": "Free tier available",
     "max_output_tokens": 32768},
    {"id": "moonshotai/kimi-k2-instruct", "name": "Kimi K2 Instruct", "provider": "groq",
     "desc": "131K context, 16K output - low rate limit", "limits": "Rate limited on free tier",
     "max_output_tokens": 16384},
    # ----- Moonshot -----
    {"id": "moonshot-v1-8k", "name": "Moonshot V1 8K", "provider": "moonshot",
     "desc": "8K context window, balanced performance", "limits": "Requires API key",
     "max_output_tokens": 131072},
    {"id": "moonshot-v1-32k", "name": "Moonshot V1 32K", "provider": "moonshot",
     "desc": "32K context window", "limits": "Requires API key",
     "max_output_tokens": 131072},
    {"id": "moonshot-v1-128k", "name": "Moonshot V1 128K", "provider": "moonshot",
     "desc": "128K context window - RECOMMENDED", "limits": "Requires API key",
     "max_output_tokens": 131072, "recommended": True},
    # ----- DeepSeek -----
    {"id": "deepseek-chat", "name": "DeepSeek Chat", "provider": "deepseek",
     "desc": "General chat and coding, 128K context", "limits": "Requires API key",
     "max_output_tokens": 131072, "recommended": True},
    {"id": "deepseek-coder", "name": "DeepSeek Coder", "provider": "deepseek",
     "desc": "Code-specialized model", "limits": "Requires API key",
     "max_output_tokens": 131072},
    {"id": "deepseek-reasoner", "name": "DeepSeek Reasoner", "provider": "deepseek",
     "desc": "Reasoning model with chain-of-thought", "limits": "Requires API key",
     "max_output_tokens": 131072},
    # ----- Anthropic -----
    {"id": "claude-3-5-sonnet-20240620", "name": "Claude 3.5 Sonnet", "provider": "anthropic",
     "desc": "Highest level of intelligence and capability", "limits": "Requires Anthropic API Key",
     "max_output_tokens": 8192, "recommended": True},
    {"id": "claude-3-opus-20240229", "name": "Claude 3 Opus", "provider": "anthropic",
     "desc": "Powerful model for highly complex tasks", "limits": "Requires Anthropic API Key",
     "max_output_tokens": 4096},
    {"id": "claude-3-haiku-20240307", "name": "Claude 3 Haiku", "provider": "anthropic",
     "desc": "Fastest and most compact model", "limits": "Requires Anthropic API Key",
     "max_output_tokens": 4096},
    # ----- Bedrock -----
    {"id": "us.anthropic.claude-sonnet-4-5-20250929-v1:0", "name": "Claude Sonnet 4.5 (Bedrock)",
     "provider": "bedrock", "desc": "Best for coding and complex agents, 200K ctx, 64K output",
     "limits": "AWS account quotas", "max_output_tokens": 64000, "recommended": True},
    {"id": "us.anthropic.claude-haiku-4-5-20251001-v1:0", "name": "Claude Haiku 4.5 (Bedrock)",
     "provider": "bedrock", "desc": "Fastest with near-frontier intelligence, 200K ctx, 64K output",
     "limits": "AWS account quotas", "max_output_tokens": 64000},
]

# Provider-wide ceilings for models missing from AVAILABLE_MODELS
_PROVIDER_OUTPUT_CEILINGS: Dict[str, int] = {
    "gemini": 65536,
    "deepseek": 131072,
    "groq": 32768,
    "moonshot": 131072,
    "grok": 32768,
    "anthropic": 4096,
    "ollama": 8192,
    "bedrock": 64000,
}
_DEFAULT_OUTPUT_CEILING = 2048


# Create global config instances
aws_config = AWSConfig()
provider_settings = ProviderSettings()
app_config = AppConfig()


def get_provider_config(provider_id: str) -> Optional[Dict[str, Any]]:
    """Get a provider entry by id"""
    for provider in PROVIDERS:
        if provider["id"] == provider_id:
            return provider
    return None


def get_model_by_id(model_id: str, provider: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Get model configuration by ID, optionally restricted to one provider"""
    for model in AVAILABLE_MODELS:
        if model["id"] == model_id and (provider is None or model["provider"] == provider):
            return model
    return None


def get_model_config(model_id: str, provider: Optional[str] = None) -> Dict[str, Any]:
    """Model entry, or a bare entry carrying the provider ceiling for unlisted models"""
    model = get_model_by_id(model_id, provider)
    if model:
        return model
    return {
        "id": model_id,
        "name": model_id,
        "provider": provider or "",
        "max_output_tokens": _PROVIDER_OUTPUT_CEILINGS.get(provider or "", _DEFAULT_OUTPUT_CEILING),
    }


def get_model_name(model_id: str) -> str:
    """Get the display name for a model ID"""
    model = get_model_by_id(model_id)
    return model["name"] if model else model_id


def get_provider_models(provider: str) -> List[Dict[str, Any]]:
    """Static model metadata for one provider, in the shape list_models() returns."""
    models = []
    for model in AVAILABLE_MODELS:
        if model["provider"] != provider:
            continue
        entry = {k: model[k] for k in ("id", "name", "desc", "limits", "provider")}
        if model.get("recommended"):
            entry["recommended"] = True
        models.append(entry)
    return models


def get_default_model(provider: str) -> str:
    if provider_settings.default_model and provider == provider_settings.default_provider:
        return provider_settings.default_model
    cfg = get_provider_config(provider)
    return cfg["default_model"] if cfg else ""


def get_max_output_tokens(provider: str, model_id: str) -> int:
    """Output-token ceiling for provider+model. Unknown models fall back to the provider ceiling."""
    model = get_model_by_id(model_id, provider)
    if model:
        return model.get("max_output_tokens", _DEFAULT_OUTPUT_CEILING)
    if provider == "groq" and "kimi-k2" in (model_id or ""):
        return 16384
    return _PROVIDER_OUTPUT_CEILINGS.get(provider, _DEFAULT_OUTPUT_CEILING)


def clamp_max_tokens(provider: str, model_id: str, requested: Optional[int] = None) -> int:
    """Clamp a requested max_tokens to the provider+model ceiling."""
    ceiling = get_max_output_tokens(provider, model_id)
    if not requested or requested <= 0:
        return ceiling
    return min(requested, ceiling)


def get_api_key(provider: str) -> str:
    return provider_settings.api_key_for(provider)
