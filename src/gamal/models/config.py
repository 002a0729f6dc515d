"""Configuration models for Gamal."""

from pydantic import BaseModel, Field, field_validator
from pathlib import Path
from typing import Dict, List, Mapping, Optional
import yaml
import os
import stat


DEFAULT_STOP = ["<|im_end|>", "<|end|>", "<|eot_id|>"]


class LLMConfig(BaseModel):
    """Configuration for the chat-completion backend."""

    base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="Base URL of an OpenAI-compatible API, or of the Gemini API"
    )

    api_key: Optional[str] = Field(
        default=None,
        description="API key (sent as bearer token, or as ?key= for Gemini)"
    )

    model: str = Field(
        default="meta-llama/llama-3.1-8b-instruct",
        description="Model identifier"
    )

    streaming: bool = Field(
        default=True,
        description="Stream answers via server-sent events when a consumer wants partial text"
    )

    json_schema: bool = Field(
        default=False,
        description="Ask for structured JSON output instead of 'field: value' lines"
    )

    timeout: float = Field(
        default=17.0,
        gt=0,
        description="Deadline in seconds for a completion response"
    )

    max_tokens: int = Field(default=500, ge=1)

    temperature: float = Field(default=0.0, ge=0.0, le=2.0)

    stop: List[str] = Field(default_factory=lambda: list(DEFAULT_STOP))

    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Total attempts on timeout or remote error"
    )

    retry_backoff: float = Field(
        default=1.5,
        ge=0.0,
        description="Linear backoff unit in seconds (attempt index x backoff)"
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URL so paths can be appended."""
        return v.rstrip("/")

    model_config = {"frozen": True}


class SearchConfig(BaseModel):
    """Configuration for the SearXNG search backend."""

    url: str = Field(
        default="https://searx.foss.family",
        description="SearXNG instance URL (must allow format=json)"
    )

    timeout: float = Field(default=31.0, gt=0)

    top_k: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Number of references kept after filtering"
    )

    categories: str = Field(default="web")

    engines: str = Field(default="go,ddg,bi,br,yh,qw,sp,mjk")

    snippet_max_chars: int = Field(default=1000, ge=1)

    max_attempts: int = Field(default=3, ge=1)

    retry_backoff: float = Field(default=1.5, ge=0.0)

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize instance URL so paths can be appended."""
        return v.rstrip("/")

    model_config = {"frozen": True}


class TelegramConfig(BaseModel):
    """Configuration for the Telegram bot surface."""

    token: Optional[str] = Field(default=None, description="Bot token from @BotFather")

    timeout: float = Field(default=5.0, gt=0)

    poll_interval: float = Field(default=0.2, ge=0.0)

    @property
    def enabled(self) -> bool:
        """Bot tokens are at least 40 characters long."""
        return bool(self.token) and len(self.token) >= 40

    model_config = {"frozen": True}


class ServerConfig(BaseModel):
    """Configuration for the HTTP surface."""

    host: str = Field(default="0.0.0.0")

    port: Optional[int] = Field(default=None, gt=0, lt=65536)

    model_config = {"frozen": True}


class VoiceConfig(BaseModel):
    """Configuration for speech input (whisper.cpp) and output (piper + sox)."""

    whisper_stream: str = Field(default="whisper-cpp-stream")

    whisper_model: Optional[str] = Field(default=None)

    piper_model: Optional[str] = Field(
        default=None,
        description="Fallback TTS model when no language-specific model is set"
    )

    piper_models: Dict[str, str] = Field(
        default_factory=dict,
        description="TTS model per ISO 639-1 language code"
    )

    def tts_model(self, language_code: str) -> Optional[str]:
        """Return the TTS model for a language, falling back to piper_model."""
        model = self.piper_models.get(language_code.lower())
        return model or self.piper_model

    model_config = {"frozen": True}


class Config(BaseModel):
    """Root configuration for Gamal."""

    llm: LLMConfig = Field(default_factory=LLMConfig, description="Completion backend settings")
    search: SearchConfig = Field(default_factory=SearchConfig, description="Search backend settings")
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    voice: VoiceConfig = Field(default_factory=VoiceConfig)

    @classmethod
    def load(cls, path: Path) -> "Config":
        """
        Load configuration from YAML file.

        Validates file permissions before loading.
        Raises PermissionError if file is group/world readable.

        Args:
            path: Path to config.yaml file

        Returns:
            Validated Config instance

        Raises:
            PermissionError: If file permissions are too open
            FileNotFoundError: If config file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        if not path.exists():
            raise FileNotFoundError(
                f"Configuration file not found at {path}\n\n"
                f"Please create the file with the following format:\n\n"
                f"llm:\n"
                f"  base_url: https://openrouter.ai/api/v1\n"
                f"  api_key: YOUR_API_KEY_HERE\n"
                f"  model: meta-llama/llama-3.1-8b-instruct\n\n"
                f"search:\n"
                f"  url: http://localhost:9000\n"
            )

        # API keys live here, so the file must be private (600)
        mode = os.stat(path).st_mode
        if mode & (stat.S_IRWXG | stat.S_IRWXO):
            raise PermissionError(
                f"Config file has overly permissive permissions: {oct(mode)}\n"
                f"Run: chmod 600 {path}"
            )

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping, got {type(data).__name__}")

        return cls(**data)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """
        Build configuration from environment variables.

        Recognized variables: LLM_API_BASE_URL, LLM_API_KEY (or
        OPENROUTER_API_KEY), LLM_CHAT_MODEL, LLM_STREAMING ("no" disables),
        LLM_JSON_SCHEMA, SEARXNG_URL, GAMAL_HTTP_PORT, GAMAL_TELEGRAM_TOKEN,
        WHISPER_STREAM, WHISPER_MODEL, PIPER_MODEL and PIPER_MODEL_<LANG>.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            Validated Config instance
        """
        env = os.environ if environ is None else environ

        llm = {}
        if env.get("LLM_API_BASE_URL"):
            llm["base_url"] = env["LLM_API_BASE_URL"]
        api_key = env.get("LLM_API_KEY") or env.get("OPENROUTER_API_KEY")
        if api_key:
            llm["api_key"] = api_key
        if env.get("LLM_CHAT_MODEL"):
            llm["model"] = env["LLM_CHAT_MODEL"]
        llm["streaming"] = env.get("LLM_STREAMING", "") != "no"
        llm["json_schema"] = bool(env.get("LLM_JSON_SCHEMA"))

        search = {}
        if env.get("SEARXNG_URL"):
            search["url"] = env["SEARXNG_URL"]

        server = {}
        port = env.get("GAMAL_HTTP_PORT", "").strip()
        if port.isdigit() and 0 < int(port) < 65536:
            server["port"] = int(port)

        telegram = {}
        if env.get("GAMAL_TELEGRAM_TOKEN"):
            telegram["token"] = env["GAMAL_TELEGRAM_TOKEN"]

        voice = {"piper_models": {}}
        if env.get("WHISPER_STREAM"):
            voice["whisper_stream"] = env["WHISPER_STREAM"]
        if env.get("WHISPER_MODEL"):
            voice["whisper_model"] = env["WHISPER_MODEL"]
        if env.get("PIPER_MODEL"):
            voice["piper_model"] = env["PIPER_MODEL"]
        for key, value in env.items():
            if key.startswith("PIPER_MODEL_") and value:
                voice["piper_models"][key[len("PIPER_MODEL_"):].lower()] = value

        return cls(
            llm=LLMConfig(**llm),
            search=SearchConfig(**search),
            server=ServerConfig(**server),
            telegram=TelegramConfig(**telegram),
            voice=VoiceConfig(**voice),
        )

    model_config = {"frozen": True}
