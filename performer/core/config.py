import json
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field


class LLMConfig(BaseModel):
    provider: str = "openai"  # "openai" or "claude"
    model: str = ""  # empty = provider default
    base_url: str = ""  # OpenAI-compatible endpoint override
    max_tokens: int = 150
    temperature: float = 0.7


class APIKeysConfig(BaseModel):
    openai: str = ""
    claude: str = ""


class VoiceConfig(BaseModel):
    voice: str = "en_US-amy-medium"
    sample_rate: int = 22050
    tts_attempts: int = 3
    tts_retry_delay: float = 1.0


class ConversionOptions(BaseModel):
    f0_method: str = "rmvpe"
    device: str = "cuda"
    stemming_method: str = "UVR-MDX-NET Voc FT"
    index_ratio: float = 0.75
    consonant_protection: float = 0.35
    output_format: str = "mp3_320k"
    de_echo_de_reverb: bool = True


class SongConfig(BaseModel):
    api_url: str = "http://localhost:62362"
    voice_model_id: str = "performer"
    models_path: str = ""
    weights_path: str = ""
    output_directory: str = ""
    poll_interval: float = 2.0
    request_timeout: float = 30.0
    options: ConversionOptions = Field(default_factory=ConversionOptions)


class AutoTalkConfig(BaseModel):
    enabled: bool = True
    base_interval: float = 5.0
    variance: float = 2.0
    idle_threshold: float = 30.0
    quiet_after_speech: float = 5.0
    topics: list[str] = Field(default_factory=lambda: [
        "how quiet the chat is right now",
        "your money problems",
        "something that happened at school",
        "how your studies are going",
        "wondering if anyone is even listening",
        "sharing a random thought",
        "asking a rhetorical question to chat",
    ])


class TimingConfig(BaseModel):
    """Settle delays in seconds between speaking, singing and queue draining."""

    drain_settle: float = 1.0
    queue_resume: float = 2.0
    pending_settle: float = 0.5
    failure_drain: float = 1.0
    sound_repeat_interval: float = 1.5
    first_stall_delay: float = 10.0
    stall_min: float = 15.0
    stall_max: float = 25.0
    opening_stall_min: float = 1.0
    opening_stall_max: float = 3.0


class ModerationConfig(BaseModel):
    owners: list[str] = Field(default_factory=list)
    api_token: str = ""  # empty = control surface open


DEFAULT_PERSONA_PROMPT = (
    "You are a cheerful, slightly chaotic virtual streamer chatting live with your viewers. "
    "You are a student who is always short on money and a little shy about singing. "
    "Keep every reply short and conversational, one to three sentences, and never break character."
)


class PersonaConfig(BaseModel):
    name: str = "Mia"
    prompt_file: str = ""


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class AppConfig(BaseModel):
    llm: LLMConfig = Field(default_factory=LLMConfig)
    api_keys: APIKeysConfig = Field(default_factory=APIKeysConfig)
    voice: VoiceConfig = Field(default_factory=VoiceConfig)
    song: SongConfig = Field(default_factory=SongConfig)
    autotalk: AutoTalkConfig = Field(default_factory=AutoTalkConfig)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    moderation: ModerationConfig = Field(default_factory=ModerationConfig)
    persona: PersonaConfig = Field(default_factory=PersonaConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


class ConfigManager:
    """Manages application configuration with JSON persistence."""

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.config_path = data_dir / "config.json"
        self._config: Optional[AppConfig] = None

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            self._config = self._load()
        return self._config

    def _load(self) -> AppConfig:
        """Load config from disk. Returns defaults if no config exists."""
        if self.config_path.exists():
            try:
                data = json.loads(self.config_path.read_text())
                logger.info("Configuration loaded from {}", self.config_path)
                return AppConfig(**data)
            except Exception as e:
                logger.error("Failed to load config: {}. Using defaults.", e)
        logger.info("No existing config found. Using defaults.")
        return AppConfig()

    def save(self) -> None:
        """Persist current config to disk."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(self.config.model_dump_json(indent=2))
        logger.debug("Configuration saved to {}", self.config_path)

    def update_nested(self, section: str, **kwargs) -> AppConfig:
        """Update fields within a nested config section."""
        current = self.config.model_dump()
        if section in current and isinstance(current[section], dict):
            current[section].update(kwargs)
        self._config = AppConfig(**current)
        self.save()
        return self._config

    def persona_prompt(self) -> str:
        """Persona prompt text, read from ``persona.prompt_file`` when set."""
        prompt_file = self.config.persona.prompt_file
        if prompt_file:
            path = Path(prompt_file)
            if not path.is_absolute():
                path = self.data_dir / path
            try:
                return path.read_text(encoding="utf-8").strip()
            except OSError as e:
                logger.warning("Could not read persona prompt {}: {}. Using default.", path, e)
        return DEFAULT_PERSONA_PROMPT

    def api_key_for(self, provider: str) -> str:
        return getattr(self.config.api_keys, provider, "")

    def is_owner(self, username: str) -> bool:
        owners = {o.lower() for o in self.config.moderation.owners}
        return username.lower() in owners
