"""Configuration schema using Pydantic."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EndpointSettings(Base):
    """Real-time transport identity and completion-service settings of one endpoint."""

    rtm_app_id: str = ""
    rtm_token: str = ""
    rtm_from_user: str = ""
    rtm_channel: str = ""
    llm_model: str = "gpt-4o-mini"
    llm_base_url: str = "https://api.openai.com/v1"
    llm_api_key: str = ""
    llm_prompt: str = ""


class DeliveryConfig(Base):
    """Simulated typing delay applied before a chat reply is published."""

    base_delay_ms: int = 300
    words_per_minute: int = 300
    chars_per_word: int = 5
    max_typing_ms: int = 6700
    jitter_ms: int = 300
    max_total_ms: int = 2000

    @property
    def ms_per_char(self) -> float:
        return 60000 / (self.words_per_minute * self.chars_per_word)


class CacheConfig(Base):
    ttl_seconds: int = 24 * 60 * 60
    sweep_interval_seconds: float = 60.0


class LoopConfig(Base):
    max_passes: int = 5
    stream: bool = False


class ConversationConfig(Base):
    """In-memory conversation retention."""

    max_age_hours: float = 24.0
    cleanup_interval_seconds: float = 60 * 60
    max_memory_mb: int = 50
    persist: bool = False


class TransportConfig(Base):
    """REST credentials for publishing peer messages."""

    base_url: str = "https://api.agora.io/dev/v2/project"
    customer_key: str = ""
    customer_secret: str = ""
    timeout: float = 10.0


class Config(Base):
    endpoints: dict[str, EndpointSettings] = Field(default_factory=dict)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    conversations: ConversationConfig = Field(default_factory=ConversationConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)

    def endpoint(self, name: str) -> EndpointSettings:
        """Settings for ``name``; lookup ignores case, missing names get defaults."""
        for key, settings in self.endpoints.items():
            if key.upper() == name.upper():
                return settings
        return EndpointSettings()
