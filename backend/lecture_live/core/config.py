from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices
from functools import lru_cache
from pathlib import Path


def find_env_file():
    """Find .env.local file in project (for local development only)"""
    possible_paths = [
        Path(__file__).parent.parent.parent / '.env.local',  # backend/.env.local
        Path(__file__).parent.parent.parent.parent / '.env.local',
        Path.cwd() / '.env.local',
        Path.cwd() / '.env',
    ]
    for p in possible_paths:
        if p.exists():
            return str(p)
    return None  # No env file found, will use environment variables


class Settings(BaseSettings):
    env: str = 'development'
    api_v1_prefix: str = '/api/v1'
    project_name: str = 'AI Lecture Live'

    # Durable session store - SQLite locally, Postgres in production
    database_url: str = 'sqlite:///./lecture_sessions.db'
    db_pool_size: int = 5
    db_pool_recycle: int = 120

    # AI API Keys - Set via environment variable in production
    # Backward-compatible aliases for the Gemini key:
    # - GEMINI_API_KEY (preferred)
    # - GOOGLE_API_KEY (google-genai default)
    # - API_KEY (legacy browser build)
    gemini_api_key: str = Field(
        default='',
        validation_alias=AliasChoices('GEMINI_API_KEY', 'GOOGLE_API_KEY', 'API_KEY'),
    )
    groq_api_key: str = ''

    # AI Model settings
    gemini_live_model: str = 'gemini-2.5-flash-native-audio-preview-09-2025'
    plan_generation_model: str = 'gemini-2.5-pro'
    markdown_fixer_model: str = 'gemini-2.0-flash-exp'
    # Groq chat model used only as a fallback for one-shot text calls.
    llm_groq_chat_model: str = Field(
        default='meta-llama/llama-4-scout-17b-16e-instruct',
        validation_alias=AliasChoices('LLM_GROQ_CHAT_MODEL', 'GROQ_MODEL'),
    )
    ai_temperature: float = 0.0
    ai_max_tokens: int = 4096

    # Lecture defaults
    default_language: str = 'English'
    default_voice: str = 'Puck'
    default_image_max_dimension: int = 768
    plan_batch_size: int = 3
    canvas_markdown_fix_enabled: bool = False

    # Live session timers
    session_save_debounce_ms: int = 2000
    slide_select_debounce_ms: int = 200
    auto_mute_delay_ms: int = 1500
    notification_ttl_ms: int = 5000

    # Lazy migration of stored slide images (PNG -> JPEG)
    legacy_image_jpeg_quality: int = Field(default=80, ge=1, le=95)

    # CORS - comma separated origins or "*" for all
    cors_origins: str = '*'

    model_config = SettingsConfigDict(
        env_file=find_env_file(),
        env_file_encoding='utf-8',
        extra='ignore',
        populate_by_name=True,
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.database_url and self.database_url.startswith('postgres://'):
            self.database_url = self.database_url.replace('postgres://', 'postgresql://', 1)

    @property
    def has_gemini(self) -> bool:
        return bool(self.gemini_api_key)

    @property
    def llm_provider(self) -> str:
        """Active provider for one-shot text calls."""
        if self.gemini_api_key:
            return 'gemini'
        if self.groq_api_key:
            return 'groq'
        return 'none'

    @property
    def cors_origin_list(self) -> list[str]:
        origins = [o.strip() for o in (self.cors_origins or '').split(',') if o.strip()]
        return origins or ['*']


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
