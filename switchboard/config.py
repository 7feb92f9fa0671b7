# switchboard/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    log_json: bool = False

    # Credential profiles
    credential_encryption_key: str | None = None  # Fernet key for profile secrets at rest
    auth_profile_cooldown_base_seconds: int = 60     # First cooldown after a rotatable failure
    auth_profile_cooldown_max_seconds: int = 3600    # Cap for the exponential cooldown

    # Provider defaults
    default_provider_id: str = "openrouter"  # Target of the legacy single global key
    openai_compatible_base_url: str | None = None  # Environment endpoint for the compatible family

    # Provider-specific headers
    anthropic_api_version: str = "2023-06-01"
    openrouter_site_url: str = "https://switchboard.local"
    openrouter_app_name: str = "Switchboard"

    # Health probes
    # Probes have no internal timeout; these are the caller-side deadlines and
    # must stay shorter than the main operation's deadline.
    voice_probe_timeout_seconds: float = 4.0
    provider_probe_timeout_seconds: float = 8.0
    provider_probe_sample_limit: int = 8

    # ElevenLabs
    elevenlabs_tts_model_id: str = "eleven_multilingual_v2"
    elevenlabs_stt_model_id: str = "scribe_v1"
    elevenlabs_default_voice_id: str | None = None

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []

        required_fields = [
            ("credential_encryption_key", self.credential_encryption_key),
        ]

        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        if self.voice_probe_timeout_seconds <= 0:
            missing.append("voice_probe_timeout_seconds")

        return missing


settings = Settings()
