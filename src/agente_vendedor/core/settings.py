
"""Configurações Pydantic Settings para o agente vendedor."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    """Configurações da aplicação. Carrega de env e .env.

    Todas as credenciais devem vir via env. Nunca hardcode.
    """
    model_config = SettingsConfigDict(env_file=".env", env_prefix="AV_", case_sensitive=False, extra="ignore")

    # Flask
    flask_debug: bool = Field(default=False)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO")

    # DB
    database_url: str = Field(..., description="URL do Postgres, ex: postgresql+psycopg://user:pass@db:5432/app")

    # Green API (WhatsApp)
    green_api_id_instance: str = Field(default="")
    green_api_token_instance: str = Field(default="")
    green_api_url: str = Field(default="", description="Base da API; padrão https://{id}.api.greenapi.com")
    send_timeout_s: float = Field(default=15.0)

    # Conversas
    default_workspace_id: str = Field(default="default")
    default_country_code: str = Field(default="237")
    local_number_length: int = Field(default=9)
    local_number_prefixes: str = Field(default="6")
    processed_ids_retention: int = Field(default=100)

    # Relances e limpeza
    relance_intervals_minutes: list[int] = Field(default=[30, 120, 1440])
    relance_max_attempts: int = Field(default=3)
    stale_after_hours: float = Field(default=24)
    relance_interval_s: int = Field(default=300)
    cleanup_interval_s: int = Field(default=3600)
    scheduler_enabled: bool = Field(default=True)
    timezone: str = Field(default="Africa/Douala")

    # Ritmo de envio
    human_delay_min_s: float = Field(default=2.0)
    human_delay_max_s: float = Field(default=5.0)
    relance_pause_s: float = Field(default=10.0)
    dispatcher_workers: int = Field(default=4)

    # LLM / LiteLLM
    litellm_base_url: str = Field(default="", description="URL do gateway LiteLLM")
    litellm_model_primary: str = Field(default="gpt-4o-mini")
    litellm_model_fallback: str = Field(default="gpt-4o-mini")
    litellm_timeout_s: int = Field(default=12)
    litellm_max_tokens: int = Field(default=300)
    litellm_temperature: float = Field(default=0.7)
    history_limit: int = Field(default=10)

    @property
    def green_api_base_url(self) -> str:
        return self.green_api_url or f"https://{self.green_api_id_instance}.api.greenapi.com"
