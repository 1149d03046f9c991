from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Completions backend
    completions_url: str = Field(
        default="",
        validation_alias=AliasChoices("completions_url", "n8n_chat_completions_url"),
    )
    completions_bearer: str = Field(
        default="",
        validation_alias=AliasChoices("completions_bearer", "n8n_bearer"),
    )
    completions_model: str = "gpt-3.5-turbo"
    completions_max_tokens: int = 120
    completions_temperature: float = 0.0
    completions_stream: bool = True
    completions_timeout_seconds: float = 60.0
    system_prompt: str = (
        "You are a helpful assistant that accurately answers the user's queries "
        "based on the given text."
    )

    # Source discovery
    search_url_template: str = "https://www.google.com/search?q={query}"
    search_redirect_prefix: str = "/url?q="
    source_count: int = 4
    source_max_chars: int = 1500
    excluded_domains: str = "google,facebook,twitter,instagram,youtube,tiktok"
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    )
    fetch_timeout_seconds: float = 15.0
    extractor_fallback: str = "readabilipy"  # readabilipy | none

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    @property
    def excluded_domain_list(self) -> list[str]:
        return [d.strip().lower() for d in self.excluded_domains.split(",") if d.strip()]


settings = Settings()
