from pathlib import Path

import typer
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from leads_ranker.models import AIProvider

console = Console()


class ProviderNotConfiguredError(ValueError):
    """Raised when a ranking/optimization run asks for a provider without an API key."""

    def __init__(self, provider: AIProvider):
        self.provider = provider
        super().__init__(f"{provider.value} API key not configured")


def _find_dotenv() -> Path | None:
    """Search for .env file from cwd upward to find project root."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        candidate = parent / ".env"
        if candidate.is_file():
            return candidate
        # Stop at common project root indicators
        if (parent / "pyproject.toml").is_file() or (parent / ".git").is_dir():
            break
    return None


def _mask(secret: SecretStr | None, visible: int = 4) -> str:
    if secret is None:
        return "(not set)"
    val = secret.get_secret_value()
    if len(val) <= visible:
        return "***"
    return val[:visible] + "*" * (len(val) - visible)


class Settings(BaseSettings):
    """
    Runtime configuration.

    Values are loaded from environment variables and `.env` (if present).
    Searches for .env from current directory upward to project root.
    """

    model_config = SettingsConfigDict(
        env_file=_find_dotenv(),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Storage
    database_url: str = Field(default="sqlite:///leads_ranker.db", validation_alias="DATABASE_URL")

    # LLM providers (at least one key is required for ranking)
    openai_api_key: SecretStr | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    anthropic_api_key: SecretStr | None = Field(default=None, validation_alias="ANTHROPIC_API_KEY")
    gemini_api_key: SecretStr | None = Field(default=None, validation_alias="GEMINI_API_KEY")
    ai_provider: AIProvider = Field(default=AIProvider.openai, validation_alias="AI_PROVIDER")

    openai_model: str = Field(default="gpt-4o-mini", validation_alias="OPENAI_MODEL")
    anthropic_model: str = Field(default="claude-sonnet-4-20250514", validation_alias="ANTHROPIC_MODEL")
    gemini_model: str = Field(default="gemini-2.0-flash", validation_alias="GEMINI_MODEL")

    # Data files
    eval_set_path: Path = Field(default=Path("eval_set.csv"), validation_alias="EVAL_SET_PATH")
    leads_csv_path: Path = Field(default=Path("leads.csv"), validation_alias="LEADS_CSV_PATH")

    debug: bool = Field(default=False, validation_alias="DEBUG")

    def api_key_for(self, provider: AIProvider) -> SecretStr | None:
        return {
            AIProvider.openai: self.openai_api_key,
            AIProvider.anthropic: self.anthropic_api_key,
            AIProvider.gemini: self.gemini_api_key,
        }[provider]

    def model_for(self, provider: AIProvider) -> str:
        return {
            AIProvider.openai: self.openai_model,
            AIProvider.anthropic: self.anthropic_model,
            AIProvider.gemini: self.gemini_model,
        }[provider]

    def available_providers(self) -> list[AIProvider]:
        keys = {p: self.api_key_for(p) for p in AIProvider}
        return [p for p, key in keys.items() if key is not None and key.get_secret_value()]

    def require_provider(self, provider: AIProvider) -> str:
        """Return the API key for `provider` or raise ProviderNotConfiguredError."""
        secret = self.api_key_for(provider)
        if secret is None or not secret.get_secret_value():
            raise ProviderNotConfiguredError(provider)
        return secret.get_secret_value()


def get_settings() -> Settings:
    """Get settings instance (convenience for CLI)."""
    return Settings()


def display_config():
    try:
        settings = get_settings()
    except Exception as e:
        rprint(f"[red]Error loading settings:[/] {e}")
        raise typer.Exit(1)

    table = Table(title="Current Configuration", show_header=True, header_style="bold cyan")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("DATABASE_URL", settings.database_url)
    table.add_row("OPENAI_API_KEY", _mask(settings.openai_api_key))
    table.add_row("ANTHROPIC_API_KEY", _mask(settings.anthropic_api_key))
    table.add_row("GEMINI_API_KEY", _mask(settings.gemini_api_key))
    table.add_row("AI_PROVIDER", settings.ai_provider.value)
    table.add_row("OPENAI_MODEL", settings.openai_model)
    table.add_row("ANTHROPIC_MODEL", settings.anthropic_model)
    table.add_row("GEMINI_MODEL", settings.gemini_model)
    table.add_row("EVAL_SET_PATH", str(settings.eval_set_path))
    table.add_row("LEADS_CSV_PATH", str(settings.leads_csv_path))
    table.add_row("DEBUG", str(settings.debug))

    console.print(table)

    available = settings.available_providers()
    if not available:
        rprint("\n[yellow]No LLM provider keys configured.[/] [dim]Set OPENAI_API_KEY, ANTHROPIC_API_KEY or GEMINI_API_KEY.[/]")
    elif settings.ai_provider not in available:
        rprint(f"\n[yellow]Default provider {settings.ai_provider.value} has no API key.[/]")
