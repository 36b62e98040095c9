# ============================================================
# DBSage - Database AI Assistant
# config.py - Central Configuration Management
# ============================================================

from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv

# Load .env file (project dir first, then the working directory)
BASE_DIR = Path(__file__).parent
load_dotenv(BASE_DIR / ".env")
load_dotenv()

DEFAULT_HOME = Path.home() / ".dbsage"


class OpenAIConfig(BaseSettings):
    """OpenAI-compatible LLM endpoint configuration."""
    api_key: str = Field(default="")
    base_url: str = Field(default="https://api.openai.com/v1")
    model: str = Field(default="gpt-4o-mini")
    temperature: Optional[float] = Field(default=None)
    # Overall per-request deadline in seconds; unset = transport defaults
    turn_timeout: Optional[float] = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="OPENAI_", extra="ignore")

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key.strip())


class AppConfig(BaseSettings):
    """Application-level configuration."""
    name: str = Field(default="DBSage")
    version: str = Field(default="1.0.0")
    home_dir: Path = Field(default=DEFAULT_HOME)
    connections_file: Optional[Path] = Field(default=None)
    log_level: str = Field(default="INFO")
    log_file: Optional[Path] = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="DBSAGE_", extra="ignore")

    def get_connections_file(self) -> Path:
        return Path(self.connections_file or self.home_dir / "connections.json").expanduser()

    def get_log_file(self) -> Path:
        return Path(self.log_file or self.home_dir / "logs" / "dbsage.log").expanduser()


# ── Singleton Config Instances ────────────────────────────────
openai_config = OpenAIConfig()
app_config = AppConfig()
