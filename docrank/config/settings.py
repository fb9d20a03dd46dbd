"""
Configuration settings for docrank.
This module manages all environment variables and application settings.
"""

from pathlib import Path
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Main settings class for the docrank service."""

    # Project settings
    PROJECT_NAME: str = "docrank"
    VERSION: str = "1.0.0"
    DEBUG: bool = Field(default=False)

    # Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent
    LOGS_DIR: Path = PROJECT_ROOT / "logs"

    # API settings
    API_PREFIX: str = "/api"
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    # Document store (MongoDB)
    MONGODB_URL: str = Field(default="mongodb://localhost:27017")
    DATABASE_NAME: str = Field(default="docrank")
    DOCUMENTS_COLLECTION: str = Field(default="documents")
    USERS_COLLECTION: str = Field(default="users")
    TEXT_INDEX_NAME: str = Field(default="document_text_index")

    # Inference service (Ollama)
    OLLAMA_HOST: str = Field(default="http://localhost:11434")
    OLLAMA_MODEL: str = Field(default="tinyllama:latest")
    EMBEDDING_MODEL: str = Field(default="nomic-embed-text")

    # Ranking tunables live in a YAML file, see docrank.config.ranking_config
    RANKING_CONFIG_PATH: Optional[str] = Field(default="config/ranking.yaml")

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


# Global settings instance
settings = Settings()
