import os

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, Dict, Any
from pathlib import Path


class Settings(BaseSettings):
    # Chunking defaults (used by the CLI; library callers pass options)
    CHUNK_STRATEGY: str = "hybrid"  # fixed|semantic|hybrid
    CHUNK_MAX_TOKENS: int = 512
    CHUNK_MIN_TOKENS: int = 50
    CHUNK_OVERLAP_TOKENS: int = 50
    CHUNK_ENFORCE_HARD_CAP: bool = False  # Cut oversized sentences on tokens
    CHUNK_WORKERS: int = 4  # Documents chunked in parallel

    # Tokenizer
    TOKENIZER_ENCODING: str = "cl100k_base"

    # Workspace paths
    DOCCHUNK_WORKDIR: str = "var"  # Tool-managed artifacts (logs, events)

    # Observability & UI
    LOG_FORMAT: str = "auto"  # json|plain|auto
    LOG_LEVEL: str = "INFO"
    NO_COLOR: bool = False  # Disable colored output

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @classmethod
    def load_config(cls, config_file: Optional[str] = None) -> "Settings":
        """Load settings with config file -> env -> CLI precedence."""
        config_data: Dict[str, Any] = {}

        # Find config file
        config_path: Optional[Path]
        if config_file:
            config_path = Path(config_file)
        else:
            # Auto-discover .docchunk.{yaml,yml,toml}
            for ext in ["yaml", "yml", "toml"]:
                config_path = Path(f".docchunk.{ext}")
                if config_path.exists():
                    break
            else:
                config_path = None

        if config_path and config_path.exists():
            if config_path.suffix in [".yaml", ".yml"]:
                import yaml  # type: ignore[import-untyped]

                with open(config_path) as f:
                    config_data = yaml.safe_load(f) or {}
            elif config_path.suffix == ".toml":
                import tomllib

                with open(config_path, "rb") as f:
                    config_data = tomllib.load(f)

        # Config file values are defaults; environment variables win
        env_keys = {key.upper() for key in os.environ}
        return cls(
            **{
                key.upper(): value
                for key, value in config_data.items()
                if key.upper() not in env_keys
            }
        )


# Default settings - replaced by load_config() during CLI startup
SETTINGS = Settings()
