"""Configuration loader"""
from pydantic import BaseModel, Field
import yaml
import os
import re
from pathlib import Path
from typing import Optional


class SystemConfig(BaseModel):
    """System configuration"""
    name: str = "teacher-memory"
    log_level: str = "INFO"
    log_file: Optional[str] = None


class StorageConfig(BaseModel):
    """Backing store configuration"""
    sqlite_path: str = "data/memory.db"


class MemoryConfig(BaseModel):
    """Memory lifecycle configuration"""
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    default_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    auto_expire_days: int = Field(default=90, ge=1)
    max_memories_per_teacher: int = Field(default=1000, ge=1)
    auto_cleanup: bool = False
    cleanup_interval_hours: float = Field(default=24, gt=0)


class CacheConfig(BaseModel):
    """TTL cache configuration"""
    default_ttl_seconds: int = 300
    context_ttl_seconds: int = 300
    preferences_ttl_seconds: int = 3600


class GateConfig(BaseModel):
    """Concurrency gate configuration"""
    max_concurrent: int = Field(default=10, ge=1)


class RetryConfig(BaseModel):
    """Backing-store retry configuration"""
    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    max_delay_seconds: float = Field(default=8.0, ge=0.0)


class Settings(BaseModel):
    """Full configuration"""
    system: SystemConfig = SystemConfig()
    storage: StorageConfig = StorageConfig()
    memory: MemoryConfig = MemoryConfig()
    cache: CacheConfig = CacheConfig()
    gate: GateConfig = GateConfig()
    retry: RetryConfig = RetryConfig()


def _load_dotenv(env_path: Path) -> None:
    """Load simple KEY=VALUE pairs from a .env file into os.environ."""
    if not env_path.exists():
        return

    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key or key in os.environ:
            continue

        # Strip optional quotes
        if (value.startswith('"') and value.endswith('"')) or (
            value.startswith("'") and value.endswith("'")
        ):
            value = value[1:-1]

        os.environ[key] = value


def load_config(config_path: str = "config/config.yaml", env_path: str = ".env") -> Settings:
    """
    Load the config file and substitute environment variables

    Args:
        config_path: path to the YAML config; a missing file yields defaults
        env_path: optional .env file loaded before substitution

    Returns:
        Settings object
    """
    _load_dotenv(Path(env_path))

    path = Path(config_path)
    if not path.exists():
        return Settings()

    with open(path, 'r', encoding='utf-8') as f:
        config_text = f.read()

    # Replace ${VAR_NAME} placeholders
    def replace_env(match):
        var_name = match.group(1)
        value = os.getenv(var_name)
        if value is None:
            raise ValueError(f"Environment variable {var_name} is not set, check your .env file")
        return value

    config_text = re.sub(r'\$\{(\w+)\}', replace_env, config_text)

    config_dict = yaml.safe_load(config_text) or {}

    return Settings(**config_dict)
