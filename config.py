from functools import lru_cache

from pydantic import Field
from pydantic_settings import SettingsConfigDict, BaseSettings


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    # GPS TCP receiver configuration
    GPS_TCP_HOST: str = "0.0.0.0"
    # No port is mandated by the protocol, deployments must choose one (0 = ephemeral)
    GPS_TCP_PORT: int = Field(ge=0, le=65535)
    GPS_TCP_BACKLOG: int = Field(default=100, gt=0)
    # Maximum bytes held per connection while waiting for a frame terminator
    GPS_TCP_MAX_BUFFER_SIZE: int = Field(default=8192, gt=0)
    GPS_TCP_ENCODING: str = "ascii"

    PROD: bool = False
    LOG_FILE: str = "./logs/mictrack_server.log"


@lru_cache
def get_settings() -> Settings:
    """Settings from the environment / .env, read once"""
    return Settings()
