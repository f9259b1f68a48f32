"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_PORT = 1024
MAX_PORT = 65535


class ServerConfig(BaseSettings):
    """Resolved server configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SHELLGATE_",
        extra="ignore",
        frozen=True,
    )

    host: str = "0.0.0.0"
    port: int = 30000
    backlog: int = Field(default=100, gt=0)  # Pending connections wait queue
    connection_timeout: float = Field(default=600, gt=0)  # 10 minutes
    command_timeout: float = Field(default=300, gt=0)  # 5 minutes
    log_file: Path | None = Path("shellgate.log")
    pid_file: Path = Path("shellgate.pid")
    daemon: bool = False
    max_request_bytes: int = Field(default=64 * 1024, gt=0)
    # How long shutdown waits for in-flight connections before cancelling them
    drain_timeout: float = Field(default=30, ge=0)
    allowed_commands: list[str] = Field(default_factory=list)

    @field_validator("port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if value < MIN_PORT:
            raise ValueError(f"{value} value is below {MIN_PORT}")
        if value > MAX_PORT:
            raise ValueError(f"{value} value is above {MAX_PORT}")
        return value
