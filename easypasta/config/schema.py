"""Configuration schema using Pydantic."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DiscoveryConfig(Base):
    """mDNS browsing configuration."""

    service_type: str = "easypasta"  # Browsed as _<service_type>._<protocol>.<domain>
    protocol: str = "tcp"
    domain: str = "local."
    scan_on_start: bool = True  # Begin scanning as soon as the client starts
    resolve_timeout: float = Field(default=3.0, gt=0)  # Seconds to wait for SRV/TXT/A records


class SessionConfig(Base):
    """Peer session configuration."""

    ws_path: str = "/ws"  # Path of the peer's websocket endpoint
    device_id: str = ""  # Sender tag for outbound messages (default: <platform>_device)
    resume_scan_on_disconnect: bool = False  # Restart discovery when a session ends
    connect_timeout: float = Field(default=10.0, gt=0)  # Seconds for the opening handshake
    close_timeout: float = Field(default=5.0, gt=0)  # Seconds for the closing handshake


class Config(BaseSettings):
    """Root configuration for the EasyPasta client."""

    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    model_config = ConfigDict(env_prefix="EASYPASTA_", env_nested_delimiter="__")
