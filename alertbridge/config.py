"""Configuration management for the notification gateway."""

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class XMPPConfig(BaseModel):
    """Chat account the gateway logs in as."""
    jid: str = Field(default="", description="Bare or full JID of the gateway account")
    password: str = Field(default="", description="Account password")
    contact_field: str = Field(
        default="_XMPP",
        description="Backend contact property holding the contact's chat address",
    )


class NagiosConfig(BaseModel):
    """Where the monitoring backend keeps its state and command pipe."""
    var_dir: str = Field(default="/var/lib/nagios3", description="Directory holding rw/nagios.cmd")
    cache_dir: Optional[str] = Field(
        default=None, description="Directory holding objects.cache and status.dat (defaults to var_dir)"
    )
    web_uri: str = Field(default="", description="Base URI of the backend web UI, used in detail links")


class SMTPConfig(BaseModel):
    """Outbound mail relay."""
    relay: str = Field(default="localhost", description="SMTP relay host")
    port: int = Field(default=25, description="SMTP relay port")
    from_address: str = Field(default="nagios@localhost", description="Envelope and header sender")
    from_name: str = Field(default="Nagios", description="Display name of the sender")
    timeout: float = Field(default=30.0, description="SMTP socket timeout in seconds")


class HTTPConfig(BaseModel):
    """Intake endpoint bind address."""
    host: str = Field(default="127.0.0.1", description="Bind host")
    port: int = Field(default=8282, description="Bind port")


class SessionConfig(BaseModel):
    """Chat session connect/retry timing."""
    connect_timeout: float = Field(default=15.0, description="Bound on connect+auth in seconds")
    retry_delay: float = Field(default=15.0, description="Sleep between connect attempts in seconds")


class RefreshConfig(BaseModel):
    """Status refresh polling intervals."""
    busy_interval: int = Field(default=2, description="Seconds between refreshes while checks are pending")
    idle_interval: int = Field(default=10, description="Seconds between refreshes otherwise")


class GatewayConfig(BaseModel):
    """Main configuration for the gateway."""

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[str] = Field(default=None, description="Log to this file instead of stderr")
    enable_eval: bool = Field(default=False, description="Register the 'eval' debug command")

    xmpp: XMPPConfig = Field(default_factory=XMPPConfig)
    nagios: NagiosConfig = Field(default_factory=NagiosConfig)
    smtp: SMTPConfig = Field(default_factory=SMTPConfig)
    http: HTTPConfig = Field(default_factory=HTTPConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)


def load_config(config_path: Optional[str] = None) -> GatewayConfig:
    """Load configuration from file, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("ALERTBRIDGE_CONFIG", "config/alertbridge.yaml")

    config_data = {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

    log_level = os.getenv("ALERTBRIDGE_LOG_LEVEL")
    if log_level:
        config_data["log_level"] = log_level

    password = os.getenv("ALERTBRIDGE_XMPP_PASSWORD")
    if password:
        config_data.setdefault("xmpp", {})["password"] = password

    http_port = os.getenv("ALERTBRIDGE_HTTP_PORT")
    if http_port:
        config_data.setdefault("http", {})["port"] = int(http_port)

    return GatewayConfig(**config_data)
