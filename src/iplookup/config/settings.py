"""Settings loading for the iplookup CLI.

Brief:
  Reads an optional YAML file, merges command-line overrides and validates the
  result with a Pydantic model. The retry driver only ever sees a validated
  LookupSettings instance.

Inputs:
  - YAML config path and CLI override mapping

Outputs:
  - LookupSettings
"""

from __future__ import annotations

import math
import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, validator

DEFAULT_STUN_PORT = 3478


class LookupSettings(BaseModel):
    """Brief: Typed settings for one lookup run.

    Inputs:
      - server: default STUN server as host:port (CLI argument wins)
      - initial_interval: first receive timeout in seconds
      - budget: total seconds all rounds may wait
      - recv_buffer: largest datagram accepted
      - source_ip: optional local bind address
      - logging: mapping passed to init_logging()

    Outputs:
      - LookupSettings instance
    """

    server: Optional[str] = None
    initial_interval: float = Field(default=1.0, gt=0)
    budget: float = Field(default=31.0, gt=0)
    recv_buffer: int = Field(default=2048, ge=20, le=65535)
    source_ip: Optional[str] = None
    logging: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "forbid"

    @validator("initial_interval")
    def _initial_interval_finite(cls, v):
        if not math.isfinite(v):
            raise ValueError("initial_interval must be a finite number of seconds")
        return v

    @validator("budget")
    def _budget_covers_first_round(cls, v, values):
        if not math.isfinite(v):
            raise ValueError("budget must be a finite number of seconds")
        first = values.get("initial_interval")
        if first is not None and v < first:
            raise ValueError("budget must be at least initial_interval")
        return v

    @validator("server", pre=True)
    def _strip_server(cls, v):
        if v is None:
            return None
        text = str(v).strip()
        return text or None


def split_host_port(server: str, default_port: int = DEFAULT_STUN_PORT):
    """
    Brief: Split a server string into host and port.

    Inputs:
      - server: 'host:port', '[v6addr]:port', 'host' or a bare IPv6 literal
      - default_port: used when no port is given

    Outputs:
      - (host, port) tuple; raises ValueError on a bad port

    Example:
      >>> split_host_port('[2001:db8::1]:3478')
      ('2001:db8::1', 3478)
    """
    text = server.strip()
    if not text:
        raise ValueError("empty server address")
    if text.startswith("["):
        host, sep, rest = text[1:].partition("]")
        if not sep:
            raise ValueError(f"unterminated IPv6 literal in {server!r}")
        port_text = rest[1:] if rest.startswith(":") else ""
        if rest and not rest.startswith(":"):
            raise ValueError(f"unexpected text after IPv6 literal in {server!r}")
    elif text.count(":") == 1:
        host, _, port_text = text.partition(":")
    else:
        # Bare hostname or unbracketed IPv6 literal.
        host, port_text = text, ""
    if not host:
        raise ValueError(f"missing host in {server!r}")
    if not port_text:
        return host, default_port
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"invalid port in {server!r}")
    if not 0 < port <= 65535:
        raise ValueError(f"port out of range in {server!r}")
    return host, port


def load_settings(
    path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None
) -> LookupSettings:
    """
    Brief: Build LookupSettings from an optional YAML file plus overrides.

    Inputs:
      - path: YAML file path, or None for defaults only
      - overrides: values from the command line; None entries are ignored

    Outputs:
      - LookupSettings; raises ValueError with a readable message when the
        file cannot be read or does not validate
    """
    cfg: Dict[str, Any] = {}
    if path:
        try:
            with open(os.path.expanduser(path), "r") as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ValueError(f"Failed to read config {path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ValueError(f"Config {path} must be a mapping at top level")
        cfg.update(loaded)

    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key == "logging" and isinstance(value, dict):
            merged = dict(cfg.get("logging") or {})
            merged.update(value)
            cfg["logging"] = merged
        else:
            cfg[key] = value

    try:
        return LookupSettings(**cfg)
    except ValidationError as exc:
        where = f" in {path}" if path else ""
        raise ValueError(f"Invalid configuration{where}: {exc}") from exc
