"""Configuration settings for the file sharing server.

Settings are read once at startup from a YAML document laid over the defaults
below and kept as an immutable snapshot.
"""
import logging
import re
from pathlib import Path
from typing import Any, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DEFAULT_CONFIG_PATH = "fileserver.yaml"

# Server defaults
DEFAULT_ADDRESS = ":8090"
DEFAULT_READ_TIMEOUT = 5.0  # seconds
DEFAULT_WRITE_TIMEOUT = 10.0
DEFAULT_IDLE_TIMEOUT = 30.0

# Uploader defaults
DEFAULT_STORAGE_DIR = "storage"
DEFAULT_MAX_UPLOAD_SIZE_MB = 3072
DEFAULT_MAX_FORM_MEM_SIZE_MB = 32

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


class ConfigError(Exception):
    """Raised when an existing configuration file cannot be used."""


def parse_duration(value: Union[str, int, float]) -> float:
    """Convert a duration to seconds.

    Accepts bare numbers (seconds) or duration strings made of number/unit
    pairs such as ``"5s"``, ``"250ms"`` or ``"1m30s"``.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip()
    if text == "0":
        return 0.0

    total = 0.0
    position = 0
    while position < len(text):
        match = _DURATION_PART.match(text, position)
        if not match:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position == 0:
        raise ValueError(f"invalid duration: {value!r}")
    return total


def split_address(address: str) -> Tuple[str, int]:
    """Split a ``host:port`` address. An empty host means all interfaces."""
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit() or int(port) > 65535:
        raise ValueError(f"invalid address {address!r}, expected host:port")
    host = host.strip("[]") or "0.0.0.0"
    return host, int(port)


class ServerConfig(BaseModel):
    """Settings of the HTTP listener."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    address: str = DEFAULT_ADDRESS
    read_timeout: float = Field(DEFAULT_READ_TIMEOUT, alias="readTimeout", ge=0)
    write_timeout: float = Field(DEFAULT_WRITE_TIMEOUT, alias="writeTimeout", ge=0)
    idle_timeout: float = Field(DEFAULT_IDLE_TIMEOUT, alias="idleTimeout", ge=0)

    @field_validator("read_timeout", "write_timeout", "idle_timeout", mode="before")
    @classmethod
    def validate_duration(cls, v):
        return parse_duration(v)

    @field_validator("address")
    @classmethod
    def validate_address(cls, v):
        split_address(v)
        return v

    @property
    def host(self) -> str:
        return split_address(self.address)[0]

    @property
    def port(self) -> int:
        return split_address(self.address)[1]


class UploaderConfig(BaseModel):
    """Settings of the upload/download handlers.

    Size limits are given in megabytes; the ``max_*_size`` properties return bytes.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    storage_dir: Path = Field(Path(DEFAULT_STORAGE_DIR), alias="storageDir")
    max_upload_size_mb: int = Field(DEFAULT_MAX_UPLOAD_SIZE_MB, alias="maxUploadSizeMB", gt=0)
    max_form_mem_size_mb: int = Field(DEFAULT_MAX_FORM_MEM_SIZE_MB, alias="maxFormMemSizeMB", gt=0)

    @property
    def max_upload_size(self) -> int:
        """Maximum permitted size of a whole upload request body, in bytes."""
        return self.max_upload_size_mb << 20

    @property
    def max_form_mem_size(self) -> int:
        """Size above which a form part is spooled to disk, in bytes."""
        return self.max_form_mem_size_mb << 20


class Config(BaseModel):
    model_config = ConfigDict(frozen=True)

    server: ServerConfig = Field(default_factory=ServerConfig)
    uploader: UploaderConfig = Field(default_factory=UploaderConfig)

    @field_validator("server", "uploader", mode="before")
    @classmethod
    def empty_section(cls, v):
        # "server:" with nothing under it loads as None
        return {} if v is None else v


def load_config(path: Union[str, Path], logger: Optional[logging.Logger] = None) -> Config:
    """Load the configuration from a YAML file.

    A missing file is not an error: a warning is logged and the defaults are
    returned. Any other problem (unreadable file, invalid YAML, invalid
    values) raises ConfigError.
    """
    logger = logger or logging.getLogger(__name__)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data: Any = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning(f"config file '{path}' not found, using default settings.")
        return Config()
    except OSError as e:
        raise ConfigError(f"cannot read config file '{path}': {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse config file '{path}': {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file '{path}' must contain a mapping at the top level")

    try:
        config = Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid config file '{path}': {e}") from e

    logger.debug(f"Loaded configuration from {path}")
    return config
