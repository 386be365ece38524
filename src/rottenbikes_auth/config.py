"""Client configuration."""

import logging
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from rottenbikes_auth.models.attempt import ClientType
from rottenbikes_auth.storage import DEFAULT_STORE_PATH

logger = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".rottenbikes" / "config.json"
ENV_PREFIX = "ROTTENBIKES_"


class Settings(BaseSettings):
    """
    Auth client settings.

    Read from keyword arguments, then ROTTENBIKES_* environment variables,
    then the JSON config file handed to load_settings().
    ROTTENBIKES_POLL_TIMEOUT=none disables the poll timeout.

    Durations are in seconds. The default poll timeout matches the
    backend's 30 minute magic-link lifetime: polling past it can only
    ever return "not confirmed".
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_parse_none_str="none",
        extra="ignore",
    )

    api_url: str = Field(
        default="http://localhost:8080",
        description="Base URL of the RottenBikes API",
    )
    client_type: ClientType = Field(
        default=ClientType.WEB,
        description="Execution context; mobile clients tag requests with origin=mobile",
    )
    poll_interval: float = Field(
        default=3.0,
        description="Seconds between poll ticks",
        gt=0,
    )
    poll_timeout: Optional[float] = Field(
        default=1800.0,
        description="Give up polling after this many seconds; None polls until cancelled",
        gt=0,
    )
    auto_poll: bool = Field(
        default=True,
        description="Mobile clients start polling as soon as a link is requested",
    )
    request_timeout: float = Field(
        default=30.0,
        description="HTTP timeout per request",
        gt=0,
    )
    store_path: Path = Field(
        default=DEFAULT_STORE_PATH,
        description="File backing the persistent token store",
    )
    captcha_token: Optional[str] = Field(
        default=None,
        description="Captcha proof sent when the caller supplies none (development backends)",
    )

    @property
    def is_mobile(self) -> bool:
        return self.client_type == ClientType.MOBILE

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # explicit arguments, then ROTTENBIKES_* variables, then the JSON config file
        return init_settings, env_settings, JsonConfigSettingsSource(settings_cls)


def load_settings(path: Optional[Union[str, Path]] = None, **overrides: Any) -> Settings:
    """Settings from the config file and environment. None overrides are ignored.

    A malformed config file raises ValueError.
    """
    config_file = Path(path).expanduser() if path else CONFIG_FILE

    class FileSettings(Settings):
        model_config = SettingsConfigDict(json_file=config_file)

    logger.debug("Loading settings from %s", config_file)
    loaded = FileSettings(**{k: v for k, v in overrides.items() if v is not None})
    return Settings.model_construct(**loaded.model_dump())
