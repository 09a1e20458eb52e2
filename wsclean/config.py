"""wsclean configuration read from environment variables."""

import os
from pathlib import Path
from typing import Annotated, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .exceptions import ConfigurationError

ENV_COMMAND = "COMMAND"
ENV_WORKSPACE = "WORKSPACE"
ENV_KEY = "KEY"
ENV_CLEAN_STRATEGY = "CLEAN_STRATEGY"
ENV_PERCENTAGE_TO_KEEP_AVAILABLE = "PERCENTAGE_TO_KEEP_AVAILABLE"
ENV_UNUSED_N_DAYS = "UNUSED_N_DAYS"
ENV_AVAILABILITY_FORMULA = "AVAILABILITY_FORMULA"

STRATEGY_SEPARATOR = ":"

AvailabilityFormula = Literal["direct", "legacy"]

# Strategy parameters stay raw strings until the strategy that uses them runs
_STRATEGY_INTEGERS: Dict[str, TypeAdapter] = {
    "percentage_to_keep_available": TypeAdapter(Annotated[int, Field(ge=0, le=100)]),
    "unused_n_days": TypeAdapter(Annotated[int, Field(ge=0)]),
}


class Settings(BaseModel):
    """Settings for one invocation.

    Every field is optional at construction time; commands call ``require``
    for the values they actually need, so a missing variable is only an error
    for the command (or strategy) that uses it.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )

    command: Optional[str] = Field(default=None, alias=ENV_COMMAND)
    workspace: Optional[Path] = Field(default=None, alias=ENV_WORKSPACE)
    key: Optional[str] = Field(default=None, alias=ENV_KEY)
    clean_strategy: Optional[str] = Field(default=None, alias=ENV_CLEAN_STRATEGY)
    percentage_to_keep_available: Optional[str] = Field(default=None, alias=ENV_PERCENTAGE_TO_KEEP_AVAILABLE)
    unused_n_days: Optional[str] = Field(default=None, alias=ENV_UNUSED_N_DAYS)
    availability_formula: AvailabilityFormula = Field(default="direct", alias=ENV_AVAILABILITY_FORMULA)

    def require(self, field_name: str):
        """Return a setting's value or raise if it was not provided.

        Strategy parameters (``PERCENTAGE_TO_KEEP_AVAILABLE``, ``UNUSED_N_DAYS``)
        are parsed and range-checked here, so a bad value only fails the
        strategy that reads it.

        Raises:
            ConfigurationError: If the setting is unset or not a valid integer
        """
        value = getattr(self, field_name)
        env_name = type(self).model_fields[field_name].alias or field_name.upper()
        if value is None or value == "":
            raise ConfigurationError(f"{env_name} environment variable is not set, exiting")

        adapter = _STRATEGY_INTEGERS.get(field_name)
        if adapter is None:
            return value
        try:
            return adapter.validate_python(value)
        except ValidationError as e:
            problems = "; ".join(err["msg"] for err in e.errors())
            raise ConfigurationError(f"Invalid configuration: {env_name}: {problems}") from e

    @property
    def strategies(self) -> List[str]:
        """Ordered strategy names from ``CLEAN_STRATEGY`` (empty segments dropped)."""
        raw = self.require("clean_strategy")
        return [name.strip() for name in raw.split(STRATEGY_SEPARATOR) if name.strip()]


def load_settings(environ: Optional[Mapping[str, str]] = None, **overrides) -> Settings:
    """Build settings from environment variables.

    Empty variables count as unset. Keyword overrides (by field name) take
    precedence over the environment; ``None`` overrides are ignored.

    Args:
        environ: Mapping to read from (defaults to ``os.environ``)
        **overrides: Field values supplied by the caller, e.g. CLI options

    Returns:
        Validated Settings

    Raises:
        ConfigurationError: If a provided value is invalid (unknown formula)
    """
    if environ is None:
        environ = os.environ

    data = {}
    for field_name, field in Settings.model_fields.items():
        value = environ.get(field.alias)
        if value is not None and value.strip() != "":
            data[field_name] = value
    for field_name, value in overrides.items():
        if value is not None:
            data[field_name] = value

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(_describe_error(err) for err in e.errors())
        raise ConfigurationError(f"Invalid configuration: {problems}") from e


def _describe_error(err) -> str:
    location = str(err["loc"][0]) if err["loc"] else ""
    field = Settings.model_fields.get(location)
    name = field.alias if field is not None else location
    return f"{name}: {err['msg']}" if name else err["msg"]


__all__ = [
    "ENV_AVAILABILITY_FORMULA",
    "ENV_CLEAN_STRATEGY",
    "ENV_COMMAND",
    "ENV_KEY",
    "ENV_PERCENTAGE_TO_KEEP_AVAILABLE",
    "ENV_UNUSED_N_DAYS",
    "ENV_WORKSPACE",
    "STRATEGY_SEPARATOR",
    "AvailabilityFormula",
    "Settings",
    "load_settings",
]
