"""
Configuration - Crawl options and settings loaded from key/value files.

Two files drive a crawl:

- the *settings* file selects the cache and recorder implementations and
  carries their paths (``CALL_RECORDER__WARC_PATH``, ...)
- the *crawl options* file carries the crawl policy (``CONCURRENT_WORKERS``,
  ``PAGE_LOAD_TIMEOUT``, ...)

Both may be Java style ``.properties`` files or YAML mappings.
"""

import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError


DEFAULT_PATTERN_DELIM = ";"
DEFAULT_CONSTANT_DATE = "2024-01-01T00:00:00Z"
DEFAULT_CONSTANT_RANDOM = 0.5

_PATTERN_KEYS = (
    "EXTERNAL_DOMAIN_INCLUSION_PATTERNS",
    "EXTERNAL_DOMAIN_EXLCLUSION_PATTERNS",
    "EXTERNAL_DOMAIN_EXCLUSION_PATTERNS",
)


class CrawlOptions(BaseModel):
    """
    Crawl policy options.

    Field aliases are the upper-case keys of the crawl options file; fields
    may also be populated by their Python names.

    Example:
        >>> options = CrawlOptions.from_properties({"CONCURRENT_WORKERS": "4"})
        >>> options.page_load_timeout
        20000
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    concurrent_workers: int = Field(alias="CONCURRENT_WORKERS", gt=0)
    page_load_timeout: int = Field(default=20000, alias="PAGE_LOAD_TIMEOUT", ge=0)
    dom_stability_check_interval: int = Field(default=1000, alias="DOM_STABILITY_CHECK_INTERVAL", ge=0)
    max_ancestor_click_depth: int = Field(default=100, alias="MAX_ANCESTOR_CLICK_DEPTH", ge=0)
    submit_forms: bool = Field(default=False, alias="SUBMIT_FORMS")
    limit_single_concurrent_hit_per_domain: bool = Field(
        default=True, alias="LIMIT_TO_SINGLE_CONCURRENT_HIT_PER_DOMAIN"
    )
    user_agent: Optional[str] = Field(default=None, alias="USER_AGENT")

    use_constant_date: bool = Field(default=False, alias="USE_CONSTANT_DATE")
    constant_date: str = Field(default=DEFAULT_CONSTANT_DATE, alias="CONSTANT_DATE")
    use_constant_random: bool = Field(default=False, alias="USE_CONSTANT_RANDOM")
    constant_random: float = Field(default=DEFAULT_CONSTANT_RANDOM, alias="CONSTANT_RANDOM")

    include_local_file_uris: bool = Field(default=False, alias="INCLUDE_LOCAL_FILE_URIS")
    include_subdomains_of_seeds: bool = Field(default=True, alias="INCLUDE_SUBDOMAINS_OF_SEEDS")
    include_external_domain_patterns: List[str] = Field(
        default_factory=list, alias="EXTERNAL_DOMAIN_INCLUSION_PATTERNS"
    )
    exclude_external_domain_patterns: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices(
            "EXTERNAL_DOMAIN_EXLCLUSION_PATTERNS",
            "EXTERNAL_DOMAIN_EXCLUSION_PATTERNS",
            "exclude_external_domain_patterns",
        ),
    )

    @model_validator(mode="before")
    @classmethod
    def _split_pattern_lists(cls, data: Any) -> Any:
        """Split delimited pattern strings using DOMAIN_INCLUSION_PATTERN_DELIM"""
        if not isinstance(data, Mapping):
            return data

        data = dict(data)
        delim = data.pop("DOMAIN_INCLUSION_PATTERN_DELIM", None) or DEFAULT_PATTERN_DELIM

        for key in _PATTERN_KEYS:
            value = data.get(key)
            if isinstance(value, str):
                data[key] = split_patterns(value, delim)

        return data

    @field_validator("user_agent")
    @classmethod
    def _blank_user_agent_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @field_validator("include_external_domain_patterns", "exclude_external_domain_patterns")
    @classmethod
    def _patterns_compile(cls, patterns: List[str]) -> List[str]:
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid domain pattern {pattern!r}: {e}") from e
        return patterns

    @classmethod
    def from_properties(cls, properties: Mapping[str, Any]) -> "CrawlOptions":
        """
        Build options from a crawl options mapping.

        Args:
            properties: Key/value pairs (as read by :func:`load_properties`)

        Returns:
            Validated CrawlOptions

        Raises:
            ConfigurationError: If a required key is missing or a value is invalid
        """
        try:
            return cls.model_validate(dict(properties))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid crawl options: {_describe(e)}") from e

    @property
    def constant_date_string(self) -> Optional[str]:
        """Date injected into pages, or None when the shim is disabled"""
        return self.constant_date if self.use_constant_date else None

    @property
    def constant_random_value(self) -> Optional[float]:
        """Value returned by Math.random in pages, or None when disabled"""
        return self.constant_random if self.use_constant_random else None


class Settings(BaseModel):
    """
    Crawler settings (implementation selectors and logging).

    The raw mapping is kept in ``properties`` so that cache and recorder
    implementations can read their own keys.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    call_recorder: str = Field(default="warc", alias="CALL_RECORDER")
    server_response_cache: str = Field(default="disk", alias="SERVER_RESPONSE_CACHE")
    reference_polling_interval: int = Field(default=2000, alias="REFERENCE_POLLING_INTERVAL", ge=0)
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="console", alias="LOG_FORMAT")
    properties: Dict[str, str] = Field(default_factory=dict)

    @field_validator("reference_polling_interval", mode="before")
    @classmethod
    def _strip_long_suffix(cls, value: Any) -> Any:
        # Long literals ("2000L") show up in older settings files
        if isinstance(value, str):
            return value.strip().rstrip("lL")
        return value

    @field_validator("log_format")
    @classmethod
    def _known_log_format(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("console", "json"):
            raise ValueError("LOG_FORMAT must be 'console' or 'json'")
        return value

    @classmethod
    def from_properties(cls, properties: Mapping[str, Any]) -> "Settings":
        """
        Build settings from a settings mapping.

        Raises:
            ConfigurationError: If a value is invalid
        """
        data = dict(properties)
        data["properties"] = {str(k): str(v) for k, v in properties.items()}
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings: {_describe(e)}") from e


def split_patterns(value: str, delim: str = DEFAULT_PATTERN_DELIM) -> List[str]:
    """
    Split a delimited pattern list, trimming entries and dropping empty ones.

    Args:
        value: Delimited string
        delim: Delimiter (literal, not a regex)

    Returns:
        List of patterns
    """
    return [pattern.strip() for pattern in value.split(delim) if pattern.strip()]


def require(properties: Mapping[str, str], key: str) -> str:
    """
    Get a required setting.

    Raises:
        ConfigurationError: If the key is not defined
    """
    value = properties.get(key)
    if value is None or not str(value).strip():
        raise ConfigurationError(f"Setting {key} not defined")
    return str(value)


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse a boolean setting the way the options model does"""
    if value is None:
        return default
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def load_properties(path: Union[str, Path]) -> Dict[str, str]:
    """
    Load a key/value file.

    ``.yaml`` / ``.yml`` files are parsed as a YAML mapping; anything else is
    read as a Java style properties file.

    Args:
        path: File path

    Returns:
        Mapping of keys to string values

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    path = Path(path)

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e

    if path.suffix.lower() in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a mapping")
        delim = str(data.get("DOMAIN_INCLUSION_PATTERN_DELIM") or DEFAULT_PATTERN_DELIM)
        return {str(k): _yaml_scalar(v, delim) for k, v in data.items() if v is not None}

    return parse_properties(text)


def parse_properties(text: str) -> Dict[str, str]:
    """
    Parse Java style properties text.

    Supports ``key=value`` and ``key: value`` lines, ``#`` and ``!`` comments,
    and backslash line continuations.
    """
    properties: Dict[str, str] = {}
    pending = ""

    for raw_line in text.splitlines():
        line = raw_line.strip() if not pending else raw_line.lstrip()

        if not pending and (not line or line[0] in "#!"):
            continue

        if line.endswith("\\") and not line.endswith("\\\\"):
            pending += line[:-1]
            continue

        _parse_property_line(pending + line, properties)
        pending = ""

    if pending:
        _parse_property_line(pending, properties)

    return properties


def load_seed_list(path: Union[str, Path]) -> List[str]:
    """
    Load seed URLs, one per line; blank lines and ``#`` comments are skipped.

    Raises:
        ConfigurationError: If the file cannot be read
    """
    path = Path(path)

    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as e:
        raise ConfigurationError(f"Cannot read seed list {path}: {e}") from e

    return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]


def _parse_property_line(line: str, properties: Dict[str, str]) -> None:
    match = re.match(r"^([^=:\s]+)\s*[=:\s]\s*(.*)$", line)
    if match:
        properties[match.group(1)] = match.group(2).strip()
    else:
        properties[line.strip()] = ""


def _yaml_scalar(value: Any, delim: str) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return delim.join(str(v) for v in value)
    return str(value)


def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(loc) for loc in item.get("loc", ())) or "options"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)
