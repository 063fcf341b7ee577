"""
Configuration management and loading.

Handles router settings: provider profiles, the ordered fallback list and
per-provider quota limits.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from ..storage.db import DEFAULT_DB_PATH


class SelectionPolicy(Enum):
    """How the fallback handler picks among providers under their limits."""
    FIRST_UNDER_LIMIT = "first_under_limit"
    RANDOM_UNDER_LIMIT = "random_under_limit"


LIMIT_KEYS = (
    "tokens_per_minute",
    "tokens_per_hour",
    "tokens_per_day",
    "requests_per_minute",
    "requests_per_hour",
    "requests_per_day",
)


@dataclass(frozen=True)
class ProviderLimits:
    """Quota ceilings for one provider. ``None`` means no ceiling."""
    tokens_per_minute: Optional[int] = None
    tokens_per_hour: Optional[int] = None
    tokens_per_day: Optional[int] = None
    requests_per_minute: Optional[int] = None
    requests_per_hour: Optional[int] = None
    requests_per_day: Optional[int] = None

    def __post_init__(self):
        """Validate configured limits are positive."""
        for key in LIMIT_KEYS:
            value = getattr(self, key)
            if value is not None and value <= 0:
                raise ValueError(f"{key} must be > 0")


@dataclass(frozen=True)
class ProviderProfile:
    """Named settings profile a concrete provider handler is built from."""
    id: str
    name: str
    api_provider: str
    model: str
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None


@dataclass(frozen=True)
class VirtualProviderEntry:
    """One slot in the ordered fallback list."""
    provider_id: Optional[str]
    provider_name: Optional[str] = None
    limits: Optional[ProviderLimits] = None


@dataclass(frozen=True)
class SelectionConfig:
    """Selection behaviour of the fallback handler."""
    policy: SelectionPolicy = SelectionPolicy.FIRST_UNDER_LIMIT
    max_concurrent_loads: int = 4

    def __post_init__(self):
        if self.max_concurrent_loads <= 0:
            raise ValueError("max_concurrent_loads must be > 0")


@dataclass(frozen=True)
class RouterConfig:
    """Complete router configuration."""
    profiles: Dict[str, ProviderProfile]
    providers: Tuple[VirtualProviderEntry, ...]
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    db_path: str = DEFAULT_DB_PATH

    def get_entry(self, provider_id: str) -> Optional[VirtualProviderEntry]:
        """Get the fallback entry for a provider id, if configured."""
        for entry in self.providers:
            if entry.provider_id == provider_id:
                return entry
        return None


def load_router_config(path: str) -> RouterConfig:
    """Load and validate router configuration from YAML file.

    Strict validation ensures no silent misconfigurations, such as a
    misspelled limit key that would leave a provider unconstrained.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated RouterConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Router config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'storage', 'selection', 'profiles', 'providers'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    db_path = _parse_storage(raw_config.get('storage', {}))
    selection = _parse_selection(raw_config.get('selection', {}))

    profiles_data = raw_config.get('profiles', {})
    if not isinstance(profiles_data, dict):
        raise ValueError("'profiles' must be a dictionary")

    profiles = {}
    for profile_id, profile_data in profiles_data.items():
        profiles[str(profile_id)] = _parse_profile(str(profile_id), profile_data)

    if 'providers' not in raw_config:
        raise ValueError("Missing required 'providers' section")

    providers_data = raw_config['providers']
    if not isinstance(providers_data, list):
        raise ValueError("'providers' must be a list")

    providers = tuple(
        _parse_provider_entry(entry, f"providers[{index}]")
        for index, entry in enumerate(providers_data)
    )

    return RouterConfig(
        profiles=profiles,
        providers=providers,
        selection=selection,
        db_path=db_path
    )


def _parse_storage(data: Any) -> str:
    if not isinstance(data, dict):
        raise ValueError("'storage' must be a dictionary")

    unknown_keys = set(data.keys()) - {'db_path'}
    if unknown_keys:
        raise ValueError(f"Unknown keys in storage: {unknown_keys}")

    db_path = data.get('db_path', DEFAULT_DB_PATH)
    if not isinstance(db_path, str) or not db_path.strip():
        raise ValueError("'db_path' in storage must be a non-empty string")
    return db_path


def _parse_selection(data: Any) -> SelectionConfig:
    if not isinstance(data, dict):
        raise ValueError("'selection' must be a dictionary")

    unknown_keys = set(data.keys()) - {'policy', 'max_concurrent_loads'}
    if unknown_keys:
        raise ValueError(f"Unknown keys in selection: {unknown_keys}")

    policy = SelectionPolicy.FIRST_UNDER_LIMIT
    if 'policy' in data:
        policy_str = data['policy']
        if not isinstance(policy_str, str):
            raise ValueError("'policy' in selection must be a string")
        try:
            policy = SelectionPolicy(policy_str.lower())
        except ValueError:
            valid_policies = [p.value for p in SelectionPolicy]
            raise ValueError(f"'policy' in selection must be one of: {valid_policies}")

    max_loads = data.get('max_concurrent_loads', 4)
    if not _is_positive_int(max_loads):
        raise ValueError("'max_concurrent_loads' in selection must be a positive integer")

    return SelectionConfig(policy=policy, max_concurrent_loads=max_loads)


def _parse_profile(profile_id: str, data: Any) -> ProviderProfile:
    """Parse and validate a provider settings profile.

    Args:
        profile_id: Key of the profile under 'profiles'
        data: Profile configuration data

    Returns:
        Validated ProviderProfile

    Raises:
        ValueError: If configuration is invalid
    """
    path = f"profiles.{profile_id}"
    if not isinstance(data, dict):
        raise ValueError(f"Profile '{profile_id}' must be a dictionary")

    allowed_keys = {'name', 'api_provider', 'model', 'api_key_env', 'base_url'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    for required in ('name', 'api_provider', 'model'):
        if required not in data:
            raise ValueError(f"Missing required '{required}' in {path}")
        if not isinstance(data[required], str) or not data[required].strip():
            raise ValueError(f"'{required}' in {path} must be a non-empty string")

    for optional in ('api_key_env', 'base_url'):
        if optional in data and not isinstance(data[optional], str):
            raise ValueError(f"'{optional}' in {path} must be a string")

    return ProviderProfile(
        id=profile_id,
        name=data['name'],
        api_provider=data['api_provider'].lower(),
        model=data['model'],
        api_key_env=data.get('api_key_env'),
        base_url=data.get('base_url')
    )


def _parse_provider_entry(data: Any, path: str) -> VirtualProviderEntry:
    """Parse one entry of the ordered fallback list.

    Entries missing an id or name are kept; the handler skips them when it
    loads providers.
    """
    if not isinstance(data, dict):
        raise ValueError(f"{path} must be a dictionary")

    allowed_keys = {'provider_id', 'provider_name', 'limits'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    provider_id = data.get('provider_id')
    provider_name = data.get('provider_name')
    if provider_id is not None:
        provider_id = str(provider_id)
    if provider_name is not None:
        provider_name = str(provider_name)

    limits = None
    if data.get('limits') is not None:
        limits = _parse_limits(data['limits'], f"{path}.limits")

    return VirtualProviderEntry(
        provider_id=provider_id,
        provider_name=provider_name,
        limits=limits
    )


def _parse_limits(data: Any, path: str) -> ProviderLimits:
    if not isinstance(data, dict):
        raise ValueError(f"{path} must be a dictionary")

    unknown_keys = set(data.keys()) - set(LIMIT_KEYS)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    values: Dict[str, int] = {}
    for key, value in data.items():
        if value is None:
            continue
        if not _is_positive_int(value):
            raise ValueError(f"'{key}' in {path} must be a positive integer")
        values[key] = value

    return ProviderLimits(**values)


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0
