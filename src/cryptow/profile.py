# SPDX-FileCopyrightText: 2026 Cryptow Contributors
#
# SPDX-License-Identifier: GPL-3.0-or-later

"""Profile definitions and injector resolution.

Profiles live in ``profiles.yaml``::

    profiles:
      work:
        command: ["aws", "--profile", "work"]
        env:
          AWS_CONFIG_FILE: ~/vault/work/config
        cwd: ~/projects/work
        injectors:
          - type: gocryptfs
            password_entry: gocryptfs/work
            cipher_dir: ~/.local/share/cryptow/profiles/work/cipher
            mount_dir: ~/vault/work
          - type: env
            password_entry: tokens/work
            env: API_TOKEN

The ``profiles:`` wrapper is optional.  Keys may be written in snake_case
or camelCase.  A volume injector that omits ``password_entry``,
``cipher_dir`` or ``mount_dir`` inherits the profile-level key of the same
name, and the directories finally default to per-profile locations under
the data directory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml

from .config import Settings
from .errors import ConfigError, ProfileNotFoundError, ProfileValidationError

logger = logging.getLogger(__name__)

VOLUME_INJECTOR_TYPE = "gocryptfs"
ENV_INJECTOR_TYPE = "env"


@dataclass(frozen=True)
class VolumeInjector:
    """An encrypted directory mounted for the duration of a session."""

    password_entry: str
    cipher_dir: str
    mount_dir: str
    kind: Literal["gocryptfs"] = VOLUME_INJECTOR_TYPE


@dataclass(frozen=True)
class EnvInjector:
    """A secret exposed to the child as an environment variable."""

    password_entry: str
    env_var: str
    kind: Literal["env"] = ENV_INJECTOR_TYPE


Injector = VolumeInjector | EnvInjector


@dataclass(frozen=True)
class Profile:
    """A validated profile, immutable for the rest of the invocation."""

    name: str
    command: tuple[str, ...]
    injectors: tuple[Injector, ...]
    env: dict[str, str] = field(default_factory=lambda: dict[str, str]())
    working_dir: str | None = None


# =============================================================================
# Profiles file
# =============================================================================

def read_profiles_file(path: Path) -> dict[str, Any] | None:
    """Parse the profiles file into ``{name: raw definition}``.

    Definitions are not checked here, so one malformed profile never hides
    its siblings; :func:`build_profile` rejects it when it is resolved.

    Returns:
        ``None`` when the file does not exist, an empty dict when it is
        empty.

    Raises:
        ConfigError: On YAML syntax errors or an unexpected layout.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ConfigError(f"Failed to read profiles YAML at {path}: {e}")

    if not content.strip():
        return {}

    try:
        parsed = yaml.safe_load(content)
    except yaml.YAMLError as e:
        detail = " ".join(str(e).split())
        raise ConfigError(f"Failed to parse profiles YAML at {path}: {detail}")

    raw_profiles = parsed
    if isinstance(parsed, dict) and "profiles" in parsed:
        raw_profiles = parsed["profiles"]

    if raw_profiles is None:
        return {}
    if not isinstance(raw_profiles, dict):
        raise ConfigError(
            f"Profiles YAML at {path} must map profile names to definitions."
        )

    return {str(name): definition for name, definition in raw_profiles.items()}


def list_profile_names(settings: Settings) -> list[str]:
    """Return configured profile names, sorted."""
    profiles = read_profiles_file(settings.profiles_file)
    return sorted(profiles or {})


def resolve_profile(name: str, settings: Settings) -> Profile:
    """Load, validate and return the profile called *name*.

    Ensures the profile's private data directory exists.

    Raises:
        ProfileNotFoundError: If the profiles file or the profile is missing.
        ProfileValidationError: If the definition is malformed.
        ConfigError: If the profiles file cannot be parsed.
    """
    path = settings.profiles_file
    profiles = read_profiles_file(path)
    if profiles is None:
        raise ProfileNotFoundError(f"Profiles configuration not found at {path}")

    if name not in profiles:
        raise ProfileNotFoundError(f"Profile '{name}' not found in {path}")

    profile = build_profile(name, profiles[name], settings)

    data_dir = settings.profile_data_dir(name)
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"Cannot create state directory {data_dir}: {e}")
    return profile


# =============================================================================
# Validation
# =============================================================================

def _read_str(source: dict[str, Any], *keys: str, owner: str) -> str | None:
    """Return the first present, non-null value among *keys* as a string.

    An explicitly empty value is rejected rather than treated as absent, so a
    blank ``mount_dir`` never falls back to a default silently.
    """
    for key in keys:
        value = source.get(key)
        if value is None:
            continue
        text = str(value)
        if not text.strip():
            raise ProfileValidationError(f"{owner} has an empty '{key}'.")
        return text
    return None


def _build_injector(
    profile_name: str,
    index: int,
    definition: Any,
    raw: dict[str, Any],
    settings: Settings,
) -> Injector:
    where = f"injector #{index} in profile '{profile_name}'"
    owner = f"Injector #{index} in profile '{profile_name}'"
    profile_owner = f"Profile '{profile_name}'"

    if not isinstance(definition, dict):
        raise ProfileValidationError(f"{owner} must be an object-like mapping.")

    kind = _read_str(definition, "type", owner=owner)
    if kind is None:
        raise ProfileValidationError(f"{owner} is missing 'type'.")

    if kind == VOLUME_INJECTOR_TYPE:
        entry = (
            _read_str(definition, "password_entry", "passwordEntry", owner=owner)
            or _read_str(raw, "password_entry", "passwordEntry", owner=profile_owner)
        )
        if entry is None:
            raise ProfileValidationError(f"gocryptfs {where} is missing 'password_entry'.")
        cipher_dir = (
            _read_str(definition, "cipher_dir", "cipherDir", owner=owner)
            or _read_str(raw, "cipher_dir", "cipherDir", owner=profile_owner)
            or str(settings.default_cipher_dir(profile_name))
        )
        mount_dir = (
            _read_str(definition, "mount_dir", "mountDir", owner=owner)
            or _read_str(raw, "mount_dir", "mountDir", owner=profile_owner)
            or str(settings.default_mount_dir(profile_name))
        )
        return VolumeInjector(
            password_entry=entry,
            cipher_dir=settings.expand(cipher_dir),
            mount_dir=settings.expand(mount_dir),
        )

    if kind == ENV_INJECTOR_TYPE:
        entry = _read_str(definition, "password_entry", "passwordEntry", owner=owner)
        if entry is None:
            raise ProfileValidationError(f"env {where} is missing 'password_entry'.")
        env_var = _read_str(definition, "env", "variable", "name", owner=owner)
        if env_var is None:
            raise ProfileValidationError(f"env {where} is missing 'env'.")
        return EnvInjector(password_entry=entry, env_var=env_var)

    raise ProfileValidationError(f"{owner} has unsupported type '{kind}'.")


def build_profile(name: str, raw: Any, settings: Settings) -> Profile:
    """Validate a raw definition and build a :class:`Profile`."""
    if not isinstance(raw, dict):
        raise ProfileValidationError(f"Profile '{name}' must be an object-like mapping.")

    command_value = raw.get("command")
    if isinstance(command_value, list):
        command = tuple(settings.expand(str(part)) for part in command_value)
    elif command_value is None or command_value == "":
        command = ()
    else:
        command = (settings.expand(str(command_value)),)
    if not command:
        raise ProfileValidationError(f"Profile '{name}' is missing a 'command' definition.")

    env_raw = raw.get("env") or {}
    if not isinstance(env_raw, dict):
        raise ProfileValidationError(f"Profile '{name}' has invalid 'env' definition (must be a mapping).")
    env = {str(k): settings.expand(str(v)) for k, v in env_raw.items()}

    working_dir_raw = _read_str(raw, "cwd", "working_dir", "workingDir", owner=f"Profile '{name}'")
    working_dir = settings.expand(working_dir_raw) if working_dir_raw else None

    injectors_raw = raw.get("injectors")
    if injectors_raw is None:
        injectors_raw = []
    if not isinstance(injectors_raw, list):
        raise ProfileValidationError(
            f"Profile '{name}' has invalid 'injectors' definition (must be an array)."
        )

    injectors = tuple(
        _build_injector(name, index, definition, raw, settings)
        for index, definition in enumerate(injectors_raw, start=1)
    )
    if not injectors:
        raise ProfileValidationError(f"Profile '{name}' is missing 'injectors'.")

    seen: set[str] = set()
    for injector in volume_injectors_of(injectors):
        if injector.mount_dir in seen:
            raise ProfileValidationError(
                f"Profile '{name}' mounts more than one volume at {injector.mount_dir}."
            )
        seen.add(injector.mount_dir)

    logger.debug("Resolved profile '%s' with %d injector(s)", name, len(injectors))
    return Profile(
        name=name,
        command=command,
        injectors=injectors,
        env=env,
        working_dir=working_dir,
    )


# =============================================================================
# Injector resolution
# =============================================================================

def volume_injectors_of(injectors: tuple[Injector, ...]) -> list[VolumeInjector]:
    result: list[VolumeInjector] = []
    for injector in injectors:
        match injector:
            case VolumeInjector():
                result.append(injector)
            case EnvInjector():
                pass
            case _:
                raise TypeError(f"Unknown injector variant: {injector!r}")
    return result


def env_injectors_of(injectors: tuple[Injector, ...]) -> list[EnvInjector]:
    result: list[EnvInjector] = []
    for injector in injectors:
        match injector:
            case EnvInjector():
                result.append(injector)
            case VolumeInjector():
                pass
            case _:
                raise TypeError(f"Unknown injector variant: {injector!r}")
    return result


def volume_injectors(profile: Profile) -> list[VolumeInjector]:
    """Volume injectors of *profile*, in declared order."""
    return volume_injectors_of(profile.injectors)


def env_injectors(profile: Profile) -> list[EnvInjector]:
    """Secret-environment injectors of *profile*, in declared order."""
    return env_injectors_of(profile.injectors)
