"""Stack profiles shipped with the operator and the spec resolver."""

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from importlib import resources
from typing import List

import yaml
from pydantic import ValidationError

from coredb_operator.errors import StackLoadError
from coredb_operator.models.coredb import CoreDBSpec, PgConfig, StackType

from .types import ConfigEngine, StackProfile

logger = logging.getLogger(__name__)

TEMPLATE_FILES = {
    StackType.STANDARD: "standard.yaml",
    StackType.OLTP: "oltp.yaml",
    StackType.OLAP: "olap.yaml",
    StackType.MACHINE_LEARNING: "machine_learning.yaml",
    StackType.MESSAGE_QUEUE: "message_queue.yaml",
}

# Parameters the operator owns; profiles and overrides may not change them.
DISALLOWED_CONFIGS = {
    "config_file",
    "data_directory",
    "hba_file",
    "ident_file",
    "listen_addresses",
    "port",
}

INHERITED_FIELDS = ("image", "storage", "resources")


@dataclass
class ResolvedSpec:
    """A CoreDB spec with its stack profile applied."""

    spec: CoreDBSpec
    profile: StackProfile
    postgres_config: List[PgConfig] = field(default_factory=list)

    def config_value(self, name):
        for config in self.postgres_config:
            if config.name == name:
                return config.value
        return None


def _load_profile(stack_type):
    filename = TEMPLATE_FILES[stack_type]
    try:
        text = (
            resources.files("coredb_operator.stacks")
            .joinpath("templates", filename)
            .read_text(encoding="utf-8")
        )
        profile = StackProfile.model_validate(yaml.safe_load(text))
    except (OSError, yaml.YAMLError, ValidationError) as e:
        raise StackLoadError(f"failed to load stack template {filename}: {e}")

    if profile.name != stack_type:
        raise StackLoadError(
            f"stack template {filename} declares {profile.name.value}, expected {stack_type.value}"
        )
    for config in profile.postgres_config:
        if config.name in DISALLOWED_CONFIGS:
            raise StackLoadError(
                f"stack template {filename} sets operator owned parameter {config.name}"
            )
    return profile


@lru_cache(maxsize=None)
def load_stacks():
    """Load and validate every embedded profile once.

    Raises:
        StackLoadError: if any template is missing or invalid
    """
    stacks = {stack_type: _load_profile(stack_type) for stack_type in StackType}
    logger.info(f"Loaded {len(stacks)} stack profiles")
    return stacks


def get_stack(stack_type):
    return load_stacks()[StackType(stack_type)]


def merge_extensions(profile_extensions, spec_extensions):
    """Merge extension lists by name; spec entries replace profile entries."""
    by_name = {ext.name: ext for ext in spec_extensions}
    merged = []
    for ext in profile_extensions:
        if ext.name in by_name:
            merged.append(by_name.pop(ext.name))
        else:
            merged.append(ext.model_copy(deep=True))
    merged.extend(ext for ext in spec_extensions if ext.name in by_name)
    return merged


def merge_configs(*config_lists):
    """Merge parameter lists in order, later lists win, operator owned names dropped."""
    merged = {}
    for configs in config_lists:
        for config in configs:
            if config.name in DISALLOWED_CONFIGS:
                logger.warning(f"Ignoring operator owned Postgres parameter {config.name}")
                continue
            merged[config.name] = config
    return [merged[name] for name in sorted(merged)]


def resolve(spec):
    """Apply the spec's stack profile to it.

    Fields the user set explicitly win; unset ones take the profile value.
    Never mutates the cached profile.
    """
    profile = get_stack(spec.stack or StackType.STANDARD)
    explicit = spec.model_fields_set

    updates = {}
    for name in INHERITED_FIELDS:
        if name not in explicit:
            value = getattr(profile, name)
            updates[name] = value.model_copy(deep=True) if hasattr(value, "model_copy") else value
    updates["extensions"] = merge_extensions(profile.extensions, spec.extensions)
    updates["stack"] = profile.name

    merged_spec = spec.model_copy(update=updates)
    postgres_config = merge_configs(
        profile.runtime_config(merged_spec.resources),
        profile.postgres_config,
        spec.override_configs,
    )
    return ResolvedSpec(spec=merged_spec, profile=profile, postgres_config=postgres_config)


__all__ = [
    "ConfigEngine",
    "DISALLOWED_CONFIGS",
    "ResolvedSpec",
    "StackProfile",
    "get_stack",
    "load_stacks",
    "merge_configs",
    "merge_extensions",
    "resolve",
]
