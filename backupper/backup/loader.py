"""
Declarative trigger loader.

Reads the triggers file (YAML, or JSON which YAML accepts) and builds Job
instances through the component registry. Every problem with the file is
reported as a ConfigurationError before any stage of any job runs.

File shape:

    triggers:
      nightly:
        label: Nightly database backup
        split_into_chunks_of: 250
        databases:
          - type: PostgreSQL
            name: app
        archive:
          add: [/etc/nginx]
          exclude: ["*.log"]
        compressor: {type: Gzip}
        storages:
          - {type: S3, bucket: backups, keep: 7}
        notifiers:
          - {type: Mail, from_email: backup@example.com, to: ops@example.com}
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

from backupper.components import Category
from backupper.errors import ConfigurationError
from .job import Job
from .registry import ComponentRegistry, registry as default_registry

logger = logging.getLogger(__name__)

MEGABYTE = 1024 * 1024

TRIGGER_KEYS = {
    'label',
    'split_into_chunks_of',
    'databases',
    'archive',
    'compressor',
    'encryptor',
    'storages',
    'notifiers',
}


def load_config_file(path) -> Dict[str, Dict[str, Any]]:
    """
    Read the trigger definitions from a file.

    Args:
        path: Path to the triggers file

    Returns:
        Mapping of trigger name -> trigger definition

    Raises:
        ConfigurationError: If the file is missing, unreadable or malformed
    """
    if not path:
        raise ConfigurationError("No triggers file configured (set BACKUPPER_CONFIG)")

    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Triggers file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse {path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Failed to read {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping with a 'triggers' key")

    triggers = data.get('triggers') or {}
    if not isinstance(triggers, dict):
        raise ConfigurationError(f"{path}: 'triggers' must map trigger names to definitions")

    for name, definition in triggers.items():
        if not isinstance(name, str):
            raise ConfigurationError(f"{path}: trigger names must be strings, got {name!r}")
        if definition is not None and not isinstance(definition, dict):
            raise ConfigurationError(f"{path}: definition of trigger '{name}' must be a mapping")

    return {name: definition or {} for name, definition in triggers.items()}


def available_triggers(path) -> List[str]:
    """Names of the triggers defined in a file, sorted."""
    return sorted(load_config_file(path))


def build_job(trigger: str, definition: Mapping[str, Any],
              registry: ComponentRegistry = default_registry) -> Job:
    """
    Build a Job from a trigger definition.

    Args:
        trigger: Trigger name
        definition: Trigger definition read from the triggers file
        registry: Registry used to resolve component types

    Returns:
        Fully configured Job

    Raises:
        ConfigurationError: If the definition or any component is invalid
    """
    if not isinstance(definition, Mapping):
        raise ConfigurationError(f"Trigger '{trigger}': definition must be a mapping")

    unknown = sorted(set(definition) - TRIGGER_KEYS)
    if unknown:
        raise ConfigurationError(
            f"Trigger '{trigger}': unknown key(s) {', '.join(map(str, unknown))}. "
            f"Valid keys: {sorted(TRIGGER_KEYS)}"
        )

    try:
        archive = definition.get('archive') or {}
        if not isinstance(archive, Mapping):
            raise ConfigurationError("'archive' must be a mapping with 'add' and 'exclude'")
        unknown_archive = sorted(set(archive) - {'add', 'exclude'})
        if unknown_archive:
            raise ConfigurationError(f"unknown archive key(s) {', '.join(map(str, unknown_archive))}")

        return Job(
            trigger=trigger,
            label=str(definition.get('label') or ''),
            databases=_build_list(registry, Category.DATABASE, definition.get('databases')),
            storages=_build_list(registry, Category.STORAGE, definition.get('storages')),
            compressor=_build_optional(registry, Category.COMPRESSOR, definition.get('compressor')),
            encryptor=_build_optional(registry, Category.ENCRYPTOR, definition.get('encryptor')),
            notifiers=_build_list(registry, Category.NOTIFIER, definition.get('notifiers')),
            archive_paths=_string_list('archive.add', archive.get('add')),
            archive_excludes=_string_list('archive.exclude', archive.get('exclude')),
            splitter_chunk_size=_chunk_size(definition.get('split_into_chunks_of')),
            registry=registry
        )
    except ConfigurationError as e:
        if str(e).startswith(f"Trigger '{trigger}'"):
            raise
        raise ConfigurationError(f"Trigger '{trigger}': {e}") from e


def load_jobs(path, triggers: Optional[Sequence[str]] = None,
              registry: ComponentRegistry = default_registry) -> List[Job]:
    """
    Load jobs from a triggers file.

    Args:
        path: Path to the triggers file
        triggers: Trigger names to load, in order (default: all, sorted)
        registry: Registry used to resolve component types

    Returns:
        List of jobs

    Raises:
        ConfigurationError: On the first invalid or unknown trigger
    """
    definitions = load_config_file(path)
    names = list(triggers) if triggers is not None else sorted(definitions)

    jobs = []
    for name in names:
        if name not in definitions:
            raise unknown_trigger(name, definitions)
        jobs.append(build_job(name, definitions[name], registry))
    logger.debug("Loaded %d job(s) from %s", len(jobs), path)
    return jobs


def unknown_trigger(name: str, definitions: Mapping[str, Any]) -> ConfigurationError:
    available = ', '.join(sorted(definitions)) or 'none'
    return ConfigurationError(f"Unknown trigger '{name}'. Available: {available}")


def _build_list(registry: ComponentRegistry, category: Category, entries) -> list:
    if entries is None:
        return []
    if not isinstance(entries, list):
        entries = [entries]
    return [_build_component(registry, category, entry) for entry in entries]


def _build_optional(registry: ComponentRegistry, category: Category, entry):
    if entry is None:
        return None
    return _build_component(registry, category, entry)


def _build_component(registry: ComponentRegistry, category: Category, entry):
    """Build a component from `{type: Name, option: value, ...}` or a bare type name."""
    if isinstance(entry, str):
        return registry.build(category, entry)

    if not isinstance(entry, Mapping):
        raise ConfigurationError(f"{category.value} entry must be a mapping, got {entry!r}")

    options = dict(entry)
    kind = options.pop('type', None)
    if not kind:
        raise ConfigurationError(f"{category.value} entry is missing 'type': {entry!r}")
    return registry.build(category, kind, options)


def _string_list(key: str, value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigurationError(f"'{key}' must be a string or a list of strings")
    return list(value)


def _chunk_size(megabytes) -> Optional[int]:
    """Convert split_into_chunks_of (MB) to bytes."""
    if megabytes is None:
        return None
    if isinstance(megabytes, bool) or not isinstance(megabytes, int) or megabytes < 1:
        raise ConfigurationError(
            f"'split_into_chunks_of' must be a positive number of megabytes, got {megabytes!r}"
        )
    return megabytes * MEGABYTE
