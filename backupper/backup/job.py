"""
Job model - the resolved configuration of one trigger.
"""

import re
from dataclasses import dataclass, field
from typing import Optional, Tuple

from backupper.components import Category, Database, Storage, Compressor, Encryptor, Notifier
from backupper.errors import ConfigurationError
from .executor import Pipeline
from .registry import ComponentRegistry, registry as default_registry
from .result import RunResult

TRIGGER_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')


@dataclass(frozen=True)
class Job:
    """
    A trigger with its configured components.

    Jobs are immutable; component sequences are stored as tuples. Every
    component must be an instance of a class registered for its category.
    """

    trigger: str
    label: str = ''
    databases: Tuple[Database, ...] = ()
    storages: Tuple[Storage, ...] = ()
    compressor: Optional[Compressor] = None
    encryptor: Optional[Encryptor] = None
    notifiers: Tuple[Notifier, ...] = ()
    archive_paths: Tuple[str, ...] = ()
    archive_excludes: Tuple[str, ...] = ()
    splitter_chunk_size: Optional[int] = None
    registry: ComponentRegistry = field(default=default_registry, repr=False, compare=False)

    def __post_init__(self):
        for name in ('databases', 'storages', 'notifiers', 'archive_paths', 'archive_excludes'):
            object.__setattr__(self, name, tuple(getattr(self, name) or ()))

        if not isinstance(self.trigger, str) or not TRIGGER_PATTERN.match(self.trigger):
            raise ConfigurationError(
                f"Invalid trigger name {self.trigger!r}: use letters, digits, '-' and '_' only"
            )

        if not self.databases and not self.archive_paths:
            raise ConfigurationError(
                f"Trigger '{self.trigger}' has nothing to back up: configure a database or an archive path"
            )

        size = self.splitter_chunk_size
        if size is not None and (isinstance(size, bool) or not isinstance(size, int) or size < 1):
            raise ConfigurationError(
                f"Trigger '{self.trigger}': chunk size must be a positive number of bytes, got {size!r}"
            )

        self._check_components(Category.DATABASE, Database, self.databases)
        self._check_components(Category.STORAGE, Storage, self.storages)
        self._check_components(Category.NOTIFIER, Notifier, self.notifiers)
        if self.compressor is not None:
            self._check_components(Category.COMPRESSOR, Compressor, (self.compressor,))
        if self.encryptor is not None:
            self._check_components(Category.ENCRYPTOR, Encryptor, (self.encryptor,))

    def _check_components(self, category: Category, base: type, components):
        for component in components:
            if not isinstance(component, base):
                raise ConfigurationError(
                    f"Trigger '{self.trigger}': {component!r} is not a {category.value} component"
                )
            if not self.registry.is_registered(category, type(component)):
                raise ConfigurationError(
                    f"Trigger '{self.trigger}': {type(component).__name__} is not a registered "
                    f"{category.value} component"
                )

    @property
    def trigger_name(self) -> str:
        return self.trigger

    def execute(self, settings) -> RunResult:
        """
        Run the backup pipeline for this job.

        Args:
            settings: Settings with the workspace root and store concurrency

        Returns:
            RunResult of the run
        """
        return self.pipeline(settings).execute()

    def pipeline(self, settings) -> Pipeline:
        """A fresh pipeline for one run of this job."""
        return Pipeline(self, settings)

    def __repr__(self):
        return f'<Job {self.trigger}>'
