"""
Run coordinator - loads the requested triggers and runs them one by one.

Phase 1 loads and validates every requested trigger, so a configuration
problem is reported before any job starts dumping. Phase 2 executes the
loaded jobs sequentially. Each job runs inside an exception boundary: an
exception that escapes the pipeline fails that trigger only.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from backupper.errors import ConfigurationError, UnhandledFault
from .loader import build_job, load_config_file, unknown_trigger
from .registry import ComponentRegistry, registry as default_registry
from .result import RunResult, Status, utcnow

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_WARNING = 1
EXIT_FAILURE = 2

_EXIT_CODES = {
    Status.SUCCESS: EXIT_SUCCESS,
    Status.WARNING: EXIT_WARNING,
    Status.FAILURE: EXIT_FAILURE,
}


@dataclass
class RunReport:
    """Results of one coordinator invocation, in trigger order."""
    results: List[RunResult] = field(default_factory=list)

    @property
    def status(self) -> Status:
        return Status.worst(result.status for result in self.results)

    @property
    def exit_status(self) -> int:
        """0 if every trigger succeeded, 1 on warnings only, 2 on any failure."""
        return _EXIT_CODES[self.status]

    def result_for(self, trigger: str) -> Optional[RunResult]:
        for result in self.results:
            if result.trigger == trigger:
                return result
        return None


def parse_trigger_names(values: Iterable[str]) -> List[str]:
    """
    Normalize trigger arguments.

    Accepts repeated values and comma-separated lists; removes blanks and
    duplicates, keeping first occurrence order.
    """
    names = []
    for value in values or ():
        for name in str(value).split(','):
            name = name.strip()
            if name and name not in names:
                names.append(name)
    return names


class RunCoordinator:
    """
    Runs triggers and reports the aggregate outcome.

    Args:
        settings: Settings with config_file, temp_dir and store_concurrency
        history: Optional recorder with a record(result) method
        registry: Registry used to resolve component types
    """

    def __init__(self, settings, history=None, registry: ComponentRegistry = default_registry):
        self.settings = settings
        self.history = history
        self.registry = registry

    def run(self, trigger_names: Iterable[str]) -> RunReport:
        """
        Run the given triggers.

        Args:
            trigger_names: Trigger names (repeated or comma-separated)

        Returns:
            RunReport with one result per trigger

        Raises:
            ConfigurationError: If no trigger names are given
        """
        names = parse_trigger_names(trigger_names)
        if not names:
            raise ConfigurationError("No triggers given")

        # Phase 1: load every trigger before running any of them
        loaded = self._load(names)

        # Phase 2: execute
        report = RunReport()
        for name, job, result in loaded:
            if job is not None:
                logger.info("Performing backup for trigger '%s'", name)
                result = self._execute(job)
            logger.info("Trigger '%s' finished: %s", name, result.status.value)
            self._record(result)
            report.results.append(result)

        logger.info("Run finished: %s (exit status %d)", report.status.value, report.exit_status)
        return report

    def _load(self, names: List[str]):
        """Build a job per name, or a failed result carrying the ConfigurationError."""
        try:
            definitions = load_config_file(self.settings.config_file)
        except ConfigurationError as e:
            logger.error("Cannot load triggers: %s", e)
            return [(name, None, self._configuration_failure(name, e)) for name in names]

        loaded = []
        for name in names:
            try:
                if name not in definitions:
                    raise unknown_trigger(name, definitions)
                job = build_job(name, definitions[name], self.registry)
                loaded.append((name, job, None))
            except ConfigurationError as e:
                logger.error("Invalid configuration for trigger '%s': %s", name, e)
                loaded.append((name, None, self._configuration_failure(name, e)))
        return loaded

    def _execute(self, job) -> RunResult:
        """
        Run one job; exceptions outside the taxonomy fail this job only.

        The failed result is the one the pipeline was filling in, so it keeps
        the log lines written before the fault.
        """
        pipeline = job.pipeline(self.settings)
        try:
            return pipeline.execute()
        except Exception as e:
            logger.exception("Unhandled error while running trigger '%s'", job.trigger)
            fault = UnhandledFault(e)
            result = pipeline.result
            if result is None:
                result = RunResult(trigger=job.trigger, label=job.label, started_at=utcnow(), logs=pipeline.logs)
            result.fail(fault, stage=fault.stage)
            result.finished_at = utcnow()
            pipeline.notify(result)
            return result

    @staticmethod
    def _configuration_failure(name: str, error: ConfigurationError) -> RunResult:
        now = utcnow()
        result = RunResult(trigger=name, started_at=now, finished_at=now)
        result.fail(error, stage='configuration')
        return result

    def _record(self, result: RunResult):
        if self.history is None:
            return
        try:
            self.history.record(result)
        except Exception as e:
            logger.error("Failed to record history for trigger '%s': %s", result.trigger, e)
