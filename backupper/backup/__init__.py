"""
Backup module for backupper.

This module handles the core backup functionality including:
- Component registry (short names to component classes)
- Job model and declarative loader
- Packaging (archive, split, manifest)
- Pipeline execution
- Run coordination and exit status
"""

from .registry import ComponentRegistry, registry, create_default_registry
from .packager import Package, create_archive, split_package, write_manifest
from .result import RunResult, Status, TransferResult
from .executor import Pipeline
from .job import Job
from .loader import load_config_file, build_job, load_jobs, available_triggers
from .coordinator import RunCoordinator, RunReport, EXIT_SUCCESS, EXIT_WARNING, EXIT_FAILURE

__all__ = [
    'ComponentRegistry',
    'registry',
    'create_default_registry',
    'Package',
    'create_archive',
    'split_package',
    'write_manifest',
    'RunResult',
    'Status',
    'TransferResult',
    'Pipeline',
    'Job',
    'load_config_file',
    'build_job',
    'load_jobs',
    'available_triggers',
    'RunCoordinator',
    'RunReport',
    'EXIT_SUCCESS',
    'EXIT_WARNING',
    'EXIT_FAILURE',
]
