"""Core modules for Regent.

This package contains the core functionality:
    - plan / plan_loader / validator: Plan model, loading and validation
    - config / paths: Execute configuration and file locations
    - quality / package_manager: Lint, test and build checks
    - git / commits: Git and GitHub CLI operations, commit messages
    - files / layers: Filesystem actions of file and folder steps, layer rules
    - scoring / metrics: RLHF scores and their history
    - logger: Execution logging and run summary
    - context / executor / rollback: Plan execution
"""

from . import commits
from . import config
from . import context
from . import errors
from . import executor
from . import files
from . import git
from . import layers
from . import logger
from . import metrics
from . import package_manager
from . import paths
from . import plan
from . import plan_loader
from . import quality
from . import rollback
from . import scoring
from . import validator

__all__ = [
    "commits",
    "config",
    "context",
    "errors",
    "executor",
    "files",
    "git",
    "layers",
    "logger",
    "metrics",
    "package_manager",
    "paths",
    "plan",
    "plan_loader",
    "quality",
    "rollback",
    "scoring",
    "validator",
]
