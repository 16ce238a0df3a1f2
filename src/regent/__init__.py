"""Regent - Step executor for implementation plans.

This package executes validated implementation plans against a git
repository: it creates branches, writes and refactors files, runs quality
gates, scores every step and rolls back completed work when a step fails
beyond recovery.

Main modules:
    - cli: Command-line interface (regent command)
    - core: Plan model, validator, executor and their collaborators
"""

__version__ = "0.1.0"
