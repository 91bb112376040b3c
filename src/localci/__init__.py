"""
localci - Run CI workflow jobs locally inside containers.

Subpackages:
- localci.core: Errors, logging, settings
- localci.pipeline: Deferred, cancellable executors
- localci.container: Container lifecycle (docker CLI, in-memory stub)
- localci.runner: Run context, step execution, context projections
"""

__version__ = "0.1.0"
