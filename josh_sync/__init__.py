"""
Josh Sync - Subtree synchronization between a monorepo and a mirror repository.

This package keeps a standalone subtree repository in sync with the directory
it mirrors inside a large upstream monorepo, using josh-proxy to rewrite the
history losslessly in both directions.
"""

__version__ = "1.0.0"
