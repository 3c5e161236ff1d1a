"""Setup loading.

Reads the database setup (database name -> document list) from an in-memory
object or a setup file and applies the database name prefix.
"""

from couchpenter.services.setup.setup_loader import Setup, apply_prefix, load_setup

__all__ = ["Setup", "apply_prefix", "load_setup"]
