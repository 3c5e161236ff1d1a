"""Configuration package (Facade).

Re-exports the public config types so callers import from a single path:

	from couchpenter.services.config import CouchDbConfig, CouchpenterConfig
"""

from couchpenter.services.config.couchdb_config import CouchDbConfig
from couchpenter.services.config.couchpenter_config import CouchpenterConfig

__all__ = ["CouchDbConfig", "CouchpenterConfig"]
