"""Services: setup loading, document resolution, CouchDB calls and task orchestration."""
