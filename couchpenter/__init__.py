"""Couchpenter: set up and tear down CouchDB databases and documents from a setup file."""

__version__ = "0.1.0"
