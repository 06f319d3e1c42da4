"""Metadata store adapters (documents, chunks, query log)."""

from src.providers.metadata_store.sqlite_metadata_store import SQLiteMetadataStore

__all__ = ["SQLiteMetadataStore"]
