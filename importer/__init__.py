"""Batch product import orchestration and post-import revalidation."""

from importer.batch import BatchImportOrchestrator
from importer.revalidation import RevalidationClient

__all__ = ["BatchImportOrchestrator", "RevalidationClient"]
