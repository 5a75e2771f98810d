"""Canonical store interface and its SQL implementation."""

from employer_dedup.store.base import CanonicalStore
from employer_dedup.store.sql import SqlCanonicalStore

__all__ = ["CanonicalStore", "SqlCanonicalStore"]
