"""Exceptions raised by the canonical store and the resolution workflow."""


class StoreError(Exception):
    """Base class for failures reported by the canonical store."""


class LookupFailed(StoreError):
    """A search or lookup against the canonical store failed."""


class MergeFailed(StoreError):
    """The store rejected a merge request."""


class CommitFailed(StoreError):
    """Creating or attaching records for a pending employer failed."""


class InvalidDecision(ValueError):
    """A decision referenced a target that was never offered for the pending employer."""
