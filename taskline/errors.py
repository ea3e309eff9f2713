from __future__ import annotations


class ValidationError(ValueError):
    """Rejected input; nothing was changed."""


class NotFoundError(LookupError):
    pass


class StoreError(RuntimeError):
    """A store write failed and was rolled back."""


class StoreUnavailable(StoreError):
    """The store could not produce a snapshot."""


class ReorderError(StoreError):
    pass
