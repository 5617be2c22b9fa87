"""Exceptions raised by the reconciler and the admission webhook."""


class OperatorError(Exception):
    """Base class for odh-notebook-operator errors."""


class StoreError(OperatorError):
    """The cluster API returned an unexpected error."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class NotFoundError(StoreError):
    """The requested object does not exist."""


class ConflictError(StoreError):
    """Stale resourceVersion on update, or the object already exists on create."""


class InvalidImageSelection(OperatorError):
    """The last-image-selection annotation is not in ``name:tag`` form."""


class ContainerNotFound(OperatorError):
    """The notebook has no container named after itself."""


class ReconcileCancelled(OperatorError):
    """The reconcile was cancelled or ran past its deadline."""
