class ValidationError(ValueError):
    """Rejected input: bad range, missing field or modality mismatch."""


class NotFoundError(ValueError):
    """Row does not exist or belongs to another vault/session."""


class InvariantError(ValueError):
    """Operation would break a stored invariant (e.g. deleting logged data)."""
