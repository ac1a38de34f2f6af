from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness or integrity constraint is violated.

    ``detail["field"]`` names the violated constraint: ``email``, ``username``,
    ``federated_identity`` or ``auth_method``.
    """

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    @property
    def field(self) -> Optional[str]:
        return self.detail.get("field")


__all__ = ["ConstraintViolation"]
