from __future__ import annotations

from typing import Any, Dict, Optional


class WorkflowError(Exception):
    kind = "error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        entity: str = "",
        entity_id: Any = None,
        field: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.entity_id = None if entity_id is None else str(entity_id)
        self.field = field
        self.details = details or {}

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.message,
            "kind": self.kind,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "field": self.field,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class NotFound(WorkflowError):
    kind = "not_found"
    status_code = 404


class ValidationError(WorkflowError):
    kind = "validation_error"
    status_code = 400


class Conflict(WorkflowError):
    kind = "conflict"
    status_code = 409
