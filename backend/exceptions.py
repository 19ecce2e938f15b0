"""Error taxonomy raised by the medication engine.

Every error here is terminal for the operation that raised it and is raised
before any state change is committed.
"""


class MedicationEngineError(Exception):
    """Base class for all engine errors."""

    code = "medication_engine_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.__class__.__name__, "detail": self.message}


class ValidationError(MedicationEngineError):
    code = "validation_error"

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["field"] = self.field
        return data


class InvalidStatusTransitionError(MedicationEngineError):
    code = "invalid_status_transition"

    def __init__(self, current, requested):
        current_name = getattr(current, "value", current)
        requested_name = getattr(requested, "value", requested)
        super().__init__(f"Cannot move schedule from {current_name} to {requested_name}.")
        self.current = current
        self.requested = requested

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["current"] = getattr(self.current, "value", self.current)
        data["requested"] = getattr(self.requested, "value", self.requested)
        return data


class InsufficientStockError(MedicationEngineError):
    code = "insufficient_stock"

    def __init__(self, requested: int, available: int):
        super().__init__(f"Insufficient stock. Requested: {requested}, Available: {available}")
        self.requested = requested
        self.available = available

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["requested"] = self.requested
        data["available"] = self.available
        return data


class InvalidTimingError(MedicationEngineError):
    code = "invalid_timing"


class NotFoundError(MedicationEngineError):
    code = "not_found"

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} with ID {entity_id} not found.")
        self.entity = entity
        self.entity_id = entity_id


class OperationCancelled(MedicationEngineError):
    code = "operation_cancelled"

    def __init__(self, message: str = "Operation cancelled before completion."):
        super().__init__(message)
