from typing import Any, Dict

_CONFLICT_PREFIXES = ("DUPLICATE_", "ALREADY_", "INSUFFICIENT_")
_CONFLICT_CODES = {
    "INVALID_TRANSITION",
    "AUTOSHIP_CANCELLED",
    "AUTOSHIP_NOT_ACTIVE",
    "FAMILY_IN_USE",
    "DIMENSION_IN_USE",
    "VALUE_IN_USE",
    "SKIPPED",
}


class ServiceError(Exception):
    """
    A business rule rejected the operation.

    `code` is a stable machine-readable identifier (e.g. PRODUCT_NOT_FOUND);
    `details` carries any extra fields for the client.
    """

    def __init__(self, code: str, message: str = "", **details: Any) -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message
        self.details = details

    @property
    def status_code(self) -> int:
        if self.code == "FORBIDDEN":
            return 403
        if self.code.endswith("_NOT_FOUND"):
            return 404
        if self.code in _CONFLICT_CODES or self.code.startswith(_CONFLICT_PREFIXES):
            return 409
        return 400

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "error": self.code}
        if self.message:
            body["message"] = self.message
        body.update(self.details)
        return body
