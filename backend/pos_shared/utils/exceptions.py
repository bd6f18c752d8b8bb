"""
Centralized exceptions for the table engine.

Every error is an HTTPException so the HTTP layer can surface it as-is, and
every error logs itself with structured context when raised.

Usage:
    from pos_shared.utils.exceptions import NotFoundError, RevisionConflictError

    raise NotFoundError("Mesa", table_id)
    raise RevisionConflictError(table_id, expected=3, actual=4)
"""

from typing import Any

from fastapi import HTTPException, status

from pos_shared.config.logging import get_logger

logger = get_logger(__name__)


class AppException(HTTPException):
    """
    Base exception with automatic logging.

    All custom exceptions should inherit from this class
    to ensure consistent logging and response format.
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        log_level: str = "warning",
        headers: dict[str, str] | None = None,
        **log_context: Any,
    ):
        log_fn = getattr(logger, log_level, logger.warning)
        log_fn(detail, status_code=status_code, **log_context)

        super().__init__(status_code=status_code, detail=detail, headers=headers)


# =============================================================================
# 404 Not Found Errors
# =============================================================================


class NotFoundError(AppException):
    """
    Entity not found error (404).

    Usage:
        raise NotFoundError("Mesa", 12)
        raise NotFoundError("Producto", product_id, table_id=table_id)
    """

    def __init__(self, entity: str, entity_id: int | str | None = None, **log_context: Any):
        if entity_id is not None:
            detail = f"{entity} con ID {entity_id} no encontrado"
        else:
            detail = f"{entity} no encontrado"

        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            log_level="warning",
            entity=entity,
            entity_id=entity_id,
            **log_context,
        )


class NoActiveOrderError(NotFoundError):
    """The table has no active order."""

    def __init__(self, table_id: int, **log_context: Any):
        self.table_id = table_id
        super().__init__("Venta activa de la mesa", table_id, table_id=table_id, **log_context)


# =============================================================================
# 400 Bad Request Errors
# =============================================================================


class ValidationError(AppException):
    """
    Input validation error (400).

    Usage:
        raise ValidationError("Cantidad inválida", field="quantity", value=0)
    """

    def __init__(self, detail: str, **log_context: Any):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            log_level="warning",
            **log_context,
        )


class NothingToSendError(ValidationError):
    """Send-to-kitchen was requested but every line item was already sent."""

    def __init__(self, table_id: int, **log_context: Any):
        self.table_id = table_id
        super().__init__(
            f"La mesa {table_id} no tiene ítems pendientes de enviar a cocina",
            table_id=table_id,
            **log_context,
        )


# =============================================================================
# 409 Conflict Errors
# =============================================================================


class ConflictError(AppException):
    """
    Resource conflict error (409).

    Usage:
        raise ConflictError("La venta ya se está cerrando")
    """

    def __init__(self, detail: str, **log_context: Any):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            log_level="warning",
            **log_context,
        )


class InvalidTransitionError(ConflictError):
    """The table state machine rejected an event in the current state."""

    def __init__(self, current_state: Any, event: Any, **log_context: Any):
        self.current_state = current_state
        self.event = event
        state_value = getattr(current_state, "value", current_state)
        event_value = getattr(event, "value", event)
        detail = f"Transición inválida: evento '{event_value}' no permitido en estado '{state_value}'"
        super().__init__(detail, current_state=state_value, event=event_value, **log_context)


class TableUnavailableError(ConflictError):
    """The table cannot take orders (out of service or deactivated)."""

    def __init__(self, table_id: int, reason: str, **log_context: Any):
        self.table_id = table_id
        self.reason = reason
        super().__init__(
            f"La mesa {table_id} no está disponible: {reason}",
            table_id=table_id,
            **log_context,
        )


class RevisionConflictError(ConflictError):
    """
    Optimistic concurrency check failed.

    The caller read an older revision; it must re-fetch the order and retry.
    """

    def __init__(self, table_id: int, expected: int, actual: int, **log_context: Any):
        self.table_id = table_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"La venta de la mesa {table_id} fue modificada (revisión {actual}, se esperaba {expected})",
            table_id=table_id,
            expected_revision=expected,
            actual_revision=actual,
            **log_context,
        )


class ItemAlreadySentError(ConflictError):
    """A sent-to-kitchen line item was touched without supervisor override."""

    def __init__(self, table_id: int, line_id: int, **log_context: Any):
        self.table_id = table_id
        self.line_id = line_id
        super().__init__(
            f"El ítem {line_id} ya fue enviado a cocina; se requiere autorización de supervisor",
            table_id=table_id,
            line_id=line_id,
            **log_context,
        )


class OrderClosedError(ConflictError):
    """The bill was requested; the order no longer accepts item changes."""

    def __init__(self, table_id: int, **log_context: Any):
        self.table_id = table_id
        super().__init__(
            f"La cuenta de la mesa {table_id} ya fue pedida; no se aceptan más cambios",
            table_id=table_id,
            **log_context,
        )


# =============================================================================
# Finalization Errors
# =============================================================================


class FinalizationRejectedError(AppException):
    """
    The sale finalization collaborator rejected the sale (402).

    The active order is always retained so the operation can be retried.
    """

    def __init__(
        self,
        table_id: int,
        reason: str,
        status_code: int = status.HTTP_402_PAYMENT_REQUIRED,
        outcome_unknown: bool = False,
        **log_context: Any,
    ):
        self.table_id = table_id
        self.reason = reason
        self.outcome_unknown = outcome_unknown
        super().__init__(
            status_code=status_code,
            detail=f"No se pudo cerrar la venta de la mesa {table_id}: {reason}",
            log_level="error" if outcome_unknown else "warning",
            table_id=table_id,
            outcome_unknown=outcome_unknown,
            **log_context,
        )


class FinalizationTimeoutError(FinalizationRejectedError):
    """The collaborator did not answer definitively; the outcome is unknown (504)."""

    def __init__(self, table_id: int, reason: str = "tiempo de espera agotado", **log_context: Any):
        super().__init__(
            table_id,
            reason,
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            outcome_unknown=True,
            **log_context,
        )


# =============================================================================
# 500 Internal Server Errors
# =============================================================================


class InternalError(AppException):
    """
    Internal server error (500).

    Usage:
        raise InternalError("Failed to rebuild table state", table_id=7)
    """

    def __init__(self, detail: str = "Error interno del servidor", **log_context: Any):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            log_level="error",
            **log_context,
        )


class PersistenceFailureError(InternalError):
    """Snapshot or table-state write failed."""

    def __init__(self, operation: str, **log_context: Any):
        self.operation = operation
        detail = f"Error de base de datos durante {operation}. Los cambios podrían no ser durables."
        super().__init__(detail, operation=operation, **log_context)
