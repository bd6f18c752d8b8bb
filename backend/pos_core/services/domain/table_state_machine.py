"""
Table occupancy state machine.

Pure transition function: no storage, no side effects. Callers compute the
next state first and only then mutate, so a rejected event leaves the table
and its order untouched.
"""

from __future__ import annotations

from types import MappingProxyType

from pos_shared.config.constants import TableEvent, TableState
from pos_shared.utils.exceptions import InvalidTransitionError

_S = TableState
_E = TableEvent

TRANSITIONS: MappingProxyType[tuple[TableState, TableEvent], TableState] = MappingProxyType({
    (_S.LIBRE, _E.OPEN_ORDER): _S.OCUPADA,
    (_S.LIBRE, _E.RESERVE): _S.RESERVADA,
    (_S.LIBRE, _E.MARK_OUT_OF_SERVICE): _S.FUERA_DE_SERVICIO,
    (_S.RESERVADA, _E.OPEN_ORDER): _S.OCUPADA,
    (_S.RESERVADA, _E.CANCEL_RESERVATION): _S.LIBRE,
    (_S.RESERVADA, _E.MARK_OUT_OF_SERVICE): _S.FUERA_DE_SERVICIO,
    (_S.OCUPADA, _E.MODIFY_ORDER): _S.OCUPADA,
    (_S.OCUPADA, _E.SEND_TO_KITCHEN): _S.ESPERANDO_PEDIDO,
    (_S.OCUPADA, _E.REQUEST_BILL): _S.CUENTA_PEDIDA,
    (_S.OCUPADA, _E.CANCEL_ORDER): _S.LIBRE,
    (_S.ESPERANDO_PEDIDO, _E.MODIFY_ORDER): _S.ESPERANDO_PEDIDO,
    (_S.ESPERANDO_PEDIDO, _E.SEND_TO_KITCHEN): _S.ESPERANDO_PEDIDO,
    (_S.ESPERANDO_PEDIDO, _E.REQUEST_BILL): _S.CUENTA_PEDIDA,
    (_S.ESPERANDO_PEDIDO, _E.CANCEL_ORDER): _S.LIBRE,
    (_S.CUENTA_PEDIDA, _E.FINALIZE): _S.LIBRE,
    (_S.CUENTA_PEDIDA, _E.CANCEL_ORDER): _S.LIBRE,
    (_S.FUERA_DE_SERVICIO, _E.RESTORE): _S.LIBRE,
})


def can_transition(state: TableState, event: TableEvent) -> bool:
    """Return True if ``event`` is legal in ``state``."""
    return (TableState(state), TableEvent(event)) in TRANSITIONS


def transition(state: TableState, event: TableEvent, **log_context) -> TableState:
    """
    Return the state reached by applying ``event`` in ``state``.

    Raises:
        InvalidTransitionError: If the event is not legal in the state.
    """
    state = TableState(state)
    event = TableEvent(event)
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(state, event, **log_context) from None


def allowed_events(state: TableState) -> list[TableEvent]:
    """Events accepted in ``state``, in declaration order."""
    state = TableState(state)
    return [event for event in TableEvent if (state, event) in TRANSITIONS]
