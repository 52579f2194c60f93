import re
from decimal import Decimal, InvalidOperation
from typing import Any

from ledger_harness.utils.exceptions import BadRequestException


_ENTITY_ID_RE = re.compile(r"^(\d{1,10})\.(\d{1,10})\.(\d{1,19})$")

TINYBARS_PER_HBAR = 100_000_000


def validate_entity_id(entity_id: str, *, kind: str = "entity") -> str:
    """Validate a `shard.realm.num` identifier (account, token or topic).

    Returns the normalized string (leading zeros stripped per component).
    """
    if not isinstance(entity_id, str):
        raise BadRequestException(f"Invalid {kind} id", details={"value": repr(entity_id)})

    match = _ENTITY_ID_RE.fullmatch(entity_id.strip())
    if match is None:
        raise BadRequestException(f"Invalid {kind} id", details={"value": entity_id})
    return ".".join(str(int(part)) for part in match.groups())


def validate_token_amount(amount: Any, *, allow_zero: bool = False) -> int:
    """Token amounts are integral units of the smallest denomination."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise BadRequestException("Token amount must be an integer", details={"value": repr(amount)})
    if amount < 0 or (amount == 0 and not allow_zero):
        raise BadRequestException("Token amount must be positive", details={"value": amount})
    return amount


def hbar_to_tinybars(hbars: Any) -> int:
    """Convert an hbar quantity (int, str or Decimal) to integral tinybars.

    Floats are rejected: an hbar amount must be exact.
    """
    if isinstance(hbars, float):
        raise BadRequestException("Float hbar amounts are not allowed", details={"value": repr(hbars)})
    try:
        value = Decimal(str(hbars))
    except InvalidOperation:
        raise BadRequestException("Invalid hbar amount", details={"value": str(hbars)})
    if not value.is_finite():
        raise BadRequestException("Invalid hbar amount", details={"value": str(hbars)})

    tinybars = value * TINYBARS_PER_HBAR
    if tinybars != tinybars.to_integral_value():
        raise BadRequestException(
            "Hbar amount has more precision than one tinybar",
            details={"value": str(hbars)},
        )
    return int(tinybars)


def tinybars_to_hbar(tinybars: int) -> Decimal:
    return Decimal(tinybars) / Decimal(TINYBARS_PER_HBAR)
