"""Display helpers for NEAR amounts, timestamps and identifiers."""

from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

YOCTO_PER_NEAR = Decimal(10) ** 24


def format_near(yocto_near: str | int, places: int = 4) -> str:
    """
    Convert a yoctoNEAR amount to a NEAR string.

    Parameters
    ----------
    yocto_near : str | int
        Amount in yoctoNEAR
    places : int
        Decimal places kept

    Returns
    -------
    str
        Amount in NEAR, or zero formatted the same way if unparsable

    Examples
    --------
    >>> format_near("1500000000000000000000000")
    '1.5000'

    """
    quantum = Decimal(1).scaleb(-places)
    try:
        value = Decimal(str(yocto_near)) / YOCTO_PER_NEAR
    except InvalidOperation:
        value = Decimal(0)
    return str(value.quantize(quantum))


def format_timestamp(nanosec: str | int) -> str:
    """Render a nanosecond timestamp as an ISO-8601 UTC string."""
    seconds = Decimal(str(nanosec)) / Decimal(1_000_000_000)
    return datetime.fromtimestamp(float(seconds), tz=UTC).isoformat(timespec="seconds")


def shorten(value: str, start_chars: int = 8, end_chars: int = 6) -> str:
    """Abbreviate a long hash or account id with an ellipsis."""
    if len(value) <= start_chars + end_chars + 3:
        return value
    return f"{value[:start_chars]}...{value[-end_chars:]}"


def describe_action(action: Any) -> str:
    """
    Summarize one transaction action.

    Parameters
    ----------
    action : Any
        Raw action, either a name (``"CreateAccount"``) or a single-key
        mapping (``{"Transfer": {"deposit": "..."}}``)

    Returns
    -------
    str
        Short human-readable description

    """
    if isinstance(action, str):
        action_type, data = action, {}
    elif isinstance(action, dict) and action:
        action_type, data = next(iter(action.items()))
        data = data if isinstance(data, dict) else {}
    else:
        return "Unknown"

    if action_type == "Transfer":
        return f"Transfer {format_near(data.get('deposit', '0'))} NEAR"
    if action_type == "FunctionCall":
        return f"{data.get('method_name', '?')}()"
    if action_type == "Stake":
        return f"Stake {format_near(data.get('stake', '0'))} NEAR"
    if action_type == "DeleteAccount":
        return f"Delete account -> {data.get('beneficiary_id', '')}"
    labels = {
        "CreateAccount": "New account",
        "AddKey": "Add access key",
        "DeleteKey": "Delete access key",
        "DeployContract": "Deploy contract",
    }
    return labels.get(action_type, action_type)
