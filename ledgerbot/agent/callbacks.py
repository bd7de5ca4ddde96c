"""Correlation ids carried by inline buttons.

``<action>_<transactionId>`` for single-target actions,
``<action>_<field>_<transactionId>`` for field actions and
``clarify_<choice>`` for intent clarification.
"""

from ledgerbot.errors import InvalidArguments
from ledgerbot.models.schemas import CATEGORIES, CallbackAction

SINGLE_TARGET_ACTIONS = ("confirm", "personal", "edit", "delete", "delok", "cancel")
FIELD_ACTIONS = ("txe", "txc")
CLARIFY_CHOICES = ("record", "query", "cancel")

FIELD_CODES = {"amount": "amt", "merchant": "mrc", "category": "cat"}
FIELDS_BY_CODE = {code: field for field, code in FIELD_CODES.items()}


def encode_callback(action: CallbackAction) -> str:
    if action.action == "clarify":
        if action.field not in CLARIFY_CHOICES:
            raise InvalidArguments(f"Unknown clarify choice: {action.field}")
        return f"clarify_{action.field}"

    if not action.transaction_id:
        raise InvalidArguments(f"{action.action} needs a transaction id")

    if action.action in SINGLE_TARGET_ACTIONS:
        return f"{action.action}_{action.transaction_id}"

    if action.action == "txe":
        code = FIELD_CODES.get(action.field or "")
        if code is None:
            raise InvalidArguments(f"Field {action.field!r} cannot be edited")
        return f"txe_{code}_{action.transaction_id}"

    if action.action == "txc":
        if action.field not in CATEGORIES:
            raise InvalidArguments(f"Unknown category: {action.field}")
        return f"txc_{action.field}_{action.transaction_id}"

    raise InvalidArguments(f"Unknown callback action: {action.action}")


def parse_callback(data: str) -> CallbackAction:
    action, _, rest = data.partition("_")
    if not rest:
        raise InvalidArguments(f"Malformed callback data: {data!r}")

    if action == "clarify":
        if rest not in CLARIFY_CHOICES:
            raise InvalidArguments(f"Unknown clarify choice: {rest}")
        return CallbackAction(action="clarify", field=rest)

    if action in SINGLE_TARGET_ACTIONS:
        return CallbackAction(action=action, transaction_id=rest)

    if action in FIELD_ACTIONS:
        field, _, transaction_id = rest.partition("_")
        if not transaction_id:
            raise InvalidArguments(f"Malformed callback data: {data!r}")
        if action == "txe":
            if field not in FIELDS_BY_CODE:
                raise InvalidArguments(f"Unknown field code: {field}")
            field = FIELDS_BY_CODE[field]
        elif field not in CATEGORIES:
            raise InvalidArguments(f"Unknown category: {field}")
        return CallbackAction(action=action, field=field, transaction_id=transaction_id)

    raise InvalidArguments(f"Unknown callback action: {action}")
