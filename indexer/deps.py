"""Dependency helpers for router modules."""

from starlette.requests import Request

# Token amounts exceed JavaScript's safe integer range; serve them as strings
AMOUNT_FIELDS = frozenset({"total", "self_bond", "total_bond", "reward_amount", "bond", "amount"})


def get_storage(request: Request):
    return request.app.state.storage


def serialize(row: dict) -> dict:
    return {
        k: (str(v) if k in AMOUNT_FIELDS and v is not None else v)
        for k, v in row.items()
    }
