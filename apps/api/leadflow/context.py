"""Request-scoped values read by logging, audit and event publishing."""

from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
actor_user_id_var: ContextVar[str | None] = ContextVar("actor_user_id", default=None)


@dataclass(frozen=True)
class BoundRequest:
    correlation_token: Token[str | None]
    actor_token: Token[str | None]


def bind_request(correlation_id: str, actor_user_id: str) -> BoundRequest:
    return BoundRequest(
        correlation_token=correlation_id_var.set(correlation_id),
        actor_token=actor_user_id_var.set(actor_user_id),
    )


def unbind_request(bound: BoundRequest) -> None:
    actor_user_id_var.reset(bound.actor_token)
    correlation_id_var.reset(bound.correlation_token)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def get_actor_user_id() -> str | None:
    return actor_user_id_var.get()
