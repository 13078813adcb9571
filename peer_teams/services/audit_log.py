# services/audit_log.py
from __future__ import annotations

import inspect
import logging
import uuid
from contextvars import ContextVar, Token
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from functools import wraps
from pathlib import Path
from typing import Any, ClassVar, Iterable, Mapping, Optional

from pydantic import BaseModel

from peer_teams.config import Settings
from peer_teams.db.database import DataBase
from peer_teams.db.schemas.audit_log import AuditLogCreate, AuditLogRead
from peer_teams.db.schemas.user import UserRead


class AuditLogService:
    """
    Records team and participant changes in the ``audit_log`` table.

    Every instrumented service call becomes one entry: the call's arguments and
    result (or error) under ``data``, the acting user, and the call site under
    ``_meta``. With ``AUDIT_ENABLED`` off the entry is only logged.
    """

    _instance: ClassVar[Optional["AuditLogService"]] = None

    def __new__(cls) -> "AuditLogService":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return

        self._logger = logging.getLogger("peer_teams.audit")
        self._module_name = Path(__file__).name
        # user id bound for the current request
        self._actor_ctx: ContextVar[Optional[uuid.UUID]] = ContextVar("audit_actor", default=None)
        self._initialized = True

    async def log(
        self,
        *,
        action: str,
        actor_id: uuid.UUID | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> AuditLogRead | None:
        """
        Persist one entry. ``actor_id`` defaults to the bound actor.

        :param action: dotted label such as ``services.team.add_member``
        :param payload: JSON-friendly details; caller metadata is added under ``_meta``
        """
        payload_map = dict(self.to_json(payload or {}))
        payload_map["_meta"] = self._call_site()
        actor_id = actor_id if actor_id is not None else self.current_actor()
        actor_label = str(actor_id) if actor_id else "-"

        if not Settings().audit_enabled:
            self._logger.debug("AUDIT action=%s actor=%s (not persisted)", action, actor_label)
            return None

        # resolved per call so a rebuilt DataBase singleton is picked up
        entry = await DataBase().create_audit_log(
            AuditLogCreate(action=action, actor_id=actor_id, payload=payload_map)
        )
        self._logger.info("AUDIT action=%s actor=%s entry=%s", action, actor_label, entry.id)
        return entry

    async def record_call(
        self,
        action: str,
        actor: UserRead | uuid.UUID | None,
        data: Mapping[str, Any],
    ) -> AuditLogRead | None:
        payload: dict[str, Any] = {"data": data}
        if isinstance(actor, UserRead):
            payload["actor"] = {"id": str(actor.id), "name": actor.name, "role": actor.role}
            actor = actor.id
        return await self.log(action=action, actor_id=actor, payload=payload)

    def bind_actor(self, actor_id: Optional[uuid.UUID]) -> Token:
        return self._actor_ctx.set(actor_id)

    def unbind_actor(self, token: Token) -> None:
        self._actor_ctx.reset(token)

    def current_actor(self) -> Optional[uuid.UUID]:
        return self._actor_ctx.get()

    def to_json(self, value: Any) -> Any:
        """DTOs, reviewer variants, ids and dates reduced to JSON-friendly values."""
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        if isinstance(value, BaseModel):
            return self.to_json(value.model_dump())
        if is_dataclass(value) and not isinstance(value, type):
            return self.to_json(asdict(value))
        if isinstance(value, Mapping):
            return {str(k): self.to_json(v) for k, v in value.items()}
        if isinstance(value, (list, tuple, set, frozenset)):
            return [self.to_json(v) for v in value]
        return str(value)

    def _call_site(self) -> dict[str, Any]:
        for frame in inspect.stack(context=0)[2:]:
            path = Path(frame.filename)
            if path.name != self._module_name:
                return {"location": f"{path.name}:{frame.lineno}", "function": frame.function}
        return {}


audit_logger = AuditLogService()


def _audited(fn, action: str, actor_fields: tuple[str, ...]):
    signature = inspect.signature(fn)

    @wraps(fn)
    async def wrapper(*args, **kwargs):
        arguments = signature.bind_partial(*args, **kwargs).arguments
        arguments.pop("self", None)
        # the request's bound actor wins over user-typed arguments
        actor = audit_logger.current_actor()
        if actor is None:
            actor = next((arguments[f] for f in actor_fields if arguments.get(f) is not None), None)

        data: dict[str, Any] = {"arguments": audit_logger.to_json(arguments)}
        try:
            result = await fn(*args, **kwargs)
        except Exception as exc:
            data["error"] = repr(exc)
            await audit_logger.record_call(f"{action}.error", actor, data)
            raise
        data["result"] = audit_logger.to_json(result)
        await audit_logger.record_call(action, actor, data)
        return result

    return wrapper


def instrument_service_class(
    cls,
    *,
    prefix: str,
    exclude: Iterable[str] = (),
    actor_fields: Iterable[str] = (),
) -> None:
    """Wrap the public coroutine methods of a service so each call leaves an audit entry."""
    skipped = set(exclude)
    fields = tuple(actor_fields)
    for name, attr in list(cls.__dict__.items()):
        if name.startswith("_") or name in skipped or not inspect.iscoroutinefunction(attr):
            continue
        setattr(cls, name, _audited(attr, f"{prefix}.{name}", fields))


__all__ = [
    "AuditLogService",
    "audit_logger",
    "instrument_service_class",
]
