"""
Hook dispatcher - prioritized, filterable event handlers.

Manifesto:
    Plugins react to runtime events (plugin loaded, flow finished, task
    failed) without knowing who emits them. The dispatcher keeps, per
    event, an ordered list of registrations and runs them with predictable
    semantics.

    - **Priority order:** higher priority first, ties by registration order
    - **Isolation:** a failing or slow handler is a failed result, never a
      crash of ``emit``
    - **Disposable registrations:** ``unsubscribe()`` removes exactly one
      registration and is idempotent
    - **Once means once:** a ``once`` hook is removed before it runs, so
      concurrent emits cannot fire it twice

Architecture:
    ::

        register(hook) ──► _hooks[event]  (sorted, priority desc)
                     └──► _by_id[id]

        emit(event, data)
          │  payload = HookPayload(event, timestamp, data, source, metadata)
          │
          for reg in _hooks[event]:
              filter(payload) false?   → skipped, no result
              once?                    → unregister first
              run_with_timeout(handler(payload), hook.timeout_ms or emit timeout)
              failure + stop_on_error  → stop
          └─► list[HookExecutionResult]

Examples:
    >>> hooks = HookDispatcher()
    >>> reg = hooks.on(HookEvent.FLOW_COMPLETE, notify, priority=10)
    >>> results = await hooks.emit(HookEvent.FLOW_COMPLETE, {"flow_id": "f1"})
    >>> reg.unsubscribe()

Guardrails:
    ❌ DON'T: rely on handler side effects ordering across different events
    ✅ DO: use priority for ordering within one event

Tags:
    hooks, events, dispatcher, priority, hinge-core

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from hinge.core.errors import error_message
from hinge.core.logging import get_logger
from hinge.execution.timeout import run_with_timeout
from hinge.hooks.events import HookEvent, RuntimeEvent, event_key

logger = get_logger(__name__)


@dataclass
class HookPayload:
    """What every handler receives."""

    event: str
    data: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    source: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


HookHandler = Callable[[HookPayload], Any]
HookFilter = Callable[[HookPayload], bool]


@dataclass
class Hook:
    """A handler bound to one event kind."""

    name: str
    event: HookEvent | str
    handler: HookHandler
    priority: int = 0
    once: bool = False
    timeout_ms: float | None = None
    stop_on_error: bool = False
    filter: HookFilter | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)


@dataclass
class RegisteredHook:
    id: str
    hook: Hook
    plugin_name: str | None
    registered_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class HookRegistration:
    """Disposable handle returned by :meth:`HookDispatcher.register`."""

    id: str
    _dispatcher: HookDispatcher = field(repr=False)

    def unsubscribe(self) -> bool:
        return self._dispatcher.unregister(self.id)


@dataclass
class HookExecutionResult:
    hook_id: str
    hook_name: str
    event: str
    success: bool
    duration_ms: float
    error: str | None = None


class HookDispatcher:
    """Per-event ordered hook registrations and their execution."""

    def __init__(self) -> None:
        self._hooks: dict[str, list[RegisteredHook]] = {}
        self._by_id: dict[str, RegisteredHook] = {}
        self._background: set[asyncio.Task[Any]] = set()

    # ── Registration ─────────────────────────────────────────────────

    def register(self, hook: Hook, plugin_name: str | None = None) -> HookRegistration:
        key = event_key(hook.event)
        registered = RegisteredHook(id=str(uuid.uuid4()), hook=hook, plugin_name=plugin_name)
        bucket = self._hooks.setdefault(key, [])
        bucket.append(registered)
        # stable: equal priorities keep registration order
        bucket.sort(key=lambda r: -r.hook.priority)
        self._by_id[registered.id] = registered
        logger.debug(
            "hook.registered",
            hook=hook.name,
            hook_event=key,
            plugin=plugin_name,
            priority=hook.priority,
        )
        return HookRegistration(id=registered.id, _dispatcher=self)

    def on(self, event: HookEvent | str, handler: HookHandler, **options: Any) -> HookRegistration:
        """Register ``handler`` for ``event``; options are :class:`Hook` fields."""
        name = options.pop("name", None) or f"{event_key(event)}-handler-{uuid.uuid4().hex[:8]}"
        plugin_name = options.pop("plugin_name", None)
        return self.register(Hook(name=name, event=event, handler=handler, **options), plugin_name)

    def once(self, event: HookEvent | str, handler: HookHandler, **options: Any) -> HookRegistration:
        return self.on(event, handler, once=True, **options)

    def unregister(self, hook_id: str) -> bool:
        registered = self._by_id.pop(hook_id, None)
        if registered is None:
            return False
        key = event_key(registered.hook.event)
        bucket = self._hooks.get(key, [])
        self._hooks[key] = [r for r in bucket if r.id != hook_id]
        if not self._hooks[key]:
            del self._hooks[key]
        logger.debug("hook.unregistered", hook=registered.hook.name)
        return True

    def unregister_plugin(self, plugin_name: str) -> int:
        ids = [rid for rid, r in self._by_id.items() if r.plugin_name == plugin_name]
        for rid in ids:
            self.unregister(rid)
        if ids:
            logger.debug("hook.plugin_unregistered", plugin=plugin_name, removed=len(ids))
        return len(ids)

    # ── Emission ─────────────────────────────────────────────────────

    async def emit(
        self,
        event: HookEvent | str,
        data: Any = None,
        *,
        wait: bool = True,
        stop_on_error: bool = False,
        timeout_ms: float | None = None,
        source: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> list[HookExecutionResult]:
        """Run the handlers registered for ``event``.

        With ``wait=False`` the handlers run in a background task and an
        empty list is returned immediately.
        """
        key = event_key(event)
        snapshot = list(self._hooks.get(key, ()))
        if not snapshot:
            return []

        payload = HookPayload(event=key, data=data, source=source, metadata=metadata or {})
        logger.debug("hook.emit", hook_event=key, hook_count=len(snapshot))

        if not wait:
            task = asyncio.get_running_loop().create_task(
                self._run_hooks(snapshot, payload, stop_on_error, timeout_ms)
            )
            self._background.add(task)
            task.add_done_callback(self._background.discard)
            return []
        return await self._run_hooks(snapshot, payload, stop_on_error, timeout_ms)

    async def dispatch(self, event: RuntimeEvent, **options: Any) -> list[HookExecutionResult]:
        """Emit a typed runtime event under its own ``kind``."""
        return await self.emit(event.kind, event, **options)

    async def _run_hooks(
        self,
        snapshot: list[RegisteredHook],
        payload: HookPayload,
        stop_on_error: bool,
        timeout_ms: float | None,
    ) -> list[HookExecutionResult]:
        results: list[HookExecutionResult] = []
        for registered in snapshot:
            if registered.id not in self._by_id:
                # removed while this emit was running
                continue
            hook = registered.hook
            start = time.perf_counter()
            try:
                if hook.filter is not None and not hook.filter(payload):
                    continue
                if hook.once:
                    self.unregister(registered.id)
                outcome = hook.handler(payload)
                if inspect.isawaitable(outcome):
                    await run_with_timeout(
                        outcome,
                        hook.timeout_ms if hook.timeout_ms is not None else timeout_ms,
                        f"Hook {hook.name}",
                    )
            except Exception as exc:
                message = error_message(exc)
                logger.error("hook.failed", hook=hook.name, hook_event=payload.event, error=message)
                results.append(
                    HookExecutionResult(
                        hook_id=registered.id,
                        hook_name=hook.name,
                        event=payload.event,
                        success=False,
                        duration_ms=(time.perf_counter() - start) * 1000,
                        error=message,
                    )
                )
                if stop_on_error or hook.stop_on_error:
                    break
            else:
                results.append(
                    HookExecutionResult(
                        hook_id=registered.id,
                        hook_name=hook.name,
                        event=payload.event,
                        success=True,
                        duration_ms=(time.perf_counter() - start) * 1000,
                    )
                )
        return results

    async def drain(self) -> None:
        """Wait for handlers started by ``emit(wait=False)``."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Inspection ───────────────────────────────────────────────────

    def get_hooks(self, event: HookEvent | str) -> list[Hook]:
        return [r.hook for r in self._hooks.get(event_key(event), ())]

    def get_all_hooks(self) -> dict[str, list[Hook]]:
        return {key: [r.hook for r in bucket] for key, bucket in self._hooks.items()}

    def get_events(self) -> list[str]:
        return list(self._hooks)

    def hook_count(self, event: HookEvent | str) -> int:
        return len(self._hooks.get(event_key(event), ()))

    @property
    def total_hook_count(self) -> int:
        return len(self._by_id)

    def clear(self) -> None:
        self._hooks.clear()
        self._by_id.clear()
        logger.info("hooks.cleared")


__all__ = [
    "Hook",
    "HookDispatcher",
    "HookExecutionResult",
    "HookFilter",
    "HookHandler",
    "HookPayload",
    "HookRegistration",
    "RegisteredHook",
]
