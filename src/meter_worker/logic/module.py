"""
Hot-swappable logic module.

The logic file is plain Python source pushed by the coordinator. Each load reads the
file once, executes exactly those bytes as a fresh module object and resolves the
capability set. A LogicModule is immutable; a reload produces a new one.
"""
from __future__ import annotations

import asyncio
import hashlib
import importlib
import importlib.util
import inspect
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType, ModuleType
from typing import Any, Callable, Mapping, Optional

logger = logging.getLogger(__name__)

LOGIC_MODULE_NAME = "meter_worker_logic"

PROCESS_BATCH = "process_batch"
VERIFY_LOGIN_DETAILS = "verify_login_details"
GET_INVENTORY_LIST = "get_inventory_list"
VERIFY_METER = "verify_meter"

CAPABILITIES = (PROCESS_BATCH, VERIFY_LOGIN_DETAILS, GET_INVENTORY_LIST, VERIFY_METER)
REQUIRED_CAPABILITIES = (PROCESS_BATCH,)


class MissingCapabilityError(LookupError):
    """Raised when a task needs a capability the loaded logic module does not expose."""


def compute_hash(data: bytes) -> str:
    """MD5 hex digest of the raw bytes. Used for version equality only."""
    return hashlib.md5(data).hexdigest()


async def _await(awaitable: Any) -> Any:
    return await awaitable


@dataclass(frozen=True, slots=True)
class LogicModule:
    content: bytes
    content_hash: Optional[str]
    capabilities: Mapping[str, Callable[..., Any]] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def empty(cls) -> "LogicModule":
        return cls(content=b"", content_hash=None)

    @property
    def ready(self) -> bool:
        return all(name in self.capabilities for name in REQUIRED_CAPABILITIES)

    @property
    def missing(self) -> list[str]:
        return [name for name in CAPABILITIES if name not in self.capabilities]

    def require(self, name: str) -> Callable[..., Any]:
        try:
            return self.capabilities[name]
        except KeyError:
            raise MissingCapabilityError(f"logic module does not provide {name}") from None

    def call(self, name: str, *args: Any) -> Any:
        """
        Invoke a capability and return its result.

        Coroutine capabilities are run to completion on the calling thread.
        """
        result = self.require(name)(*args)
        if inspect.isawaitable(result):
            result = asyncio.run(_await(result))
        return result


def resolve_capabilities(module: ModuleType) -> Mapping[str, Callable[..., Any]]:
    found = {}
    for name in CAPABILITIES:
        fn = getattr(module, name, None)
        if callable(fn):
            found[name] = fn
    return MappingProxyType(found)


def _exec_module(content: bytes, path: Path) -> ModuleType:
    """
    Execute content as a brand new module registered under LOGIC_MODULE_NAME.

    The stale module entry is dropped first so nothing from a prior load is reused.
    On failure the prior registration is restored.
    """
    importlib.invalidate_caches()
    spec = importlib.util.spec_from_loader(LOGIC_MODULE_NAME, loader=None, origin=str(path))
    module = importlib.util.module_from_spec(spec)
    module.__file__ = str(path)

    stale = sys.modules.pop(LOGIC_MODULE_NAME, None)
    # dataclasses and pickling look the module up while it executes
    sys.modules[LOGIC_MODULE_NAME] = module
    try:
        code = compile(content, str(path), "exec", dont_inherit=True)
        exec(code, module.__dict__)
    except Exception:
        if stale is not None:
            sys.modules[LOGIC_MODULE_NAME] = stale
        else:
            sys.modules.pop(LOGIC_MODULE_NAME, None)
        raise
    return module


def load_logic_module(path: Path, previous: Optional[LogicModule] = None) -> LogicModule:
    """
    Load the logic file at path.

    Never raises: read, compile or execution failures are logged and the previous
    module (or an empty, not-ready one) is returned unchanged.
    """
    fallback = previous if previous is not None else LogicModule.empty()

    try:
        content = path.read_bytes()
    except FileNotFoundError:
        logger.warning("Logic file missing: %s", path)
        return fallback
    except OSError as exc:
        logger.warning("Logic file unreadable (%s): %s", path, exc)
        return fallback

    try:
        module = _exec_module(content, path)
    except Exception:
        logger.warning("Logic file exists but is not ready yet.", exc_info=True)
        return fallback

    loaded = LogicModule(
        content=content,
        content_hash=compute_hash(content),
        capabilities=resolve_capabilities(module),
    )
    if loaded.ready:
        logger.info("Logic module loaded successfully (hash=%s)", loaded.content_hash)
        if loaded.missing:
            logger.warning("Logic module does not provide: %s", ", ".join(loaded.missing))
    else:
        logger.warning(
            "Logic module loaded but not ready (hash=%s, missing: %s)",
            loaded.content_hash,
            ", ".join(loaded.missing),
        )
    return loaded
