"""Client configuration.

:class:`ClientConfig` holds the connection options shared by every part of
the engine. It is usually built with keyword arguments, or from the
process environment with :meth:`ClientConfig.from_env`:

============================  ====================================
Variable                      Field
============================  ====================================
``ACC_REPRESENTATION``        ``representation``
``ACC_OPTION_CACHE_TTL``      ``option_cache_ttl`` (seconds)
``ACC_TRACE_API_CALLS``       ``trace_api_calls``
``ACC_NO_STORAGE``            ``no_storage``
``ACC_REDIS_URL``             ``storage`` (:class:`RedisStorage`)
``ACC_CLIENT_APP``            ``client_app``
``ACC_NO_SDK_HEADERS``        ``no_sdk_headers``
``ACC_TIMEOUT``               ``timeout`` (seconds)
``ACC_LOG_LEVEL``             ``log_level``
============================  ====================================
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from . import dom
from .storage import RedisStorage, StorageBackend


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ClientConfig:
    """Connection options.

    Attributes:
        representation: Default representation of values exchanged with
            callers (``"SimpleJson"``, ``"BadgerFish"`` or ``"xml"``).
        option_cache_ttl: Seconds an option stays cached.
        entity_cache_ttl: Seconds an entity stays cached (``None``: no expiry).
        trace_api_calls: Log every SOAP and HTTP call.
        storage: Durable store mirroring the caches.
        no_storage: Disable durable storage even when ``storage`` is set.
        extra_http_headers: Headers added to every request.
        client_app: Name of the calling application, sent in SDK headers.
        refresh_client: Callback ``(client) -> client`` (sync or async) used
            to obtain a freshly logged-on client when the session expires.
        no_sdk_headers: Do not send the ``ACC-SDK-*`` headers.
        transport: Async callable ``(HttpRequest) -> str``; defaults to httpx.
        timeout: Request timeout in seconds.
        charset: Request body encoding.
        push_down: Connection-level extra request options.
        log_level: Level used by :meth:`setup_logging`.
    """

    representation: str = dom.SIMPLE_JSON
    option_cache_ttl: Optional[float] = 300.0
    entity_cache_ttl: Optional[float] = None
    trace_api_calls: bool = False
    storage: Optional[StorageBackend] = None
    no_storage: bool = False
    extra_http_headers: Dict[str, str] = field(default_factory=dict)
    client_app: Optional[str] = None
    refresh_client: Optional[Callable[..., Any]] = None
    no_sdk_headers: bool = False
    transport: Optional[Callable[..., Any]] = None
    timeout: float = 5.0
    charset: str = "UTF-8"
    push_down: Dict[str, Any] = field(default_factory=dict)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        dom.check_representation(self.representation)

    @property
    def durable_storage(self) -> Optional[StorageBackend]:
        return None if self.no_storage else self.storage

    @classmethod
    def from_env(cls, **overrides: Any) -> "ClientConfig":
        """Create configuration from environment variables."""
        ttl = os.getenv("ACC_OPTION_CACHE_TTL")
        redis_url = os.getenv("ACC_REDIS_URL")
        values: Dict[str, Any] = dict(
            representation=os.getenv("ACC_REPRESENTATION", dom.SIMPLE_JSON),
            option_cache_ttl=float(ttl) if ttl else 300.0,
            trace_api_calls=_env_flag("ACC_TRACE_API_CALLS"),
            storage=RedisStorage.from_url(redis_url) if redis_url else None,
            no_storage=_env_flag("ACC_NO_STORAGE"),
            client_app=os.getenv("ACC_CLIENT_APP"),
            no_sdk_headers=_env_flag("ACC_NO_SDK_HEADERS"),
            timeout=float(os.getenv("ACC_TIMEOUT", "5")),
            log_level=os.getenv("ACC_LOG_LEVEL", "INFO"),
        )
        values.update(overrides)
        return cls(**values)

    def setup_logging(self) -> None:
        """Setup logging configuration."""
        logging.basicConfig(
            level=getattr(logging, self.log_level.upper()),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
