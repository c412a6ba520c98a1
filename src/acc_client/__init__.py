"""ACC Client
==========

Asynchronous client engine for the Adobe Campaign Classic SOAP API.

Key capabilities
----------------
- Call any server method without generated code: schemas are fetched on
  demand and turned into a dynamic call surface (``client.nlws``).
- Exchange values as raw XML or as JSON (BadgerFish or SimpleJson).
- Entity and option caches with TTL, durable (Redis) mirroring and
  background invalidation.
- Several credential kinds and transparent re-authentication when the
  session expires.

Minimal quick start
-------------------
>>> import asyncio
>>> from acc_client import ConnectionParameters, init
>>> async def main():
...     params = ConnectionParameters.of_user_and_password("https://acc.example.com", "admin", "secret")
...     client = await init(params)
...     await client.logon()
...     return await client.nlws.xtkSession.getOption("XtkDatabaseId")

Public surface
--------------
Only a curated subset is exported at the package level to keep the import
surface stable; advanced modules can be imported explicitly.
"""

from ._version import __version__
from .client import Client, init
from .config import ClientConfig
from .credentials import ConnectionParameters, Credentials
from .errors import CampaignError, ErrorCode
from .observers import Observer
from .session import SessionState
from .storage import MemoryStorage, RedisStorage
from .transport import HttpRequest, HttpxTransport, TransportError

__all__ = [
    "__version__",
    "Client",
    "init",
    "ClientConfig",
    "ConnectionParameters",
    "Credentials",
    "CampaignError",
    "ErrorCode",
    "Observer",
    "SessionState",
    "MemoryStorage",
    "RedisStorage",
    "HttpRequest",
    "HttpxTransport",
    "TransportError",
]
