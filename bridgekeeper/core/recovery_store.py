# /bridgekeeper/core/recovery_store.py
"""Durable per-wallet storage for PendingBurnRecord.

A record is the only evidence that funds were burned and not yet minted, so
every ``set`` and ``clear`` must have reached stable storage before it
returns. The file backend writes to a temp file, fsyncs it, atomically
renames it over the target and fsyncs the directory. The Redis backend is
meant for service deployments where Redis runs with AOF persistence.
"""
import os
from pathlib import Path
from typing import Optional, Protocol

import aiofiles
import aiofiles.os
import redis.asyncio as aioredis

from bridgekeeper.core.config import settings
from bridgekeeper.core.logger import get_logger
from bridgekeeper.core.state import PendingBurnRecord, normalize_wallet

log = get_logger(__name__)


class RecoveryStore(Protocol):
    async def get(self, wallet_address: str) -> Optional[PendingBurnRecord]: ...

    async def set(self, wallet_address: str, record: PendingBurnRecord) -> None: ...

    async def clear(self, wallet_address: str) -> None: ...


def _fsync_dir(path: Path):
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class FileRecoveryStore:
    def __init__(self, directory: str | Path | None = None):
        self.directory = Path(directory or Path(settings.SESSION_DIR) / "pending_burns")
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, wallet_address: str) -> Path:
        return self.directory / f"{normalize_wallet(wallet_address)}.json"

    async def get(self, wallet_address: str) -> Optional[PendingBurnRecord]:
        path = self._path(wallet_address)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                data = await f.read()
        except FileNotFoundError:
            return None
        return PendingBurnRecord.model_validate_json(data)

    async def set(self, wallet_address: str, record: PendingBurnRecord) -> None:
        path = self._path(wallet_address)
        tmp = path.with_suffix(".json.tmp")
        async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
            await f.write(record.model_dump_json(indent=2))
            await f.flush()
            await aiofiles.os.wrap(os.fsync)(f.fileno())
        await aiofiles.os.replace(tmp, path)
        await aiofiles.os.wrap(_fsync_dir)(self.directory)
        log.warning("PENDING_BURN_RECORD_WRITTEN", wallet=normalize_wallet(wallet_address),
                    burn_tx_hash=record.burn_tx_hash, amount=record.amount, path=str(path))

    async def clear(self, wallet_address: str) -> None:
        path = self._path(wallet_address)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return
        await aiofiles.os.wrap(_fsync_dir)(self.directory)
        log.warning("PENDING_BURN_RECORD_CLEARED", wallet=normalize_wallet(wallet_address))


class RedisRecoveryStore:
    KEY_PREFIX = "pending_burn:"

    def __init__(self, client=None, url: str | None = None):
        self.redis = client or aioredis.Redis.from_url(url or settings.REDIS_URL)

    def _key(self, wallet_address: str) -> str:
        return f"{self.KEY_PREFIX}{normalize_wallet(wallet_address)}"

    async def get(self, wallet_address: str) -> Optional[PendingBurnRecord]:
        raw = await self.redis.get(self._key(wallet_address))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return PendingBurnRecord.model_validate_json(raw)

    async def set(self, wallet_address: str, record: PendingBurnRecord) -> None:
        await self.redis.set(self._key(wallet_address), record.model_dump_json())
        log.warning("PENDING_BURN_RECORD_WRITTEN", wallet=normalize_wallet(wallet_address),
                    burn_tx_hash=record.burn_tx_hash, amount=record.amount, backend="redis")

    async def clear(self, wallet_address: str) -> None:
        await self.redis.delete(self._key(wallet_address))
        log.warning("PENDING_BURN_RECORD_CLEARED", wallet=normalize_wallet(wallet_address), backend="redis")

    async def close(self):
        await self.redis.aclose()


def build_store(backend: str | None = None) -> RecoveryStore:
    backend = (backend or settings.RECOVERY_BACKEND).lower()
    if backend == "file":
        return FileRecoveryStore()
    if backend == "redis":
        return RedisRecoveryStore()
    raise ValueError(f"Unknown RECOVERY_BACKEND '{backend}'")
