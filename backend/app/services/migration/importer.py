"""Import of a LiteBans export into the player store.

The uploaded file is a JSON object with a ``players`` array. Records are
merged into existing players by Minecraft UUID, batch by batch, and the
tenant's migration session is kept informed of the counters.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncContextManager

from sqlalchemy.ext.asyncio import AsyncSession

from ...crud.player import PlayerRepository
from .service import MigrationService, NoActiveMigrationError
from .state import MigrationProgress, MigrationStatus

DEFAULT_BATCH_SIZE = 500
PROGRESS_UPDATE_INTERVAL = 1000

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]

logger = logging.getLogger("modl.migration.importer")


class MigrationPayloadError(ValueError):
    pass


def validate_migration_payload(data: Any) -> list[Any]:
    if not isinstance(data, dict):
        raise MigrationPayloadError("Invalid JSON structure")
    players = data.get("players")
    if not isinstance(players, list):
        raise MigrationPayloadError('Missing or invalid "players" array')
    return players


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_timestamp(value: Any) -> str:
    return _parse_timestamp(value).isoformat()


def _normalize_usernames(entries: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    return [
        {"username": entry["username"], "date": _format_timestamp(entry["date"])}
        for entry in entries or []
    ]


def _normalize_notes(entries: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    return [
        {
            "text": entry["text"],
            "date": _format_timestamp(entry["date"]),
            "issuerName": entry.get("issuerName"),
        }
        for entry in entries or []
    ]


def _normalize_ip(entry: dict[str, Any]) -> dict[str, Any]:
    return {
        "ipAddress": entry["ipAddress"],
        "country": entry.get("country"),
        "firstLogin": _format_timestamp(entry["firstLogin"]),
        "logins": [_format_timestamp(login) for login in entry.get("logins") or []],
    }


def _normalize_punishment(entry: dict[str, Any]) -> dict[str, Any]:
    punishment = dict(entry)
    if punishment.get("issued") is not None:
        punishment["issued"] = _format_timestamp(punishment["issued"])
    if punishment.get("started"):
        punishment["started"] = _format_timestamp(punishment["started"])
    else:
        punishment.pop("started", None)
    return punishment


def new_player_document(incoming: dict[str, Any]) -> dict[str, Any]:
    return {
        "minecraft_uuid": incoming["minecraftUuid"],
        "usernames": _normalize_usernames(incoming.get("usernames")),
        "notes": _normalize_notes(incoming.get("notes")),
        "ip_list": [_normalize_ip(entry) for entry in incoming.get("ipList") or []],
        "punishments": [
            _normalize_punishment(entry) for entry in incoming.get("punishments") or []
        ],
        "data": dict(incoming.get("data") or {}),
    }


def merge_player_document(existing: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Merge an exported record into a stored player document.

    Usernames are deduplicated by name, notes are appended, IP entries are
    merged per address (sorted unique logins, earliest first login), only
    punishments with an unseen ``_id`` are appended, and ``data`` keys from
    the export win. ``existing`` is not mutated.
    """
    known_usernames = {entry["username"] for entry in existing.get("usernames") or []}
    usernames = list(existing.get("usernames") or [])
    for entry in _normalize_usernames(incoming.get("usernames")):
        if entry["username"] not in known_usernames:
            known_usernames.add(entry["username"])
            usernames.append(entry)

    notes = list(existing.get("notes") or []) + _normalize_notes(incoming.get("notes"))

    ip_list = [dict(entry) for entry in existing.get("ip_list") or []]
    by_address = {entry["ipAddress"]: entry for entry in ip_list}
    for raw in incoming.get("ipList") or []:
        entry = _normalize_ip(raw)
        current = by_address.get(entry["ipAddress"])
        if current is None:
            ip_list.append(entry)
            by_address[entry["ipAddress"]] = entry
            continue
        logins = {
            _parse_timestamp(login) for login in list(current.get("logins") or []) + entry["logins"]
        }
        current["logins"] = [login.isoformat() for login in sorted(logins)]
        if _parse_timestamp(entry["firstLogin"]) < _parse_timestamp(current["firstLogin"]):
            current["firstLogin"] = entry["firstLogin"]

    punishments = list(existing.get("punishments") or [])
    seen_ids = {str(entry.get("_id")) for entry in punishments if entry.get("_id") is not None}
    for raw in incoming.get("punishments") or []:
        if raw.get("_id") is not None and str(raw["_id"]) in seen_ids:
            continue
        punishments.append(_normalize_punishment(raw))

    data = dict(existing.get("data") or {})
    data.update(incoming.get("data") or {})

    return {
        "minecraft_uuid": existing.get("minecraft_uuid", incoming["minecraftUuid"]),
        "usernames": usernames,
        "notes": notes,
        "ip_list": ip_list,
        "punishments": punishments,
        "data": data,
    }


def _player_document(player: Any) -> dict[str, Any]:
    return {
        "minecraft_uuid": player.minecraft_uuid,
        "usernames": player.usernames or [],
        "notes": player.notes or [],
        "ip_list": player.ip_list or [],
        "punishments": player.punishments or [],
        "data": player.data or {},
    }


def _read_payload(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


class MigrationImporter:
    def __init__(
        self,
        session_factory: SessionFactory,
        migrations: MigrationService,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._session_factory = session_factory
        self._migrations = migrations
        self._batch_size = batch_size

    async def _report(
        self,
        server_name: str,
        status: MigrationStatus,
        message: str,
        processed: int,
        skipped: int,
        total: int | None,
        *,
        session_id: str | None,
        error: str | None = None,
        api_key: str | None = None,
    ) -> None:
        await self._migrations.advance(
            server_name,
            status,
            MigrationProgress(
                message=message,
                records_processed=processed,
                records_skipped=skipped,
                total_records=total,
            ),
            session_id=session_id,
            error=error,
            api_key=api_key,
        )

    async def process_file(
        self,
        path: str | Path,
        server_name: str,
        session_id: str | None = None,
        api_key: str | None = None,
    ) -> None:
        """Import ``path`` for ``server_name`` and delete the file afterwards.

        ``api_key`` is the credential that uploaded the file; completion starts
        its cooldown as well as the server's.

        If the session disappears while importing (cancelled from the panel),
        the import stops at the next progress report.
        """
        path = Path(path)
        processed = 0
        skipped = 0
        total: int | None = None
        try:
            await self._report(
                server_name,
                MigrationStatus.PROCESSING_DATA,
                "Reading and validating migration file...",
                processed,
                skipped,
                total,
                session_id=session_id,
            )
            payload = await asyncio.to_thread(_read_payload, path)
            players = validate_migration_payload(payload)
            total = len(players)
            await self._report(
                server_name,
                MigrationStatus.PROCESSING_DATA,
                f"Processing {total} player records...",
                processed,
                skipped,
                total,
                session_id=session_id,
            )

            async with self._session_factory() as session:
                repo = PlayerRepository(session)
                last_reported = 0
                for start in range(0, total, self._batch_size):
                    batch_processed, batch_skipped = await self._import_batch(
                        repo, server_name, players[start : start + self._batch_size]
                    )
                    processed += batch_processed
                    skipped += batch_skipped

                    is_last = start + self._batch_size >= total
                    if is_last or processed - last_reported >= PROGRESS_UPDATE_INTERVAL:
                        last_reported = processed
                        await self._report(
                            server_name,
                            MigrationStatus.PROCESSING_DATA,
                            f"Processing player records... ({processed}/{total})",
                            processed,
                            skipped,
                            total,
                            session_id=session_id,
                        )

            await self._report(
                server_name,
                MigrationStatus.COMPLETED,
                "Migration completed successfully",
                processed,
                skipped,
                total,
                session_id=session_id,
                api_key=api_key,
            )
            logger.info(
                "[MIGRATION] import_completed server=%s processed=%s skipped=%s",
                server_name,
                processed,
                skipped,
            )
        except NoActiveMigrationError:
            logger.warning(
                "[MIGRATION] import_aborted server=%s reason=no_active_session processed=%s",
                server_name,
                processed,
            )
        except Exception as exc:
            logger.error(
                "[MIGRATION] import_failed server=%s processed=%s skipped=%s",
                server_name,
                processed,
                skipped,
                exc_info=exc,
            )
            try:
                await self._report(
                    server_name,
                    MigrationStatus.FAILED,
                    "Migration failed",
                    processed,
                    skipped,
                    total,
                    session_id=session_id,
                    error=str(exc) or exc.__class__.__name__,
                )
            except NoActiveMigrationError:
                pass
            raise
        finally:
            self._cleanup(path)

    async def _import_batch(
        self, repo: PlayerRepository, server_name: str, batch: list[Any]
    ) -> tuple[int, int]:
        processed = 0
        skipped = 0
        records: list[dict[str, Any]] = []
        for record in batch:
            if not isinstance(record, dict) or not isinstance(record.get("minecraftUuid"), str):
                logger.warning("[MIGRATION] record_skipped reason=invalid_minecraft_uuid")
                skipped += 1
                continue
            records.append(record)
        if not records:
            return processed, skipped

        existing = await repo.get_many_by_uuid(
            server_name, [record["minecraftUuid"] for record in records]
        )
        for record in records:
            try:
                player = existing.get(record["minecraftUuid"])
                if player is None:
                    existing[record["minecraftUuid"]] = repo.add(
                        server_name, new_player_document(record)
                    )
                else:
                    repo.apply(player, merge_player_document(_player_document(player), record))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning(
                    "[MIGRATION] record_skipped uuid=%s reason=%s",
                    record["minecraftUuid"],
                    exc.__class__.__name__,
                )
                skipped += 1
                continue
            processed += 1

        await repo.commit()
        return processed, skipped

    @staticmethod
    def _cleanup(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("[MIGRATION] cleanup_failed path=%s", path, exc_info=exc)
        else:
            logger.debug("[MIGRATION] cleanup path=%s", path)
