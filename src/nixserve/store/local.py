"""Store adapter backed by a local Nix store and its SQLite database."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, Optional

import structlog
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError

from .base import (
    HASH_PART_LENGTH,
    DrvOutput,
    PathInfo,
    Realisation,
    Store,
    StoreError,
    unique_references,
)
from .hashing import NIX32_CHARS, Hash, InvalidHash
from .nar import dump_path


LOGGER = structlog.get_logger("nixserve.store.local")


def is_valid_hash_part(hash_part: str) -> bool:
    return len(hash_part) == HASH_PART_LENGTH and all(char in NIX32_CHARS for char in hash_part)


class LocalStore(Store):
    """Reads path metadata from the Nix database and serializes paths from disk.

    The database belongs to the Nix daemon; this adapter only ever reads it.
    """

    def __init__(self, store_dir: str, database_url: str, *, real_store_dir: Optional[str] = None) -> None:
        self._store_dir = store_dir.rstrip("/") or "/"
        # A chroot store keeps logical /nix/store paths but files live elsewhere.
        self._real_store_dir = (real_store_dir or self._store_dir).rstrip("/") or "/"
        self._engine = self._create_engine(database_url)

    @staticmethod
    def _create_engine(database_url: str) -> Engine:
        url = make_url(database_url)
        connect_args: dict[str, object] = {}
        if url.drivername.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        return create_engine(url, future=True, pool_pre_ping=True, connect_args=connect_args)

    @property
    def store_dir(self) -> str:
        return self._store_dir

    def _real_path(self, path: str) -> Path:
        relative = path[len(self._store_dir) :].lstrip("/")
        return Path(self._real_store_dir) / relative

    def query_path_from_hash_part(self, hash_part: str) -> Optional[str]:
        if not is_valid_hash_part(hash_part):
            return None
        prefix = f"{self._store_dir}/{hash_part}"
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    text("SELECT path FROM ValidPaths WHERE path >= :prefix ORDER BY path LIMIT 1"),
                    {"prefix": prefix},
                ).fetchone()
        except SQLAlchemyError as exc:
            raise StoreError(f"querying path for hash part '{hash_part}': {exc}") from exc
        if row is None or not row[0].startswith(prefix):
            return None
        return row[0]

    def query_path_info(self, path: str) -> Optional[PathInfo]:
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    text("SELECT id, hash, narSize, deriver FROM ValidPaths WHERE path = :path"),
                    {"path": path},
                ).fetchone()
                if row is None:
                    return None
                path_id, hash_text, nar_size, deriver = row
                references = conn.execute(
                    text(
                        """
                        SELECT v.path FROM Refs r
                        JOIN ValidPaths v ON v.id = r.reference
                        WHERE r.referrer = :referrer
                        ORDER BY v.path
                        """
                    ),
                    {"referrer": path_id},
                ).scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError(f"querying info about '{path}': {exc}") from exc

        try:
            nar_hash = Hash.parse_any(hash_text, "sha256")
        except InvalidHash as exc:
            raise StoreError(f"invalid NAR hash recorded for '{path}': {exc}") from exc
        return PathInfo(
            path=path,
            nar_hash=nar_hash,
            nar_size=int(nar_size or 0),
            references=unique_references(references),
            deriver=deriver or None,
        )

    def nar_chunks(self, path: str, chunk_size: int) -> Iterator[bytes]:
        LOGGER.debug("nar_dump_start", path=path, chunk_size=chunk_size)
        return dump_path(self._real_path(path), chunk_size)

    def query_realisation(self, drv_output: DrvOutput) -> Optional[Realisation]:
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    text(
                        """
                        SELECT r.id, v.path, r.signatures FROM Realisations r
                        JOIN ValidPaths v ON v.id = r.outputPath
                        WHERE r.drvPath = :drv_path AND r.outputName = :output_name
                        """
                    ),
                    {"drv_path": drv_output.hash_string, "output_name": drv_output.output_name},
                ).fetchone()
                if row is None:
                    return None
                realisation_id, out_path, signatures = row
                dependents = conn.execute(
                    text(
                        """
                        SELECT d.drvPath, d.outputName, v.path FROM RealisationsRefs rr
                        JOIN Realisations d ON d.id = rr.realisationReference
                        JOIN ValidPaths v ON v.id = d.outputPath
                        WHERE rr.referrer = :referrer
                        """
                    ),
                    {"referrer": realisation_id},
                ).fetchall()
        except SQLAlchemyError as exc:
            raise StoreError(f"querying realisation '{drv_output}': {exc}") from exc

        return Realisation(
            id=drv_output,
            out_path=out_path,
            signatures=tuple(sig for sig in (signatures or "").split(" ") if sig),
            dependent_realisations={f"{drv_path}!{output_name}": dep_path for drv_path, output_name, dep_path in dependents},
        )

    def close(self) -> None:
        self._engine.dispose()
