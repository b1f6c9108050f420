"""Build a throwaway Nix store tree and database for LocalStore tests."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, text

from nixserve.store.nar import dump_path

from tests.utils.store import STORE_DIR, make_store_path


SCHEMA = [
    """
    CREATE TABLE ValidPaths (
        id integer primary key autoincrement not null,
        path text unique not null,
        hash text not null,
        registrationTime integer not null,
        deriver text,
        narSize integer,
        ultimate integer,
        sigs text,
        ca text
    )
    """,
    """
    CREATE TABLE Refs (
        referrer integer not null,
        reference integer not null,
        primary key (referrer, reference)
    )
    """,
    """
    CREATE TABLE Realisations (
        id integer primary key autoincrement not null,
        drvPath text not null,
        outputName text not null,
        outputPath integer not null,
        signatures text
    )
    """,
    """
    CREATE TABLE RealisationsRefs (
        referrer integer not null,
        realisationReference integer
    )
    """,
]


class NixTestStore:
    """A real directory of store paths plus a matching ``db.sqlite``."""

    def __init__(self, root: Path) -> None:
        self.real_store_dir = root / "store"
        self.real_store_dir.mkdir(parents=True)
        self.database_url = f"sqlite+pysqlite:///{(root / 'db.sqlite').as_posix()}"
        self.engine = create_engine(self.database_url, future=True)
        with self.engine.begin() as conn:
            for statement in SCHEMA:
                conn.execute(text(statement))

    def real_path(self, store_path: str) -> Path:
        return self.real_store_dir / store_path[len(STORE_DIR) + 1 :]

    def add_file(self, name: str, contents: bytes, executable: bool = False) -> str:
        store_path = make_store_path(name)
        real = self.real_path(store_path)
        real.write_bytes(contents)
        if executable:
            real.chmod(0o755)
        return store_path

    def add_tree(self, name: str, files: dict[str, bytes], symlinks: Optional[dict[str, str]] = None) -> str:
        store_path = make_store_path(name)
        real = self.real_path(store_path)
        for relative, contents in files.items():
            target = real / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(contents)
        for relative, link_target in (symlinks or {}).items():
            link = real / relative
            link.parent.mkdir(parents=True, exist_ok=True)
            link.symlink_to(link_target)
        return store_path

    def register(
        self,
        store_path: str,
        references: tuple[str, ...] = (),
        deriver: Optional[str] = None,
        hash_text: Optional[str] = None,
    ) -> int:
        nar = b"".join(dump_path(self.real_path(store_path)))
        if hash_text is None:
            hash_text = f"sha256:{hashlib.sha256(nar).hexdigest()}"
        with self.engine.begin() as conn:
            result = conn.execute(
                text(
                    """
                    INSERT INTO ValidPaths (path, hash, registrationTime, deriver, narSize)
                    VALUES (:path, :hash, 0, :deriver, :nar_size)
                    """
                ),
                {"path": store_path, "hash": hash_text, "deriver": deriver, "nar_size": len(nar)},
            )
            path_id = result.lastrowid
            for reference in references:
                conn.execute(
                    text(
                        """
                        INSERT INTO Refs (referrer, reference)
                        SELECT :referrer, id FROM ValidPaths WHERE path = :reference
                        """
                    ),
                    {"referrer": path_id, "reference": reference},
                )
        return path_id

    def register_realisation(
        self,
        drv_hash: str,
        output_name: str,
        out_path: str,
        signatures: str = "",
        depends_on: tuple[int, ...] = (),
    ) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                text(
                    """
                    INSERT INTO Realisations (drvPath, outputName, outputPath, signatures)
                    SELECT :drv_path, :output_name, id, :signatures FROM ValidPaths WHERE path = :out_path
                    """
                ),
                {"drv_path": drv_hash, "output_name": output_name, "out_path": out_path, "signatures": signatures},
            )
            realisation_id = result.lastrowid
            for dependency in depends_on:
                conn.execute(
                    text("INSERT INTO RealisationsRefs (referrer, realisationReference) VALUES (:referrer, :dep)"),
                    {"referrer": realisation_id, "dep": dependency},
                )
        return realisation_id

    def dispose(self) -> None:
        self.engine.dispose()
