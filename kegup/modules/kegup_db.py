#!/usr/bin/env python3
# kegup_db.py
"""
KegupDB — sqlite-backed store of the installed package graph.

Key features:
 - Reads DB path from kegup_config (db.path); ":memory:" is accepted for tests and dry runs
 - Schema with schema_version stored in meta table
 - Context manager transaction() for safe commits/rollbacks
 - packages / deps / kegs / bottles tables mirroring kegup_inventory records
 - snapshot() returns a read-only Inventory; planning never reads the DB again
 - import_json()/export_json() exchange the same JSON snapshot format as Inventory.to_dict()
"""

from __future__ import annotations

import json
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from .kegup_inventory import Bottle, Inventory, InventoryError, Keg, Package, canonical_name

SCHEMA_VERSION = "1"


def load_inventory_json(path: str) -> Inventory:
    """Read a JSON snapshot file straight into an Inventory."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as e:
        raise InventoryError(f"invalid JSON in {path}: {e}") from e
    return Inventory.from_dict(data)


class KegupDB:
    DEFAULT_DB_PATH = "~/.local/state/kegup/kegup.db"

    def __init__(self, cfg: Any = None, logger: Any = None, db_path: Optional[str] = None):
        """
        Initialize KegupDB.

        - cfg: optional ConfigStore
        - logger: optional KegupLogger-compatible instance
        - db_path: explicit path (overrides db.path from cfg)
        """
        self.cfg = cfg
        self.logger = logger
        dbpath = db_path or (cfg.get("db.path") if cfg is not None else None) or self.DEFAULT_DB_PATH
        if dbpath == ":memory:":
            self.db_path = dbpath
        else:
            self.db_path = os.path.expanduser(str(dbpath))
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.conn = sqlite3.connect(self.db_path, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON;")
        self._init_db()

    def _log(self, level: str, event: str, message: str = "", **meta):
        if self.logger:
            getattr(self.logger, level)(event, message, **meta)

    # ----------------- schema -----------------
    def _init_db(self):
        cur = self.conn.cursor()
        cur.executescript(
            """
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT
            );
            CREATE TABLE IF NOT EXISTS packages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                kind TEXT NOT NULL DEFAULT 'formula',
                version TEXT,
                latest_version TEXT,
                latest_form TEXT,
                linked_version TEXT,
                pinned INTEGER NOT NULL DEFAULT 0,
                head INTEGER NOT NULL DEFAULT 0,
                head_ref TEXT,
                upstream_head_ref TEXT
            );
            CREATE TABLE IF NOT EXISTS deps (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                package_id INTEGER,
                dep TEXT,
                FOREIGN KEY(package_id) REFERENCES packages(id) ON DELETE CASCADE
            );
            CREATE TABLE IF NOT EXISTS kegs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                package_id INTEGER,
                version TEXT,
                disk_usage INTEGER DEFAULT 0,
                installed_at REAL DEFAULT 0,
                FOREIGN KEY(package_id) REFERENCES packages(id) ON DELETE CASCADE
            );
            CREATE TABLE IF NOT EXISTS bottles (
                package_id INTEGER PRIMARY KEY,
                tag TEXT,
                url TEXT,
                download_size INTEGER,
                installed_size INTEGER,
                FOREIGN KEY(package_id) REFERENCES packages(id) ON DELETE CASCADE
            );
            """
        )
        if self.get_meta("schema_version") is None:
            self.set_meta("schema_version", SCHEMA_VERSION)
        self._log("debug", "db.init", f"DB initialized at {self.db_path}", db_path=self.db_path)

    # ----------------- meta helpers -----------------
    def set_meta(self, key: str, value: str):
        self.conn.execute("INSERT OR REPLACE INTO meta(key, value) VALUES(?, ?);", (key, value))

    def get_meta(self, key: str) -> Optional[str]:
        r = self.conn.execute("SELECT value FROM meta WHERE key = ?;", (key,)).fetchone()
        return r["value"] if r else None

    # ----------------- transactions -----------------
    @contextmanager
    def transaction(self):
        """
        Context manager for transactions:
            with db.transaction():
                db.add_package(...)
        """
        cur = self.conn.cursor()
        cur.execute("BEGIN;")
        try:
            yield
        except Exception as e:
            cur.execute("ROLLBACK;")
            self._log("error", "db.tx.fail", f"Transaction failed: {e}", error=str(e))
            raise
        cur.execute("COMMIT;")

    # ----------------- package APIs -----------------
    def _package_id(self, name: str) -> Optional[int]:
        r = self.conn.execute("SELECT id FROM packages WHERE name = ?;", (canonical_name(name),)).fetchone()
        return r["id"] if r else None

    def add_package(self, pkg: Package) -> int:
        """
        Add or replace a package record with its deps, kegs and bottle. Returns package_id.
        """
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT INTO packages(name, kind, version, latest_version, latest_form, linked_version,
                                 pinned, head, head_ref, upstream_head_ref)
            VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
                kind = excluded.kind, version = excluded.version,
                latest_version = excluded.latest_version, latest_form = excluded.latest_form,
                linked_version = excluded.linked_version, pinned = excluded.pinned,
                head = excluded.head, head_ref = excluded.head_ref,
                upstream_head_ref = excluded.upstream_head_ref;
            """,
            (pkg.identity, pkg.kind, pkg.version, pkg.latest_version, pkg.latest_form, pkg.linked_version,
             int(pkg.pinned), int(pkg.head), pkg.head_ref, pkg.upstream_head_ref),
        )
        pid = self._package_id(pkg.name)
        cur.execute("DELETE FROM deps WHERE package_id = ?;", (pid,))
        cur.execute("DELETE FROM kegs WHERE package_id = ?;", (pid,))
        cur.execute("DELETE FROM bottles WHERE package_id = ?;", (pid,))
        for dep in pkg.dependencies:
            self.add_dep(pkg.name, dep)
        for keg in pkg.kegs:
            self.add_keg(pkg.name, keg)
        if pkg.bottle is not None:
            self.set_bottle(pkg.name, pkg.bottle)
        self._log("debug", "db.pkg.add", f"Added/updated package {pkg.name}", package=pkg.name, package_id=pid)
        return pid

    def _require_id(self, name: str) -> int:
        pid = self._package_id(name)
        if pid is None:
            raise InventoryError(f"unknown package: {name}")
        return pid

    def add_dep(self, package_name: str, dep: str):
        pid = self._require_id(package_name)
        self.conn.execute("INSERT INTO deps(package_id, dep) VALUES(?, ?);", (pid, dep))

    def add_keg(self, package_name: str, keg: Keg):
        pid = self._require_id(package_name)
        self.conn.execute(
            "INSERT INTO kegs(package_id, version, disk_usage, installed_at) VALUES(?, ?, ?, ?);",
            (pid, keg.version, keg.disk_usage, keg.installed_at),
        )

    def set_bottle(self, package_name: str, bottle: Bottle):
        pid = self._require_id(package_name)
        self.conn.execute(
            "INSERT OR REPLACE INTO bottles(package_id, tag, url, download_size, installed_size) VALUES(?, ?, ?, ?, ?);",
            (pid, bottle.tag, bottle.url, bottle.download_size, bottle.installed_size),
        )

    def get_deps(self, package_name: str) -> List[str]:
        rows = self.conn.execute(
            "SELECT d.dep FROM deps d JOIN packages p ON d.package_id = p.id WHERE p.name = ? ORDER BY d.id;",
            (canonical_name(package_name),),
        ).fetchall()
        return [r["dep"] for r in rows]

    def _row_to_package(self, r: sqlite3.Row) -> Package:
        pid = r["id"]
        kegs = self.conn.execute(
            "SELECT version, disk_usage, installed_at FROM kegs WHERE package_id = ? ORDER BY id;", (pid,)
        ).fetchall()
        b = self.conn.execute(
            "SELECT tag, url, download_size, installed_size FROM bottles WHERE package_id = ?;", (pid,)
        ).fetchone()
        return Package(
            name=r["name"],
            version=r["version"] or "",
            latest_version=r["latest_version"],
            kind=r["kind"],
            pinned=bool(r["pinned"]),
            dependencies=tuple(self.get_deps(r["name"])),
            bottle=Bottle(tag=b["tag"], url=b["url"], download_size=b["download_size"], installed_size=b["installed_size"]) if b else None,
            kegs=tuple(Keg(version=k["version"], disk_usage=k["disk_usage"] or 0, installed_at=k["installed_at"] or 0.0) for k in kegs),
            latest_form=r["latest_form"],
            linked_version=r["linked_version"],
            head=bool(r["head"]),
            head_ref=r["head_ref"],
            upstream_head_ref=r["upstream_head_ref"],
        )

    def get_package(self, name: str) -> Optional[Package]:
        r = self.conn.execute("SELECT * FROM packages WHERE name = ?;", (canonical_name(name),)).fetchone()
        return self._row_to_package(r) if r else None

    def list_packages(self) -> List[Package]:
        rows = self.conn.execute("SELECT * FROM packages ORDER BY name;").fetchall()
        return [self._row_to_package(r) for r in rows]

    # ----------------- snapshot / exchange -----------------
    def snapshot(self) -> Inventory:
        """Read the whole graph once; the returned Inventory never touches the DB."""
        inv = Inventory.of(self.list_packages())
        self._log("debug", "db.snapshot", f"Snapshot of {len(inv)} packages", count=len(inv))
        return inv

    def import_inventory(self, inventory: Inventory) -> int:
        with self.transaction():
            for pkg in inventory.all_packages():
                self.add_package(pkg)
        self._log("info", "db.import", f"Imported {len(inventory)} packages", count=len(inventory))
        return len(inventory)

    def import_json(self, path: str) -> int:
        return self.import_inventory(load_inventory_json(path))

    def export_json(self, dest: str) -> str:
        data: Dict[str, Any] = self.snapshot().to_dict()
        with open(dest, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
        self._log("info", "db.export", f"Exported packages to {dest}", path=dest)
        return dest

    # ----------------- utils -----------------
    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None
