#!/usr/bin/env python3
# kegup_inventory.py
"""
kegup_inventory.py — read-only snapshot of the installed package graph

Main pieces:
 - Keg / Bottle / Package: frozen records describing one package at snapshot time
 - Package.outdated(check_head): latest-version and HEAD-reference comparison
 - Inventory: name -> Package map with dependency lookup by canonical identity
 - Diagnostic: advisory / failure / partial records accumulated while planning
 - Inventory.from_dict()/to_dict(): JSON snapshot format shared with kegup_db
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

DEFAULT_TAP_PREFIX = "homebrew/core/"

FORMULA = "formula"
CASK = "cask"


class InventoryError(Exception):
    pass


def canonical_name(name: str) -> str:
    """Stable identity used for deduplication: lower-cased, default tap stripped."""
    key = name.strip().lower()
    if key.startswith(DEFAULT_TAP_PREFIX):
        key = key[len(DEFAULT_TAP_PREFIX):]
    return key


@dataclass(frozen=True)
class Keg:
    version: str
    disk_usage: int = 0
    installed_at: float = 0.0


@dataclass(frozen=True)
class Bottle:
    tag: str = "all"
    url: Optional[str] = None
    download_size: Optional[int] = None
    installed_size: Optional[int] = None


@dataclass(frozen=True)
class Diagnostic:
    level: str  # failure | advisory | partial
    event: str
    message: str
    package: Optional[str] = None

    @property
    def is_failure(self) -> bool:
        return self.level == "failure"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Package:
    name: str
    version: str
    latest_version: Optional[str] = None
    kind: str = FORMULA
    pinned: bool = False
    dependencies: Tuple[str, ...] = ()
    bottle: Optional[Bottle] = None
    kegs: Tuple[Keg, ...] = ()
    latest_form: Optional[str] = None
    linked_version: Optional[str] = None
    head: bool = False
    head_ref: Optional[str] = None
    upstream_head_ref: Optional[str] = None

    @property
    def identity(self) -> str:
        return canonical_name(self.name)

    @property
    def pkg_version(self) -> str:
        return self.latest_version or self.version

    @property
    def installed(self) -> bool:
        return bool(self.kegs)

    @property
    def bottled(self) -> bool:
        return self.bottle is not None

    def installed_kegs(self) -> List[Keg]:
        return list(self.kegs)

    def latest_keg(self) -> Optional[Keg]:
        if not self.kegs:
            return None
        return max(self.kegs, key=lambda k: k.installed_at)

    def latest_version_installed(self) -> bool:
        return any(k.version == self.pkg_version for k in self.kegs)

    def outdated(self, check_head: bool = False) -> bool:
        """True when an installed package is behind its latest known form.

        A HEAD install only counts as outdated for a new stable release, or when
        check_head is set and a fetched upstream reference differs from the
        installed one.
        """
        if not self.kegs:
            return False
        if self.head:
            if self.latest_version and self.latest_version != self.version:
                return True
            if not check_head or self.upstream_head_ref is None:
                return False
            return self.upstream_head_ref != self.head_ref
        return not self.latest_version_installed()

    def __str__(self) -> str:
        return self.name

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["dependencies"] = list(self.dependencies)
        d["kegs"] = [asdict(k) for k in self.kegs]
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Package":
        try:
            name = data["name"]
            version = str(data.get("version") or "")
        except (KeyError, TypeError) as e:
            raise InventoryError(f"malformed package record: {data!r}") from e
        bottle = data.get("bottle")
        kegs = data.get("kegs") or []
        try:
            return cls(
                name=name,
                version=version,
                latest_version=data.get("latest_version"),
                kind=data.get("kind", FORMULA),
                pinned=bool(data.get("pinned", False)),
                dependencies=tuple(data.get("dependencies") or ()),
                bottle=Bottle(**bottle) if bottle else None,
                kegs=tuple(Keg(**k) for k in kegs),
                latest_form=data.get("latest_form"),
                linked_version=data.get("linked_version"),
                head=bool(data.get("head", False)),
                head_ref=data.get("head_ref"),
                upstream_head_ref=data.get("upstream_head_ref"),
            )
        except TypeError as e:
            raise InventoryError(f"malformed record for {name}: {e}") from e


@dataclass
class Inventory:
    """Point-in-time view of every known package, keyed by identity."""

    packages: Dict[str, Package] = field(default_factory=dict)

    @classmethod
    def of(cls, packages: Iterable[Package]) -> "Inventory":
        inv = cls()
        for p in packages:
            inv.packages[p.identity] = p
        return inv

    def get(self, name: str) -> Optional[Package]:
        return self.packages.get(canonical_name(name))

    def __contains__(self, name: str) -> bool:
        return canonical_name(name) in self.packages

    def __len__(self) -> int:
        return len(self.packages)

    def all_packages(self) -> List[Package]:
        return list(self.packages.values())

    def installed_packages(self, kind: Optional[str] = None) -> List[Package]:
        return [p for p in self.packages.values() if p.installed and (kind is None or p.kind == kind)]

    def dependencies(self, package: Package) -> List[Package]:
        """Direct dependencies known to the snapshot; unknown names are dropped."""
        out = []
        for dep in package.dependencies:
            p = self.get(dep)
            if p is not None:
                out.append(p)
        return out

    def missing_dependencies(self, package: Package) -> List[str]:
        return [d for d in package.dependencies if d not in self]

    def latest_form(self, package: Package) -> Package:
        if package.latest_form:
            latest = self.get(package.latest_form)
            if latest is not None:
                return latest
        return package

    # ----------------- (de)serialization -----------------
    def to_dict(self) -> Dict[str, Any]:
        return {"packages": [p.to_dict() for p in self.packages.values()]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Inventory":
        if not isinstance(data, dict) or not isinstance(data.get("packages"), list):
            raise InventoryError("inventory snapshot must be an object with a 'packages' list")
        return cls.of(Package.from_dict(p) for p in data["packages"])
