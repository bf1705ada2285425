#!/usr/bin/env python3
# kegup_outdated.py
"""
kegup_outdated.py — choose which installed packages an upgrade request covers

Main functionality:
 - resolve(): outdated candidates for "everything" or for explicitly named packages,
   recording "not installed" failures and "already installed" advisories
 - filter_pinned(): split candidates into pinned / unpinned with one aggregate diagnostic
 - select_targets(): map each unpinned candidate to its latest installable form
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .kegup_inventory import FORMULA, Diagnostic, Inventory, Package


def pluralize(word: str, count: int) -> str:
    return word if count == 1 else f"{word}s"


@dataclass
class OutdatedResult:
    candidates: List[Package] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)


@dataclass
class PinResult:
    pinned: List[Package] = field(default_factory=list)
    unpinned: List[Package] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)


class KegupOutdated:
    def __init__(self, inventory: Inventory, logger: Any = None):
        self.inventory = inventory
        self.logger = logger

    def _log(self, level: str, event: str, msg: str = "", **meta):
        if self.logger:
            getattr(self.logger, level)(event, msg, **meta)

    # ----------------- outdated set -----------------
    def resolve(self, named: Optional[Sequence[str]] = None, fetch_head: bool = False, quiet: bool = False) -> OutdatedResult:
        """
        Candidate set of outdated packages.

        Without names every installed formula is checked. With names, the ones that
        are not outdated are reported and dropped; nothing here aborts the run.
        """
        res = OutdatedResult()
        if not named:
            res.candidates = [p for p in self.inventory.installed_packages(FORMULA) if p.outdated(check_head=fetch_head)]
            self._log("debug", "outdated.scan", f"{len(res.candidates)} outdated of {len(self.inventory)} known",
                      outdated=[p.name for p in res.candidates])
            return res

        seen = set()
        for name in named:
            pkg = self.inventory.get(name)
            if pkg is not None and pkg.identity in seen:
                continue
            if pkg is not None:
                seen.add(pkg.identity)
            if pkg is not None and pkg.outdated(check_head=fetch_head):
                res.candidates.append(pkg)
                continue
            latest_keg = pkg.latest_keg() if pkg is not None else None
            if latest_keg is None:
                d = Diagnostic("failure", "outdated.not_installed", f"{name} not installed", package=name)
                res.diagnostics.append(d)
                self._log("error", d.event, d.message, package=name)
            else:
                d = Diagnostic("advisory", "outdated.already_installed", f"{pkg.name} {latest_keg.version} already installed", package=pkg.name)
                res.diagnostics.append(d)
                if not quiet:
                    self._log("warning", d.event, d.message, package=pkg.name, version=latest_keg.version)
        return res

    # ----------------- pins -----------------
    def filter_pinned(self, candidates: Sequence[Package], explicit: bool) -> PinResult:
        """
        Pinned candidates are never upgraded here. Naming a pinned package explicitly is
        a failure; finding one while upgrading everything is only an advisory.
        """
        res = PinResult()
        for p in candidates:
            (res.pinned if p.pinned else res.unpinned).append(p)
        if res.pinned:
            count = len(res.pinned)
            listing = ", ".join(f"{p.name} {p.pkg_version}" for p in res.pinned)
            message = f"Not upgrading {count} pinned {pluralize('package', count)}: {listing}"
            level = "failure" if explicit else "advisory"
            res.diagnostics.append(Diagnostic(level, "outdated.pinned", message))
            self._log("error" if explicit else "warning", "outdated.pinned", message, pinned=[p.name for p in res.pinned])
        return res

    # ----------------- targets -----------------
    def select_targets(self, unpinned: Sequence[Package]) -> List[Package]:
        targets: Dict[str, Package] = {}
        for p in unpinned:
            latest = self.inventory.latest_form(p)
            target = p if latest.latest_version_installed() else latest
            if target.identity not in targets:
                targets[target.identity] = target
            if target is not p:
                self._log("debug", "outdated.latest_form", f"{p.name} resolves to {target.name}", package=p.name, target=target.name)
        return list(targets.values())
