#!/usr/bin/env python3
# kegup_deps.py
"""
kegup_deps.py — dependency closure used to size an upgrade

Main functionality:
 - prune_dependency(): pure keep/prune decision for one dependency edge
 - recursive_dependencies(): walk a package's dependency graph, deduped by identity
 - closure(): targets plus their outdated, bottled, non-leaf dependencies
 - outdated_dependents(): installed outdated packages depending on a closure member
 - sizing_closure(): closure + dependents, in first-seen order
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .kegup_inventory import Inventory, Package, canonical_name


class Visit(enum.Enum):
    DESCEND = "descend"
    PRUNE = "prune"


def prune_dependency(dependency: Package, parent: Package) -> Visit:
    """Keep only outdated, bottled dependencies that have dependencies of their own."""
    if not dependency.dependencies:
        return Visit.PRUNE
    if not dependency.outdated():
        return Visit.PRUNE
    if not dependency.bottled:
        return Visit.PRUNE
    return Visit.DESCEND


@dataclass
class ClosureReport:
    members: List[Package] = field(default_factory=list)
    pruned: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    dependents: List[str] = field(default_factory=list)

    def names(self) -> List[str]:
        return [p.name for p in self.members]


class KegupDeps:
    def __init__(self, inventory: Inventory, logger: Any = None):
        self.inventory = inventory
        self.logger = logger

    def _log(self, level: str, event: str, msg: str = "", **meta):
        if self.logger:
            getattr(self.logger, level)(event, msg, **meta)

    # ----------------- traversal -----------------
    def recursive_dependencies(
        self,
        package: Package,
        predicate: Callable[[Package, Package], Visit] = prune_dependency,
        report: Optional[ClosureReport] = None,
    ) -> List[Package]:
        """
        Dependencies of `package` that the predicate keeps, each identity once.
        A pruned dependency is neither included nor expanded. Cycles terminate
        because every identity is decided only the first time it is reached.
        """
        decided = {package.identity}
        kept: List[Package] = []
        stack = [package]
        while stack:
            parent = stack.pop()
            for name in parent.dependencies:
                dep = self.inventory.get(name)
                if dep is None:
                    if report is not None and name not in report.missing:
                        report.missing.append(name)
                    self._log("debug", "deps.missing", f"{name} (needed by {parent.name}) is not in the inventory", package=parent.name, dep=name)
                    continue
                if dep.identity in decided:
                    continue
                decided.add(dep.identity)
                if predicate(dep, parent) is Visit.PRUNE:
                    if report is not None:
                        report.pruned.append(dep.name)
                    continue
                kept.append(dep)
                stack.append(dep)
        return kept

    def closure(self, targets: Sequence[Package], check_dependencies: bool = True) -> ClosureReport:
        report = ClosureReport()
        members: Dict[str, Package] = {}

        def add(p: Package):
            if p.identity not in members:
                members[p.identity] = p

        for target in targets:
            add(target)
            if check_dependencies and target.dependencies:
                for dep in self.recursive_dependencies(target, report=report):
                    add(dep)
        report.members = list(members.values())
        return report

    # ----------------- dependents -----------------
    def outdated_dependents(self, members: Iterable[Package]) -> List[Package]:
        names = {p.identity for p in members}
        out = []
        for p in self.inventory.installed_packages():
            if p.identity in names or not p.outdated():
                continue
            if any(canonical_name(d) in names for d in p.dependencies):
                out.append(p)
        return out

    def sizing_closure(self, targets: Sequence[Package], check_dependencies: bool = True, check_dependents: bool = True) -> ClosureReport:
        """
        Everything worth sizing for an upgrade of `targets`: the targets, their pruned
        dependency closure and, unless disabled, installed outdated dependents.
        """
        report = self.closure(targets, check_dependencies=check_dependencies)
        if check_dependencies and check_dependents:
            dependents = self.outdated_dependents(report.members)
            report.members.extend(dependents)
            report.dependents = [p.name for p in dependents]
        self._log("debug", "deps.closure", f"Sizing {len(report.members)} packages", members=report.names(),
                  pruned=report.pruned, dependents=report.dependents)
        return report
