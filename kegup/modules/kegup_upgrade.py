#!/usr/bin/env python3
# kegup_upgrade.py
"""
kegup_upgrade.py — plan an upgrade and hand it off

Flow implemented by KegupUpgrade.upgrade(request):
 - validate the request (UsageError before any planning)
 - split named casks from formulae; cask mode skips formula planning
 - resolve outdated candidates, filter pins, select latest forms
 - when asked to confirm (or --size), compute the sizing closure and totals
 - build a frozen UpgradePlan, announce it (with a size table when sized), optionally confirm
 - hand the targets to the installer and the dependents checker with one UpgradeOptions
   bundle, then periodic cleanup unless disabled by PlannerEnv

Collaborators are plain objects satisfying the protocols below. CommandInstaller is the
default one: it shells out to configured commands (brew by default).
"""

from __future__ import annotations

import shlex
import subprocess
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from rich.table import Table

from .kegup_config import PlannerEnv
from .kegup_confirm import ConfirmationGate
from .kegup_deps import KegupDeps
from .kegup_inventory import CASK, Bottle, Diagnostic, Inventory, Package
from .kegup_outdated import KegupOutdated, pluralize
from .kegup_size import KegupSizer, SizeTotals, disk_usage_readable


class UsageError(Exception):
    pass


class UpgradeError(Exception):
    pass


# ---------------- request / options ----------------
@dataclass(frozen=True)
class UpgradeOptions:
    """Flags passed unchanged to every collaborator."""

    dry_run: bool = False
    force_bottle: bool = False
    build_from_source: Tuple[str, ...] = ()
    interactive: bool = False
    keep_tmp: bool = False
    debug_symbols: bool = False
    force: bool = False
    overwrite: bool = False
    debug: bool = False
    quiet: bool = False
    verbose: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["build_from_source"] = list(self.build_from_source)
        return d


@dataclass
class UpgradeRequest:
    names: List[str] = field(default_factory=list)
    dry_run: bool = False
    ask: bool = False
    size: bool = False
    build_from_source: bool = False
    fetch_head: bool = False
    force: bool = False
    formula: bool = False
    cask: bool = False
    force_bottle: bool = False
    interactive: bool = False
    keep_tmp: bool = False
    debug_symbols: bool = False
    overwrite: bool = False
    debug: bool = False
    quiet: bool = False
    verbose: bool = False

    def validate(self) -> None:
        if self.build_from_source and not self.names:
            raise UsageError("--build-from-source requires at least one formula")
        if self.debug_symbols and not self.build_from_source:
            raise UsageError("--debug-symbols requires --build-from-source")
        if self.build_from_source and self.force_bottle:
            raise UsageError("--build-from-source and --force-bottle are mutually exclusive")
        if self.formula and self.cask:
            raise UsageError("--formula and --cask are mutually exclusive")

    def options(self) -> UpgradeOptions:
        return UpgradeOptions(
            dry_run=self.dry_run,
            force_bottle=self.force_bottle,
            build_from_source=tuple(self.names) if self.build_from_source else (),
            interactive=self.interactive,
            keep_tmp=self.keep_tmp,
            debug_symbols=self.debug_symbols,
            force=self.force,
            overwrite=self.overwrite,
            debug=self.debug,
            quiet=self.quiet,
            verbose=self.verbose,
        )


# ---------------- plan ----------------
@dataclass(frozen=True)
class UpgradePlan:
    targets: Tuple[Package, ...] = ()
    pinned_skipped: Tuple[Package, ...] = ()
    sizing_closure: Tuple[Package, ...] = ()
    size_totals: SizeTotals = field(default_factory=SizeTotals)
    sized: bool = False
    dry_run: bool = False
    diagnostics: Tuple[Diagnostic, ...] = ()
    casks: Tuple[str, ...] = ()
    # (name, bottle) pairs for the members whose metadata was fetched
    bottles: Tuple[Tuple[str, Bottle], ...] = ()

    @property
    def has_failures(self) -> bool:
        return any(d.is_failure for d in self.diagnostics)

    def bottle_for(self, name: str) -> Optional[Bottle]:
        return dict(self.bottles).get(name)

    def upgrade_lines(self) -> List[str]:
        """'name old -> new' for linked packages, 'name new' otherwise."""
        out = []
        for p in self.targets:
            if p.linked_version:
                out.append(f"{p.name} {p.linked_version} -> {p.pkg_version}")
            else:
                out.append(f"{p.name} {p.pkg_version}")
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targets": [{"name": p.name, "from": p.linked_version, "to": p.pkg_version} for p in self.targets],
            "pinned_skipped": [{"name": p.name, "version": p.pkg_version} for p in self.pinned_skipped],
            "sizing_closure": [p.name for p in self.sizing_closure],
            "size_totals": self.size_totals.to_dict(),
            "sized": self.sized,
            "dry_run": self.dry_run,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "casks": list(self.casks),
            "bottles": {
                name: {"download": b.download_size, "installed": b.installed_size} for name, b in self.bottles
            },
        }


@dataclass
class UpgradeOutcome:
    plan: UpgradePlan
    proceeded: bool = False
    aborted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"plan": self.plan.to_dict(), "proceeded": self.proceeded, "aborted": self.aborted}


# ---------------- collaborators ----------------
class Installer(Protocol):
    def upgrade_packages(self, targets: Sequence[Package], options: UpgradeOptions) -> None: ...


class DependentsChecker(Protocol):
    def check_installed_dependents(self, targets: Sequence[Package], options: UpgradeOptions) -> None: ...


class Cleanup(Protocol):
    def periodic_clean(self, dry_run: bool = False) -> None: ...


class CaskUpgrader(Protocol):
    def upgrade_casks(self, names: Sequence[str], options: UpgradeOptions) -> None: ...


FLAG_ARGS = (
    ("force_bottle", "--force-bottle"),
    ("interactive", "--interactive"),
    ("keep_tmp", "--keep-tmp"),
    ("debug_symbols", "--debug-symbols"),
    ("force", "--force"),
    ("overwrite", "--overwrite"),
    ("debug", "--debug"),
    ("quiet", "--quiet"),
    ("verbose", "--verbose"),
)


class CommandInstaller:
    """
    Installer, DependentsChecker and Cleanup backed by external commands:
      upgrade.install_command     + flags + target names
      upgrade.dependents_command  + target names   (skipped when empty)
      upgrade.cleanup_command                      (skipped when empty)
    In dry-run mode the command lines are only logged.
    """

    def __init__(self, cfg: Any = None, logger: Any = None, runner: Callable[..., Any] = subprocess.run):
        self.cfg = cfg
        self.logger = logger
        self.runner = runner
        self.install_command = self._command("upgrade.install_command", ["brew", "upgrade", "--formula"])
        self.dependents_command = self._command("upgrade.dependents_command", [])
        self.cleanup_command = self._command("upgrade.cleanup_command", [])

    def _command(self, key: str, default: List[str]) -> List[str]:
        v = self.cfg.get(key, default) if self.cfg is not None else default
        if isinstance(v, str):
            return shlex.split(v)
        return [str(x) for x in (v or [])]

    def _log(self, level: str, event: str, msg: str = "", **meta):
        if self.logger:
            getattr(self.logger, level)(event, msg, **meta)

    def _run(self, event: str, cmd: List[str], dry_run: bool) -> None:
        line = " ".join(shlex.quote(c) for c in cmd)
        if dry_run:
            self._log("info", event, f"Would run: {line}", cmd=cmd)
            return
        self._log("debug", event, f"Running: {line}", cmd=cmd)
        try:
            self.runner(cmd, check=True)
        except subprocess.CalledProcessError as e:
            self._log("error", f"{event}.fail", f"{line} exited with {e.returncode}", cmd=cmd, returncode=e.returncode)
            raise UpgradeError(f"{cmd[0]} failed with exit status {e.returncode}") from e
        except OSError as e:
            raise UpgradeError(f"cannot run {cmd[0]}: {e}") from e

    @staticmethod
    def flag_args(options: UpgradeOptions) -> List[str]:
        args = [flag for attr, flag in FLAG_ARGS if getattr(options, attr)]
        if options.build_from_source:
            args.append("--build-from-source")
        return args

    def upgrade_packages(self, targets: Sequence[Package], options: UpgradeOptions) -> None:
        if not targets or not self.install_command:
            return
        cmd = self.install_command + self.flag_args(options) + [p.name for p in targets]
        self._run("upgrade.install", cmd, options.dry_run)

    def check_installed_dependents(self, targets: Sequence[Package], options: UpgradeOptions) -> None:
        if not targets or not self.dependents_command:
            return
        self._run("upgrade.dependents", self.dependents_command + [p.name for p in targets], options.dry_run)

    def periodic_clean(self, dry_run: bool = False) -> None:
        if not self.cleanup_command:
            return
        self._run("upgrade.cleanup", list(self.cleanup_command), dry_run)


# ---------------- planner ----------------
class KegupUpgrade:
    def __init__(
        self,
        inventory: Inventory,
        logger: Any,
        env: Optional[PlannerEnv] = None,
        installer: Optional[Installer] = None,
        dependents_checker: Optional[DependentsChecker] = None,
        cleanup: Optional[Cleanup] = None,
        cask_upgrader: Optional[CaskUpgrader] = None,
        sizer: Optional[KegupSizer] = None,
        gate: Optional[ConfirmationGate] = None,
    ):
        self.inventory = inventory
        self.logger = logger
        self.env = env or PlannerEnv()
        self.installer = installer
        self.dependents_checker = dependents_checker
        self.cleanup = cleanup
        self.cask_upgrader = cask_upgrader
        self.sizer = sizer or KegupSizer(logger=logger)
        self.gate = gate
        self.outdated = KegupOutdated(inventory, logger)
        self.deps = KegupDeps(inventory, logger)

    @classmethod
    def from_config(cls, cfg: Any, inventory: Inventory, logger: Any, **kwargs) -> "KegupUpgrade":
        """Planner wired with PlannerEnv from cfg and a CommandInstaller for every hand-off."""
        runner = CommandInstaller(cfg, logger)
        kwargs.setdefault("installer", runner)
        kwargs.setdefault("dependents_checker", runner)
        kwargs.setdefault("cleanup", runner)
        return cls(inventory, logger, env=PlannerEnv.from_config(cfg), **kwargs)

    def _split_casks(self, request: UpgradeRequest) -> Tuple[List[str], List[str]]:
        if request.cask:
            return [], list(request.names)
        if request.formula:
            return list(request.names), []
        formulae, casks = [], []
        for name in request.names:
            pkg = self.inventory.get(name)
            (casks if pkg is not None and pkg.kind == CASK else formulae).append(name)
        return formulae, casks

    # ---------------- planning ----------------
    def plan(self, request: UpgradeRequest) -> UpgradePlan:
        """Build the plan for `request`. Reads only the inventory snapshot; no side effects."""
        request.validate()
        diagnostics: List[Diagnostic] = []

        formula_names, cask_names = self._split_casks(request)
        only_casks = request.cask or (bool(cask_names) and not formula_names)
        if request.cask and not cask_names:
            cask_names = [p.name for p in self.inventory.installed_packages(CASK) if p.outdated()]

        targets: List[Package] = []
        pinned: List[Package] = []
        closure: List[Package] = []
        totals = SizeTotals()
        bottles: Dict[str, Bottle] = {}
        sized = False

        if not only_casks:
            if request.build_from_source and not self.env.developer:
                d = Diagnostic("advisory", "upgrade.build_from_source", "building from source is not supported!")
                diagnostics.append(d)
                self.logger.warning(d.event, d.message)
                self.logger.echo("You're on your own. Failures are expected so don't create any issues, please!")

            resolved = self.outdated.resolve(formula_names or None, fetch_head=request.fetch_head, quiet=request.quiet)
            diagnostics.extend(resolved.diagnostics)
            pins = self.outdated.filter_pinned(resolved.candidates, explicit=bool(formula_names))
            diagnostics.extend(pins.diagnostics)
            pinned = pins.pinned
            targets = self.outdated.select_targets(pins.unpinned)
            closure = list(targets)

            if (request.ask or request.size) and targets:
                self.logger.heading("Looking for bottles...")
                report = self.deps.sizing_closure(
                    targets,
                    check_dependencies=True,
                    check_dependents=not self.env.no_installed_dependents_check,
                )
                closure = report.members
                estimate = self.sizer.estimate(closure)
                totals = estimate.totals
                bottles = estimate.bottles
                diagnostics.extend(estimate.diagnostics)
                sized = True

        if cask_names and self.cask_upgrader is None:
            d = Diagnostic("advisory", "upgrade.casks", f"Cask upgrades are not handled here: {', '.join(cask_names)}")
            diagnostics.append(d)
            self.logger.warning(d.event, d.message, casks=cask_names)

        return UpgradePlan(
            targets=tuple(targets),
            pinned_skipped=tuple(pinned),
            sizing_closure=tuple(closure),
            size_totals=totals,
            sized=sized,
            dry_run=request.dry_run,
            diagnostics=tuple(diagnostics),
            casks=tuple(cask_names),
            bottles=tuple((p.name, bottles[p.name]) for p in closure if p.name in bottles),
        )

    def announce(self, plan: UpgradePlan) -> None:
        if not plan.targets:
            if not plan.casks:
                self.logger.heading("No packages to upgrade")
            return
        verb = "Would upgrade" if plan.dry_run else "Upgrading"
        count = len(plan.targets)
        self.logger.heading(f"{verb} {count} outdated {pluralize('package', count)}:")
        for line in plan.upgrade_lines():
            self.logger.echo(line)

    def show_sizes(self, plan: UpgradePlan) -> None:
        """Per-package table of the fetched bottle sizes; '-' where nothing was fetched."""
        if not plan.sized or self.logger.json_out or self.logger.quiet:
            return
        table = Table(title="Upgrade Size")
        table.add_column("package")
        table.add_column("download", justify="right")
        table.add_column("install", justify="right")
        for p in plan.sizing_closure:
            b = plan.bottle_for(p.name)
            table.add_row(
                p.name,
                disk_usage_readable(b.download_size) if b and b.download_size is not None else "-",
                disk_usage_readable(b.installed_size) if b and b.installed_size is not None else "-",
            )
        totals = plan.size_totals
        table.add_row("total", disk_usage_readable(totals.download), disk_usage_readable(totals.installed))
        self.logger.console.print(table)
        if totals.net != 0:
            self.logger.echo(f"Net Install Size: {disk_usage_readable(totals.net)}")

    # ---------------- execution ----------------
    def upgrade(self, request: UpgradeRequest) -> UpgradeOutcome:
        plan = self.plan(request)
        self.announce(plan)
        if not request.ask:
            self.show_sizes(plan)
        outcome = UpgradeOutcome(plan=plan)

        if request.ask and plan.targets:
            gate = self.gate or ConfirmationGate(self.logger)
            if not gate.ask(plan.sizing_closure, plan.size_totals):
                outcome.aborted = True
                self.logger.info("upgrade.aborted", "Upgrade aborted")
                return outcome

        self.execute(plan, request.options())
        outcome.proceeded = True
        return outcome

    def execute(self, plan: UpgradePlan, options: UpgradeOptions) -> None:
        """Hand the plan to the collaborators. Dry runs go through too, flagged in options."""
        if plan.targets:
            targets = list(plan.targets)
            if self.installer is not None:
                self.installer.upgrade_packages(targets, options)
            if self.dependents_checker is not None:
                self.dependents_checker.check_installed_dependents(targets, options)

        if plan.casks and self.cask_upgrader is not None:
            self.cask_upgrader.upgrade_casks(list(plan.casks), options)

        if self.cleanup is not None and not self.env.no_install_cleanup:
            self.cleanup.periodic_clean(dry_run=options.dry_run)
