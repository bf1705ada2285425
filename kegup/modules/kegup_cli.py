#!/usr/bin/env python3
# kegup_cli.py
"""
kegup CLI

Commands:
 - upgrade (aliases: up, u): plan and run an upgrade of outdated packages
 - import FILE: load a JSON inventory snapshot into the sqlite store
 - export FILE: write the sqlite store out as a JSON inventory snapshot

Shared flags: --db, --inventory (read a JSON snapshot instead of the DB), --config,
--json, --quiet, --verbose, --report-dir. Reports are saved as (xz-compressed) JSON
when a report dir is configured.

Exit status: 0 ok / aborted by the user, 1 when any failure was recorded or a fatal
config / inventory error occurred, 2 on invalid usage.
"""

from __future__ import annotations

import argparse
import json
import lzma
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console

from .kegup_config import ConfigError, ConfigStore, init_config
from .kegup_confirm import ConfirmationGate, LineSource
from .kegup_db import KegupDB, load_inventory_json
from .kegup_inventory import Inventory, InventoryError
from .kegup_logger import KegupLogger
from .kegup_size import KegupSizer, make_source
from .kegup_upgrade import KegupUpgrade, UpgradeError, UpgradeOutcome, UpgradeRequest, UsageError

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


# ---------------- utilities ----------------
def now_ts() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def save_cli_report(report_dir: Path, name_prefix: str, report: Dict[str, Any], compress: bool = True) -> Path:
    report_dir.mkdir(parents=True, exist_ok=True)
    path = report_dir / f"{name_prefix}-{now_ts()}.json"
    data = json.dumps(report, indent=2, ensure_ascii=False).encode("utf-8")
    if compress:
        path = path.with_suffix(path.suffix + ".xz")
        data = lzma.compress(data)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_bytes(data)
    os.replace(str(tmp), str(path))
    return path


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--db", help="sqlite inventory store (overrides db.path)")
    common.add_argument("--inventory", help="read the installed graph from a JSON snapshot")
    common.add_argument("--config", action="append", default=[], help="extra TOML config file")
    common.add_argument("--json", action="store_true", help="output JSON")
    common.add_argument("-q", "--quiet", action="store_true", help="quiet mode (less output)")
    common.add_argument("-v", "--verbose", action="store_true", help="verbose output")
    common.add_argument("--report-dir", help="override CLI report dir")

    parser = argparse.ArgumentParser(prog="kegup", description="upgrade planner for installed packages")
    sub = parser.add_subparsers(dest="cmd")

    p_up = sub.add_parser("upgrade", aliases=["up", "u"], parents=[common], help="upgrade outdated packages")
    p_up.add_argument("names", nargs="*", help="packages to upgrade (default: every outdated formula)")
    p_up.add_argument("-n", "--dry-run", action="store_true", help="show what would be upgraded")
    p_up.add_argument("--ask", action="store_true", help="show the sized plan and ask before upgrading")
    p_up.add_argument("--size", action="store_true", help="compute download/install sizes without asking")
    p_up.add_argument("-s", "--build-from-source", action="store_true")
    p_up.add_argument("--fetch-HEAD", dest="fetch_head", action="store_true")
    p_up.add_argument("-f", "--force", action="store_true")
    mode = p_up.add_mutually_exclusive_group()
    mode.add_argument("--formula", "--formulae", dest="formula", action="store_true")
    mode.add_argument("--cask", "--casks", dest="cask", action="store_true")
    p_up.add_argument("--force-bottle", action="store_true")
    p_up.add_argument("-i", "--interactive", action="store_true")
    p_up.add_argument("--keep-tmp", action="store_true")
    p_up.add_argument("--debug-symbols", action="store_true")
    p_up.add_argument("--overwrite", action="store_true")
    p_up.add_argument("-d", "--debug", action="store_true")
    p_up.add_argument("--metadata", choices=["inventory", "ghcr"], help="bottle metadata source")

    p_imp = sub.add_parser("import", parents=[common], help="import a JSON snapshot into the DB")
    p_imp.add_argument("file")

    p_exp = sub.add_parser("export", parents=[common], help="export the DB as a JSON snapshot")
    p_exp.add_argument("file")
    return parser


# ---------------- CLI class ----------------
class KegupCLI:
    def __init__(self, cfg: Optional[ConfigStore] = None, console: Optional[Console] = None,
                 input_fn: Optional[LineSource] = None):
        self.cfg = cfg
        self.console = console
        self.input_fn = input_fn
        self.logger: Optional[KegupLogger] = None
        self.json_out = False

    def _load_config(self, args: argparse.Namespace) -> ConfigStore:
        cfg = self.cfg or init_config(extra_paths=[Path(p) for p in args.config])
        if args.json:
            cfg.set("output.json", True)
        if args.quiet:
            cfg.set("output.quiet", True)
        if args.report_dir:
            cfg.set("cli.report_dir", args.report_dir)
        return cfg

    def _open_db(self, cfg: ConfigStore, args: argparse.Namespace) -> KegupDB:
        return KegupDB(cfg, self.logger, db_path=args.db)

    def _inventory(self, cfg: ConfigStore, args: argparse.Namespace) -> Inventory:
        if args.inventory:
            return load_inventory_json(args.inventory)
        db = self._open_db(cfg, args)
        try:
            return db.snapshot()
        finally:
            db.close()

    def _save_report(self, cfg: ConfigStore, cmd: str, report: Dict[str, Any]) -> Optional[Path]:
        report_dir = cfg.get("cli.report_dir") or ""
        if not report_dir:
            return None
        path = save_cli_report(Path(report_dir).expanduser(), f"cli-{cmd}", report,
                               compress=cfg.get_bool("cli.compress_reports", True))
        self.logger.debug("cli.report", f"Report saved to {path}", path=str(path))
        return path

    # ---------------- commands ----------------
    def request_from_args(self, args: argparse.Namespace) -> UpgradeRequest:
        return UpgradeRequest(
            names=list(args.names),
            dry_run=args.dry_run,
            ask=args.ask,
            size=args.size,
            build_from_source=args.build_from_source,
            fetch_head=args.fetch_head,
            force=args.force,
            formula=args.formula,
            cask=args.cask,
            force_bottle=args.force_bottle,
            interactive=args.interactive,
            keep_tmp=args.keep_tmp,
            debug_symbols=args.debug_symbols,
            overwrite=args.overwrite,
            debug=args.debug,
            quiet=args.quiet,
            verbose=args.verbose,
        )

    def cmd_upgrade(self, cfg: ConfigStore, args: argparse.Namespace) -> UpgradeOutcome:
        request = self.request_from_args(args)
        request.validate()
        if request.ask and self.json_out:
            # JSON mode silences the console the gate prompts on
            raise UsageError("--ask cannot be combined with --json")
        inventory = self._inventory(cfg, args)
        source = make_source(cfg, self.logger, kind=args.metadata)
        planner = KegupUpgrade.from_config(
            cfg,
            inventory,
            self.logger,
            sizer=KegupSizer(source, self.logger, debug=args.debug),
            gate=ConfirmationGate(self.logger, input_fn=self.input_fn),
        )
        timed_upgrade = self.logger.perf_timer("upgrade")(planner.upgrade)
        return timed_upgrade(request)

    def cmd_import(self, cfg: ConfigStore, args: argparse.Namespace) -> int:
        db = self._open_db(cfg, args)
        try:
            return db.import_json(args.file)
        finally:
            db.close()

    def cmd_export(self, cfg: ConfigStore, args: argparse.Namespace) -> str:
        db = self._open_db(cfg, args)
        try:
            return db.export_json(args.file)
        finally:
            db.close()

    # ---------------- output ----------------
    def emit_json(self, payload: Dict[str, Any]) -> None:
        print(json.dumps(payload, indent=2, ensure_ascii=False))

    # ---------------- entrypoint ----------------
    def run(self, argv: Optional[List[str]] = None) -> int:
        parser = build_parser()
        args = parser.parse_args(sys.argv[1:] if argv is None else argv)
        if not args.cmd:
            parser.print_help()
            return EXIT_USAGE
        cmd = {"up": "upgrade", "u": "upgrade"}.get(args.cmd, args.cmd)

        try:
            cfg = self._load_config(args)
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_FAILURE
        self.logger = KegupLogger.from_config(cfg, module="cli", console=self.console)
        self.logger.set_verbose(args.verbose or getattr(args, "debug", False))
        self.json_out = self.logger.json_out

        report: Dict[str, Any] = {"command": cmd, "ts": now_ts()}
        code = EXIT_OK
        try:
            if cmd == "upgrade":
                outcome = self.cmd_upgrade(cfg, args)
                report["result"] = outcome.to_dict()
                code = EXIT_FAILURE if outcome.plan.has_failures else EXIT_OK
            elif cmd == "import":
                count = self.cmd_import(cfg, args)
                report["result"] = {"imported": count}
            elif cmd == "export":
                report["result"] = {"path": self.cmd_export(cfg, args)}
        except UsageError as e:
            self.logger.error("cli.usage", str(e))
            report["error"] = str(e)
            code = EXIT_USAGE
        except (ConfigError, InventoryError, UpgradeError) as e:
            self.logger.error("cli.fatal", str(e))
            report["error"] = str(e)
            code = EXIT_FAILURE

        report["exit_code"] = code
        metrics = self.logger.get_metrics()
        if metrics:
            report["metrics"] = metrics
        saved = self._save_report(cfg, cmd, report)
        if saved is not None:
            report["report_path"] = str(saved)
        if self.json_out:
            self.emit_json(report)
        self.logger.flush()
        return code


# ---------------- CLI runner ----------------
def main(argv: Optional[List[str]] = None) -> int:
    cli = KegupCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
