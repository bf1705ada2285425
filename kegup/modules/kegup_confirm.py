#!/usr/bin/env python3
# kegup_confirm.py
"""
ConfirmationGate — interactive "proceed?" step before an upgrade runs.

The line source is injectable (any iterator of strings, or a callable returning the
next line); the default reads from the console. End of input counts as "no".
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Iterator, Optional, Sequence, Union

from .kegup_inventory import Package
from .kegup_size import SizeTotals, disk_usage_readable

PROMPT = "Do you want to proceed with the installation? [Y/y/yes/N/n]"
INVALID_INPUT = "Invalid input. Please enter 'Y', 'y', or 'yes' to proceed, or 'N' to abort."

YES = ("y", "yes")
NO = ("n", "no")

LineSource = Union[Callable[[], str], Iterable[str]]


class ConfirmationGate:
    def __init__(self, logger: Any, input_fn: Optional[LineSource] = None):
        self.logger = logger
        self._next_line = self._reader(input_fn)

    def _reader(self, source: Optional[LineSource]) -> Callable[[], str]:
        if source is None:
            return self.logger.console.input
        if callable(source):
            return source
        it: Iterator[str] = iter(source)

        def read() -> str:
            try:
                return next(it)
            except StopIteration:
                raise EOFError from None
        return read

    def render_summary(self, packages: Sequence[Package], totals: SizeTotals) -> None:
        self.logger.echo(f"Formulae: {', '.join(p.name for p in packages)}")
        self.logger.echo()
        self.logger.echo(f"Download Size: {disk_usage_readable(totals.download)}")
        self.logger.echo(f"Install Size: {disk_usage_readable(totals.installed)}")
        if totals.net != 0:
            self.logger.echo(f"Net Install Size: {disk_usage_readable(totals.net)}")

    def ask(self, packages: Sequence[Package] = (), totals: Optional[SizeTotals] = None) -> bool:
        """Show the summary, then loop until a yes/no answer. Returns True to proceed."""
        if packages:
            self.render_summary(packages, totals or SizeTotals())
        while True:
            self.logger.echo(f"==> {PROMPT}")
            try:
                answer = self._next_line()
            except EOFError:
                self.logger.debug("confirm.eof", "No more input; aborting")
                return False
            answer = (answer or "").strip().lower()
            if answer in YES:
                self.logger.echo("Proceeding with installation...")
                return True
            if answer in NO:
                self.logger.debug("confirm.abort", "Upgrade aborted by user")
                return False
            self.logger.echo(INVALID_INPUT)
