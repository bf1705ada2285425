#!/usr/bin/env python3
# kegup_size.py
"""
kegup_size.py — download / installed / net size of an upgrade

Main functionality:
 - KegupSizer.estimate(members): sums bottle sizes over the sizing closure and nets
   them against the disk usage of the kegs already installed
 - InventoryBottleSource: bottle metadata straight from the inventory snapshot (offline)
 - GhcrBottleSource: bottle metadata from an OCI registry (aiohttp), one blocking request
   sequence per package
 - disk_usage_readable(): "1.5MB"-style rendering, signed for net sizes

A metadata failure for one package is recorded and sizing continues with the rest.
Packages without a bottle add nothing to the totals; they are listed in `unsized`.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp

from .kegup_inventory import Bottle, Diagnostic, Package

OCI_INDEX = "application/vnd.oci.image.index.v1+json"
SIZE_ANNOTATION = "sh.brew.bottle.size"
INSTALLED_SIZE_ANNOTATION = "sh.brew.bottle.installed_size"
REF_ANNOTATION = "org.opencontainers.image.ref.name"


class MetadataError(Exception):
    pass


def disk_usage_readable(size: int) -> str:
    """Convert bytes to a short human readable size, e.g. 1572864 -> "1.5MB"."""
    sign = "-" if size < 0 else ""
    size = abs(size)
    if size >= 1_073_741_824:
        value, unit = size / 1_073_741_824, "GB"
    elif size >= 1_048_576:
        value, unit = size / 1_048_576, "MB"
    elif size >= 1_024:
        value, unit = size / 1_024, "KB"
    else:
        value, unit = size, "B"
    value = round(value, 1)
    if value == int(value):
        value = int(value)
    return f"{sign}{value}{unit}"


@dataclass(frozen=True)
class SizeTotals:
    download: int = 0
    installed: int = 0
    net: int = 0
    unsized: Tuple[str, ...] = ()
    failed: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["unsized"] = list(self.unsized)
        d["failed"] = list(self.failed)
        return d


@dataclass
class SizeEstimate:
    totals: SizeTotals = field(default_factory=SizeTotals)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    # bottle metadata actually used per member name
    bottles: Dict[str, Bottle] = field(default_factory=dict)


# ---------------- metadata sources ----------------
class InventoryBottleSource:
    """Bottle metadata as recorded in the snapshot; no network access."""

    def fetch(self, package: Package, quiet: bool = True) -> Bottle:
        if package.bottle is None:
            raise MetadataError(f"{package.name} has no bottle")
        return package.bottle


class GhcrBottleSource:
    """
    Reads bottle sizes from a GitHub Packages style OCI registry.

    Flow per package: anonymous pull token -> image index for <name>:<version> ->
    size annotations of the manifest whose ref name ends with the bottle tag.
    """

    def __init__(self, registry: str, token_url: str, timeout: float = 30, logger: Any = None):
        self.registry = registry.rstrip("/")
        self.token_url = token_url
        self.timeout = timeout
        self.logger = logger

    @classmethod
    def from_config(cls, cfg: Any, logger: Any = None) -> "GhcrBottleSource":
        return cls(
            registry=cfg.get("metadata.registry"),
            token_url=cfg.get("metadata.token_url"),
            timeout=float(cfg.get("metadata.timeout", 30)),
            logger=logger,
        )

    def fetch(self, package: Package, quiet: bool = True) -> Bottle:
        if package.bottle is None:
            raise MetadataError(f"{package.name} has no bottle")
        if not quiet and self.logger:
            self.logger.info("size.fetch", f"Fetching bottle metadata for {package.name}", package=package.name)
        try:
            index = asyncio.run(self._fetch_index(package))
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as e:
            raise MetadataError(f"{package.name}: {e}") from e
        return self.parse_index(package, index)

    def manifest_url(self, package: Package) -> str:
        if package.bottle is not None and package.bottle.url:
            return package.bottle.url
        repo = package.name.replace("@", "/")
        return f"{self.registry}/{repo}/manifests/{package.pkg_version}"

    async def _fetch_index(self, package: Package) -> Dict[str, Any]:
        repo = package.name.replace("@", "/")
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(self.token_url.format(repo=repo)) as resp:
                resp.raise_for_status()
                reply = await resp.json(content_type=None)
            token = reply.get("token") if isinstance(reply, dict) else None
            if not isinstance(token, str):
                raise MetadataError(f"{package.name}: registry token reply has no token")
            headers = {"Authorization": f"Bearer {token}", "Accept": OCI_INDEX}
            async with session.get(self.manifest_url(package), headers=headers) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)

    @staticmethod
    def parse_index(package: Package, index: Any) -> Bottle:
        if not isinstance(index, dict):
            raise MetadataError(f"{package.name}: image index is not an object")
        manifests = index.get("manifests") or []
        if not isinstance(manifests, list) or not all(isinstance(m, dict) for m in manifests):
            raise MetadataError(f"{package.name}: malformed manifests list in image index")
        tag = package.bottle.tag if package.bottle else "all"
        chosen = None
        for m in manifests:
            ann = m.get("annotations") or {}
            ref = ann.get(REF_ANNOTATION, "") if isinstance(ann, dict) else ""
            if not isinstance(ref, str):
                continue
            if ref.endswith(f".{tag}") or ref == tag:
                chosen = m
                break
        if chosen is None and len(manifests) == 1:
            chosen = manifests[0]
        if chosen is None:
            raise MetadataError(f"{package.name}: no manifest for bottle tag {tag}")
        ann = chosen.get("annotations") or {}
        if not isinstance(ann, dict):
            raise MetadataError(f"{package.name}: manifest annotations are not an object")
        try:
            download = int(ann[SIZE_ANNOTATION]) if SIZE_ANNOTATION in ann else None
            installed = int(ann[INSTALLED_SIZE_ANNOTATION]) if INSTALLED_SIZE_ANNOTATION in ann else None
        except (TypeError, ValueError) as e:
            raise MetadataError(f"{package.name}: bad size annotation: {e}") from e
        return Bottle(tag=tag, url=package.bottle.url if package.bottle else None,
                      download_size=download, installed_size=installed)


def make_source(cfg: Any, logger: Any = None, kind: Optional[str] = None):
    kind = kind or (cfg.get("metadata.source", "inventory") if cfg is not None else "inventory")
    if kind == "ghcr":
        return GhcrBottleSource.from_config(cfg, logger=logger)
    if kind == "inventory":
        return InventoryBottleSource()
    raise ValueError(f"unknown metadata source: {kind}")


# ---------------- estimator ----------------
class KegupSizer:
    def __init__(self, source: Any = None, logger: Any = None, debug: bool = False):
        self.source = source or InventoryBottleSource()
        self.logger = logger
        self.debug = debug

    def _log(self, level: str, event: str, msg: str = "", **meta):
        if self.logger:
            getattr(self.logger, level)(event, msg, **meta)

    def estimate(self, members: Sequence[Package]) -> SizeEstimate:
        download = installed = net = 0
        unsized: List[str] = []
        failed: List[str] = []
        diagnostics: List[Diagnostic] = []
        bottles: Dict[str, Bottle] = {}

        for pkg in members:
            if not pkg.bottled:
                unsized.append(pkg.name)
                continue
            try:
                bottle = self.source.fetch(pkg, quiet=not self.debug)
            except MetadataError as e:
                failed.append(pkg.name)
                d = Diagnostic("partial", "size.fetch_failed", f"Could not fetch bottle metadata for {pkg.name}: {e}", package=pkg.name)
                diagnostics.append(d)
                self._log("warning", d.event, d.message, package=pkg.name)
                continue

            bottles[pkg.name] = bottle
            if bottle.download_size is not None:
                download += bottle.download_size
            if bottle.installed_size is not None:
                installed += bottle.installed_size
                kegs = pkg.installed_kegs()
                if kegs:
                    net += bottle.installed_size - sum(k.disk_usage for k in kegs)

        totals = SizeTotals(download=download, installed=installed, net=net, unsized=tuple(unsized), failed=tuple(failed))
        self._log("debug", "size.totals", "Computed upgrade size", **totals.to_dict())
        return SizeEstimate(totals=totals, diagnostics=diagnostics, bottles=bottles)
