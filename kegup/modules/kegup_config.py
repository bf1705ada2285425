"""
kegup.config

Configuration module for `kegup`.
- Loads TOML (single file + config.d fragments)
- Priority: defaults < system < user < project < extra paths < env
- Variable expansion with cycle detection
- PlannerEnv: the environment toggles planning depends on, collected into one value
"""

from __future__ import annotations

import os
import re
import threading
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional


# -------------------------- Utilities --------------------------
VAR_PATTERN = re.compile(r"\$(?:\{([^}\s:]+)(?:[:-]([^}]*))?\}|([A-Za-z_][A-Za-z0-9_]*))")

SYSTEM_CONFIG = Path("/etc/kegup/config.toml")
USER_CONFIG = Path.home() / ".config" / "kegup" / "config.toml"


def _is_truthy(val: Any) -> bool:
    return bool(val) and val not in ("0", "false", "False", "no", "No")


def _read_toml_file(path: Path) -> dict:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML in {path}: {e}") from e


def _merge_dict(a: dict, b: dict) -> dict:
    """Merge b into a (deep), returning new dict."""
    out = dict(a)
    for k, v in b.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _merge_dict(out[k], v)
        else:
            out[k] = v
    return out


def _defaults() -> Dict[str, Any]:
    return {
        "general": {"state_dir": str(Path.home() / ".local" / "state" / "kegup")},
        "db": {"path": "${general.state_dir}/kegup.db"},
        "logging": {
            "dir": "${general.state_dir}/logs",
            "to_file": True,
            "max_bytes": 5 * 1024 * 1024,
            "backups": 3,
        },
        "output": {"quiet": False, "json": False, "theme": "dark"},
        "metadata": {
            "source": "inventory",
            "registry": "https://ghcr.io/v2/homebrew/core",
            "token_url": "https://ghcr.io/token?service=ghcr.io&scope=repository:homebrew/core/{repo}:pull",
            "timeout": 30,
        },
        "upgrade": {
            "install_command": ["brew", "upgrade", "--formula"],
            "dependents_command": [],
            "cleanup_command": [],
        },
        "env": {
            "no_installed_dependents_check": False,
            "no_install_cleanup": False,
            "developer": False,
        },
        "cli": {"report_dir": "", "compress_reports": True},
    }


# ----------------------- ConfigStore ---------------------------

class ConfigError(Exception):
    pass


@dataclass
class ConfigStore:
    _raw: Dict[str, Any] = field(default_factory=dict)
    fail_on_missing: bool = True
    loaded_files: List[Path] = field(default_factory=list)

    # ---------------------------------
    # Construction / loading helpers
    # ---------------------------------
    @classmethod
    def load(
        cls,
        project_dir: Optional[Path] = None,
        extra_paths: Optional[List[Path]] = None,
        env: Optional[Mapping[str, str]] = None,
        env_prefix: str = "KEGUP_",
        strict: bool = True,
        search_default_paths: bool = True,
    ) -> "ConfigStore":
        """Load config following priorities and merge into a ConfigStore.

        Defaults (internal) < /etc/kegup/config.toml < ~/.config/kegup/config.toml
        < project_dir/kegup.toml & config.d/* < extra_paths (ordered) < ENV vars
        """
        store = cls(_raw=_defaults())

        candidates: List[Path] = []
        if search_default_paths:
            candidates += [SYSTEM_CONFIG, USER_CONFIG]
        if project_dir:
            candidates.append(Path(project_dir) / "kegup.toml")
            configd = Path(project_dir) / "config.d"
            if configd.is_dir():
                candidates += sorted(p for p in configd.iterdir() if p.suffix == ".toml" and p.is_file())
        candidates += list(extra_paths or [])

        for p in candidates:
            if p.exists():
                store._raw = _merge_dict(store._raw, _read_toml_file(p))
                store.loaded_files.append(p)

        # env overrides: KEGUP_ENV__NO_INSTALL_CLEANUP=1 -> env.no_install_cleanup
        environ = os.environ if env is None else env
        for k, v in environ.items():
            if k.startswith(env_prefix):
                key = k[len(env_prefix):]
                parts = key.split("__")
                dest = store._raw
                for part in parts[:-1]:
                    dest = dest.setdefault(part.lower(), {})
                dest[parts[-1].lower()] = v

        store.fail_on_missing = strict
        return store

    # -------------------------------
    # Accessors
    # -------------------------------
    def get(self, key: str, default: Any = None) -> Any:
        """Get a dotted key, expanded.
        Example: get('db.path')
        """
        node = self._raw
        for p in key.split("."):
            if isinstance(node, dict) and p in node:
                node = node[p]
            else:
                return default
        return self._expand_value(node)

    def get_bool(self, key: str, default: bool = False) -> bool:
        return _is_truthy(self.get(key, default))

    def set(self, key: str, value: Any) -> None:
        parts = key.split(".")
        node = self._raw
        for p in parts[:-1]:
            node = node.setdefault(p, {})
        node[parts[-1]] = value

    # -------------------------------
    # Expansion logic
    # -------------------------------
    def _expand_value(self, value: Any, _stack: Optional[List[str]] = None) -> Any:
        if isinstance(value, str):
            return self._expand_str(value, _stack=_stack)
        if isinstance(value, dict):
            return {k: self._expand_value(v, _stack=_stack) for k, v in value.items()}
        if isinstance(value, list):
            return [self._expand_value(v, _stack=_stack) for v in value]
        return value

    def _expand_str(self, s: str, _stack: Optional[List[str]] = None) -> str:
        if _stack is None:
            _stack = []

        # handle escaped \${...}
        s = s.replace("\\${", "__ESCAPED_DOLLAR__{")

        def _repl(m: re.Match) -> str:
            var_name = m.group(1) or m.group(3)
            default = m.group(2)
            if var_name in _stack:
                chain = " -> ".join(_stack + [var_name])
                raise ConfigError(f"Cycle detected when expanding variables: {chain}")
            _stack.append(var_name)
            val = self._lookup_variable(var_name)
            if val is None:
                if default is not None:
                    res = default
                elif self.fail_on_missing:
                    raise ConfigError(f"Variable '{var_name}' not found during expansion and no default provided")
                else:
                    res = ""
            else:
                res = str(self._expand_value(val, _stack=_stack))
            _stack.pop()
            return res

        out = VAR_PATTERN.sub(_repl, s)
        return out.replace("__ESCAPED_DOLLAR__{", "${")

    def _lookup_variable(self, name: str) -> Optional[Any]:
        # dotted names first: e.g. 'general.state_dir'
        if "." in name:
            node = self._raw
            for p in name.split("."):
                if isinstance(node, dict) and p in node:
                    node = node[p]
                else:
                    return None
            return node
        low = name.lower()
        if low in self._raw and not isinstance(self._raw[low], dict):
            return self._raw[low]
        general = self._raw.get("general")
        if isinstance(general, dict) and low in general:
            return general[low]
        # environment variables as last resort
        if name in os.environ:
            return os.environ[name]
        return None


# ----------------------- planner toggles ------------------------

@dataclass(frozen=True)
class PlannerEnv:
    no_installed_dependents_check: bool = False
    no_install_cleanup: bool = False
    developer: bool = False

    @classmethod
    def from_config(cls, cfg: Optional[ConfigStore]) -> "PlannerEnv":
        if cfg is None:
            return cls()
        return cls(
            no_installed_dependents_check=cfg.get_bool("env.no_installed_dependents_check"),
            no_install_cleanup=cfg.get_bool("env.no_install_cleanup"),
            developer=cfg.get_bool("env.developer"),
        )


# ---------------- convenience functions ----------------
_config_singleton: Optional[ConfigStore] = None
_config_lock = threading.RLock()


def init_config(project_dir: Optional[Path] = None, extra_paths: Optional[List[Path]] = None) -> ConfigStore:
    """
    Initialize and return the process-wide ConfigStore.
    """
    global _config_singleton
    with _config_lock:
        if _config_singleton is None:
            _config_singleton = ConfigStore.load(project_dir=project_dir, extra_paths=extra_paths)
        return _config_singleton
