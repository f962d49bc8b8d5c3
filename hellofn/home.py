"""Layout of the hellofn home directory.

    <home>/functions/<name>/hellofn.json   function config
    <home>/functions/<name>/index.py       handler module
    <home>/logs/<name>.log                 invocation log (JSON lines)

``HELLOFN_HOME`` selects the home; it defaults to ``~/.hellofn``.
"""
import json
import os
import re
from pathlib import Path


HOME_ENV = "HELLOFN_HOME"
CONFIG_NAME = "hellofn.json"
_NAME_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]*")


def home() -> Path:
    override = os.environ.get(HOME_ENV)
    return Path(override).expanduser() if override else Path.home() / ".hellofn"


def valid_name(name: str) -> bool:
    return bool(_NAME_RE.fullmatch(name)) and ".." not in name


def function_dir(name: str) -> Path:
    if not valid_name(name):
        raise ValueError(f"Invalid function name: {name!r}")
    return home() / "functions" / name


def config_path(name: str) -> Path:
    return function_dir(name) / CONFIG_NAME


def log_path(name: str) -> Path:
    return home() / "logs" / f"{name}.log"


def load_config(name: str) -> dict:
    with config_path(name).open("r", encoding="utf-8") as f:
        return json.load(f)


def save_config(name: str, cfg: dict) -> None:
    target = config_path(name)
    tmp = target.with_name(target.name + ".tmp")
    tmp.write_text(json.dumps(cfg, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    os.replace(tmp, target)
