import copy
import os
from pathlib import Path
from typing import Optional

import click
import yaml

APP_DIR = Path(click.get_app_dir("prwarden"))

DEFAULT_CONFIG: dict = {
    "repos": [],  # owner/name slugs to watch
    "exclude_repos": [],
    "repo_subpath_filters": {},  # owner/name -> ["src/api", ...]; only PRs touching one of them trigger
    "include_drafts": False,
    "poll_interval_sec": 300,
    "max_backoff_sec": 3600,
    "seed_new_repos": True,
    "skip_own_prs": True,
    "state_path": str(APP_DIR / "daemon_state.json"),
    "guidelines_path": str(APP_DIR / "review_guide.md"),
    "repo_paths": {},  # owner/name -> local checkout used as the agent's working directory
    "repos_root": None,  # directory scanned for git checkouts; their GitHub remotes are watched too
    "repos_root_depth": 3,
    "repos_root_exclude": [],  # paths relative to repos_root
    "agent": {
        "command": "claude",
        "skill": "code-review",
    },
    "launch": {
        "mode": "auto",
        "terminal_app": "Terminal",
        "startup_timeout": 2.0,
        "verify_timeout": 10.0,
    },
}

# Sections merged key by key instead of being replaced wholesale.
_NESTED = ("agent", "launch")


def load_config(config_path: str = ".prwarden.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prwarden.yml in the current directory
      3. CLI argument overrides (None values are ignored)
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"{config_path} must contain a YAML mapping")
        for key, value in file_config.items():
            if key in _NESTED and isinstance(value, dict):
                config[key].update(value)
            else:
                config[key] = value

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    for key in ("state_path", "guidelines_path"):
        config[key] = str(Path(config[key]).expanduser())

    config["github_token"] = os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN")

    return config


def save_config(config: dict, config_path: str = ".prwarden.yml") -> None:
    """Write the user-facing keys of ``config`` back to ``config_path``."""
    keys = [k for k in DEFAULT_CONFIG if k in config]
    data = {k: config[k] for k in keys if config[k] != DEFAULT_CONFIG[k]}
    with open(config_path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
