import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "store": "file",  # "file" | "sqlite" | "relational"
    "storage_dir": ".contributor",
    "max_reviews": 100,
    "max_transitions": 500,
    "history_limit": 100,  # reviews the validator looks back over
    "sqlite_mode": None,  # None = infer from credentials; "local" | "synced" | "remote"
    "timeout": 30,  # seconds, for every network-facing storage call
    "similarity_seed": None,  # set an int for reproducible similar-PR ranking
}


def load_config(config_path: str = ".reviewtrail.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .reviewtrail.yml in the current directory
      3. REVIEWTRAIL_STORE environment variable
      4. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"{config_path} must contain a mapping, got {type(file_config).__name__}")
        config.update(file_config)

    env_store = os.environ.get("REVIEWTRAIL_STORE")
    if env_store:
        config["store"] = env_store

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials from environment variables
    config["turso_url"] = os.environ.get("TURSO_DATABASE_URL")
    config["turso_auth_token"] = os.environ.get("TURSO_AUTH_TOKEN")
    config["database_url"] = os.environ.get("DATABASE_URL")
    config["direct_database_url"] = os.environ.get("DIRECT_DATABASE_URL")

    return config
