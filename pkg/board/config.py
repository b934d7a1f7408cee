# Board configuration
# Override values via board.yaml, environment variables, or CLI args.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Optional

CONFIG_PATH = Path(__file__).resolve().parents[2] / "board.yaml"


@dataclass
class BoardConfig:
    """Runtime configuration for the board server and client."""

    # Storage
    db_path: str = "~/.local/share/board/board.db"

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    # Auth: the signing secret itself is only ever read from the environment
    token_secret_env: str = "BOARD_SECRET"
    token_ttl_hours: int = 24

    # Client
    api_url: str = "http://localhost:3000/api"
    request_timeout: float = 5.0
    debounce_ms: int = 600

    @property
    def token_secret(self) -> str:
        return os.environ.get(self.token_secret_env, "")

    def resolve_paths(self):
        """Apply env overrides and expand ~."""
        env_db = os.environ.get("BOARD_DB")
        if env_db:
            self.db_path = env_db
        self.db_path = str(Path(self.db_path).expanduser())

    @classmethod
    def load(cls, path: Optional[str] = None) -> "BoardConfig":
        """Load config from YAML file, falling back to defaults."""
        path = path or os.environ.get("BOARD_CONFIG")
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            with open(cfg_path, "r") as f:
                data = yaml.safe_load(f) or {}
            known = {f.name for f in fields(cls)}
            cfg = cls(**{k: v for k, v in data.items() if k in known})
        else:
            cfg = cls()
        cfg.resolve_paths()
        return cfg
