"""
Runtime detection and .env loading for the ledger scripts.

One .env file serves desktop runs and containers alike. Values already
exported in the shell always win over the file.
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

CONTAINER_ENV_FILE = Path('/app/.env')
CONTAINER_LOG_DIR = Path('/app/logs')


class Environment:
    """Where the ledger runs and where its settings and logs live."""

    def __init__(self):
        self.is_docker = self._detect_docker()
        self.env_name = "prod" if self.is_docker else "dev"
        self.env_file = self._find_env_file()
        self._loaded = False

    @staticmethod
    def _detect_docker() -> bool:
        if os.getenv('IN_DOCKER', '').lower() == 'true' or os.path.exists('/.dockerenv'):
            return True
        try:
            with open('/proc/1/cgroup', 'r') as f:
                return 'docker' in f.read()
        except OSError:
            return False

    def _find_env_file(self) -> Optional[Path]:
        """FUEL_LEDGER_ENV_FILE, else the container path, else the project root."""
        override = os.getenv('FUEL_LEDGER_ENV_FILE')
        if override:
            candidate = Path(override)
        elif self.is_docker:
            candidate = CONTAINER_ENV_FILE
        else:
            candidate = Path(__file__).parents[1] / '.env'
        return candidate if candidate.exists() else None

    def load(self, force_reload: bool = False) -> None:
        """Export the .env file into os.environ once (or again with force_reload)."""
        if self._loaded and not force_reload:
            return
        if self.env_file:
            load_dotenv(self.env_file, override=False)
        self._loaded = True

    @property
    def log_dir(self) -> Path:
        """Root of the ledger/ and recovery/ log folders."""
        if self.is_docker:
            return CONTAINER_LOG_DIR
        return Path(os.getenv('FUEL_LEDGER_LOG_DIR', 'logs'))

    def __repr__(self) -> str:
        return f"Environment(env={self.env_name}, docker={self.is_docker}, file={self.env_file})"


# ============================================================================
# Global Instance - Auto-load on import
# ============================================================================

env = Environment()
env.load()

is_docker = env.is_docker
env_name = env.env_name
