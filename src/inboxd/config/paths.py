import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env once, globally
load_dotenv()

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "inboxd"


def resolve_config_dir(override: Optional[str] = None) -> Path:
    """
    Resolve the config directory.
    INBOXD_CONFIG_DIR wins over the legacy INBOXD_TOKEN_DIR; "~" is expanded.
    """
    value = override or os.getenv("INBOXD_CONFIG_DIR") or os.getenv("INBOXD_TOKEN_DIR")
    if not value:
        return DEFAULT_CONFIG_DIR
    return Path(value).expanduser()


@dataclass(frozen=True)
class ConfigPaths:
    config_dir: Path

    @classmethod
    def from_dir(cls, config_dir: Path) -> "ConfigPaths":
        return cls(config_dir=Path(config_dir))

    @classmethod
    def from_env(cls) -> "ConfigPaths":
        return cls.from_dir(resolve_config_dir())

    def ensure(self) -> "ConfigPaths":
        self.config_dir.mkdir(parents=True, exist_ok=True)
        return self

    @property
    def rules(self) -> Path:
        return self.config_dir / "rules.json"

    @property
    def deletion_log(self) -> Path:
        return self.config_dir / "deletion-log.json"

    @property
    def archive_log(self) -> Path:
        return self.config_dir / "archive-log.json"

    @property
    def undo_log(self) -> Path:
        return self.config_dir / "undo-log.json"

    @property
    def accounts(self) -> Path:
        return self.config_dir / "accounts.json"

    @property
    def credentials(self) -> Path:
        # OAuth client secrets may live outside the config dir.
        override = os.getenv("GMAIL_CREDENTIALS_PATH")
        if override:
            return Path(override).expanduser()
        return self.config_dir / "credentials.json"

    def token(self, account: str) -> Path:
        return self.config_dir / f"token-{account}.json"
