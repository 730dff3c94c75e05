"""
Key/value configuration for Ghostline.

Values are layered: built-in defaults, then the persisted JSON file
(~/.ghostline/config.json), then a .env file, then the process environment.
Keys written with ``persist=True`` (the bound operator chat id, the bot token)
are saved back to the JSON file; the bot token is encrypted at rest.
"""
import json
import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import dotenv_values

from .crypto import DATA_DIR, CredentialEncryption
from .logging_config import get_logger

logger = get_logger("ghostline.config")

CONFIG_FILE = DATA_DIR / "config.json"

BOT_TOKEN_KEY = "TELEGRAM_BOT_TOKEN"
CHAT_ID_KEY = "TELEGRAM_CHAT_ID"
CONTROL_URL_KEY = "CONTROL_URL"

KNOWN_KEYS = (
    BOT_TOKEN_KEY,
    CHAT_ID_KEY,
    CONTROL_URL_KEY,
    "POLL_TIMEOUT",
    "START_ATTEMPTS",
    "RETRY_DELAY",
    "RECONNECT_DELAY",
    "ACK_TIMEOUT",
    "SHUTDOWN_GRACE",
    "CONFIRMATION_TIMEOUT",
    "LOG_LEVEL",
)

DEFAULTS: Dict[str, str] = {
    CONTROL_URL_KEY: "http://127.0.0.1:8420",
    "POLL_TIMEOUT": "10",
    "START_ATTEMPTS": "3",
    "RETRY_DELAY": "2",
    "RECONNECT_DELAY": "5",
    "ACK_TIMEOUT": "5",
    "SHUTDOWN_GRACE": "5",
    "CONFIRMATION_TIMEOUT": "60",
    "LOG_LEVEL": "info",
}

SENSITIVE_KEYS = (BOT_TOKEN_KEY,)
ENCRYPTED_KEYS = (BOT_TOKEN_KEY,)

EXAMPLE_VALUES = {
    BOT_TOKEN_KEY: ("your_bot_token", "your_telegram_token", "example"),
}


class Config:
    """Layered key/value configuration store."""

    def __init__(
        self,
        config_file: Optional[Path] = None,
        env_file: Optional[Path] = Path(".env"),
        environ: Optional[Mapping[str, str]] = None,
    ):
        self._config_file = Path(config_file) if config_file else CONFIG_FILE
        self._env_file = Path(env_file) if env_file else None
        self._environ = environ if environ is not None else os.environ
        self._values: Dict[str, str] = {}
        self._persisted: Dict[str, str] = {}
        self._encryption: Optional[CredentialEncryption] = None

    @property
    def config_file(self) -> Path:
        return self._config_file

    def _crypto(self) -> CredentialEncryption:
        if self._encryption is None:
            self._encryption = CredentialEncryption(self._config_file.parent)
        return self._encryption

    # ─── Loading ───────────────────────────────────────────────────────

    def load(self) -> List[str]:
        """Load every layer and return validation warnings."""
        self._values = dict(DEFAULTS)
        self._load_persisted()
        self._load_env_file()
        self._load_environ()
        warnings = self.validate()
        for warning in warnings:
            logger.warning(warning)
        logger.info(
            f"Configuration loaded (telegram: {'configured' if self.is_configured(BOT_TOKEN_KEY) else 'missing'}, "
            f"operator: {'bound' if self.get(CHAT_ID_KEY) else 'unbound'})"
        )
        return warnings

    def _load_persisted(self):
        if not self._config_file.exists():
            return
        try:
            with open(self._config_file, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load config file {self._config_file}: {e}")
            return

        for key, value in data.items():
            if value is None:
                continue
            value = str(value)
            if key in ENCRYPTED_KEYS:
                value = self._crypto().decrypt_or_return(value)
            self._persisted[key] = value
            self._values[key] = value

    def _load_env_file(self):
        if not self._env_file or not self._env_file.exists():
            return
        for key, value in dotenv_values(self._env_file).items():
            if value is not None:
                self._values[key] = value
        logger.debug(f"Loaded configuration from {self._env_file}")

    def _load_environ(self):
        for key in KNOWN_KEYS:
            value = self._environ.get(key)
            if value:
                self._values[key] = value

    # ─── Access ────────────────────────────────────────────────────────

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._values.get(key)
        return value if value else default

    def get_int(self, key: str, default: int = 0) -> int:
        try:
            return int(self.get(key))
        except (TypeError, ValueError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        try:
            return float(self.get(key))
        except (TypeError, ValueError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if not value:
            return default
        return value.lower() in ("true", "1", "yes")

    def has(self, key: str) -> bool:
        return key in self._values

    def set(self, key: str, value: str, persist: bool = False):
        """Set a value; with persist=True it is also written to the config file."""
        self._values[key] = str(value)
        if persist:
            self._persisted[key] = str(value)
            self.save()

    def reset(self, key: str):
        """Remove a key from memory and from the persisted file."""
        self._values.pop(key, None)
        if key in DEFAULTS:
            self._values[key] = DEFAULTS[key]
        if self._persisted.pop(key, None) is not None:
            self.save()

    def is_configured(self, key: str) -> bool:
        value = self.get(key)
        if not value or len(value) <= 5:
            return False
        lowered = value.lower()
        return "your_" not in lowered and "example" not in lowered

    def save(self):
        """Write persisted keys to the config file."""
        data = {}
        for key, value in self._persisted.items():
            if key in ENCRYPTED_KEYS and value:
                value = self._crypto().encrypt_if_needed(value)
            data[key] = value
        try:
            self._config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._config_file, "w") as f:
                json.dump(data, f, indent=2)
            os.chmod(self._config_file, 0o600)
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    # ─── Validation & display ──────────────────────────────────────────

    def validate(self) -> List[str]:
        warnings = []
        chat_id = self.get(CHAT_ID_KEY)
        if chat_id and not chat_id.lstrip("-").isdigit():
            warnings.append(f"{CHAT_ID_KEY} should be numeric")

        for key in ("POLL_TIMEOUT", "START_ATTEMPTS", "RETRY_DELAY", "RECONNECT_DELAY",
                    "ACK_TIMEOUT", "SHUTDOWN_GRACE", "CONFIRMATION_TIMEOUT"):
            value = self.get(key)
            if value is None:
                continue
            try:
                float(value)
            except ValueError:
                warnings.append(f"{key} should be numeric, got: {value}")

        for key, patterns in EXAMPLE_VALUES.items():
            value = self.get(key)
            if value and any(p in value.lower() for p in patterns):
                warnings.append(f"{key} appears to contain an example value")
        return warnings

    @staticmethod
    def mask_value(key: str, value: Optional[str]) -> str:
        if not value:
            return "***"
        if key == BOT_TOKEN_KEY and len(value) > 12:
            return value[:8] + "***" + value[-4:]
        if len(value) > 6:
            return value[:4] + "***" + value[-2:]
        return "***"

    def get_all(self, include_sensitive: bool = False) -> Dict[str, str]:
        """All values, with sensitive ones masked unless asked otherwise."""
        result = {}
        for key, value in sorted(self._values.items()):
            if include_sensitive or key not in SENSITIVE_KEYS:
                result[key] = value
            else:
                result[key] = self.mask_value(key, value)
        return result
