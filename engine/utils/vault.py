"""
Press Clipping Vault Client
===========================
Fetches configuration and secrets from HashiCorp Vault, falling back to the
process environment.

Usage:
    from utils.vault import secrets

    api_key = secrets.get("gemini_api_key")            # KeyError if missing
    bucket = secrets.get("press_bucket", default="pdf-uploads")
    deadline = secrets.get_float("press_deadline_seconds", default=480.0)

    secrets.refresh()  # force re-read from Vault
"""

import os
import logging
import threading
from typing import Any, Dict, Optional

import hvac
from hvac.exceptions import VaultError

logger = logging.getLogger("PressClipping")

_TRUE_VALUES = {"1", "true", "yes", "on"}


class VaultClient:
    """
    Vault client for fetching secrets.

    Secrets path structure: secret/clipping/{region}/{env}
    All secrets for a region/env live under a single KV v2 path.
    """

    def __init__(self):
        self.vault_addr = (os.getenv("VAULT_ADDR") or "").strip()
        self.region = os.getenv("CLIPPING_REGION", "pr")
        self.env = os.getenv("CLIPPING_ENV", "dev")

        self._client: Optional[hvac.Client] = None
        self._cache: Dict[str, Any] = {}
        self._loaded = False
        self._lock = threading.Lock()

    def _get_client(self) -> Optional[hvac.Client]:
        """Authenticated client, or None when Vault is not configured."""
        if not self.vault_addr:
            return None
        if self._client is not None:
            return self._client

        client = hvac.Client(url=self.vault_addr)
        role_id = os.getenv("VAULT_ROLE_ID")
        secret_id = os.getenv("VAULT_SECRET_ID")
        token = os.getenv("VAULT_TOKEN")

        try:
            if role_id and secret_id:
                client.auth.approle.login(role_id=role_id, secret_id=secret_id)
                logger.info("Authenticated to Vault via AppRole for %s", self._secret_path())
            elif token:
                client.token = token
                logger.info("Authenticated to Vault via token for %s", self._secret_path())
            else:
                logger.warning("VAULT_ADDR set but no Vault credentials configured")
                return None
        except VaultError as e:
            logger.warning(f"Could not authenticate to Vault: {e}")
            return None

        self._client = client
        return client

    def _secret_path(self) -> str:
        return f"clipping/{self.region}/{self.env}"

    def _fetch_from_vault(self) -> Dict[str, Any]:
        client = self._get_client()
        if client is None:
            return {}

        path = self._secret_path()
        try:
            response = client.secrets.kv.v2.read_secret_version(
                path=path, mount_point="secret"
            )
        except (VaultError, OSError) as e:
            logger.warning(f"Could not fetch secrets from Vault: {e}")
            return {}

        data = response["data"]["data"]
        logger.debug(f"Fetched {len(data)} secrets from Vault ({path})")
        return {k.lower(): v for k, v in data.items()}

    def _load_secrets(self) -> None:
        if self._loaded:
            return
        with self._lock:
            if not self._loaded:
                self._cache = self._fetch_from_vault()
                self._loaded = True

    @staticmethod
    def _env_fallback(key: str) -> Optional[str]:
        for candidate in (key, key.upper(), key.lower()):
            v = os.getenv(candidate)
            if v:
                return v
        return None

    def get(self, key: str, default: Optional[str] = None) -> str:
        """
        Get a secret value from Vault, or from the process environment.

        Raises:
            KeyError: If the key is found nowhere and no default is given.
        """
        self._load_secrets()

        value = self._cache.get(key.lower())
        if value is not None:
            return value

        env_val = self._env_fallback(key)
        if env_val is not None:
            return env_val

        if default is not None:
            return default
        raise KeyError(f"Secret '{key}' not found (Vault or env)")

    def get_int(self, key: str, default: int) -> int:
        raw = self.get(key, default="")
        try:
            return int(raw) if raw != "" else default
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-integer value for {key}: {raw!r}")
            return default

    def get_float(self, key: str, default: float) -> float:
        raw = self.get(key, default="")
        try:
            return float(raw) if raw != "" else default
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric value for {key}: {raw!r}")
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        raw = self.get(key, default="")
        if raw == "":
            return default
        return str(raw).strip().lower() in _TRUE_VALUES

    def refresh(self) -> None:
        """Force refresh all secrets from Vault."""
        with self._lock:
            self._cache = self._fetch_from_vault()
            self._loaded = True
        logger.info(f"Secrets refreshed for {self.region}/{self.env}")


# Global singleton instance
secrets = VaultClient()
