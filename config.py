import os
from typing import Optional, Tuple

import keyring
import yaml

APP_VERSION = "1.0.0"
KEYRING_SERVICE = "liftvault"


def revalidation_target(settings: dict) -> Optional[Tuple[str, Optional[str]]]:
    """Return ``(url, secret)`` for the stale-path webhook, or ``None`` when unset.

    A secret without a URL is ignored; blank values count as unset.
    """
    url = str(settings.get("revalidate_webhook_url") or "").strip()
    if not url:
        return None
    secret = settings.get("revalidate_secret")
    if secret in (None, "", True, "True"):
        secret = None
    return url, secret


class YamlConfig:
    """Vault settings stored in ``settings.yaml``.

    With ``ENCRYPT_SETTINGS=1`` the webhook secret lives in the system keyring
    under ``KEYRING_SERVICE`` and the YAML file only holds ``True`` for it.
    A file marker whose keyring entry has gone missing is dropped on load, and
    removing the secret from the settings removes the keyring entry on save.
    """

    SENSITIVE_KEYS = {
        "revalidate_secret",
    }

    def __init__(self, path: str = "settings.yaml") -> None:
        self.path = path
        self.encrypt = os.environ.get("ENCRYPT_SETTINGS") == "1"
        self.service = KEYRING_SERVICE

    def load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not self.encrypt:
            return data
        for key in self.SENSITIVE_KEYS & set(data):
            stored = keyring.get_password(self.service, key)
            if stored is None:
                data.pop(key)
            else:
                data[key] = stored
        return data

    def _forget(self, key: str) -> None:
        if keyring.get_password(self.service, key) is not None:
            keyring.delete_password(self.service, key)

    def save(self, data: dict) -> None:
        out = {k: v for k, v in data.items() if v not in (None, "")}
        if self.encrypt:
            for key in self.SENSITIVE_KEYS:
                if key not in out:
                    self._forget(key)
                    continue
                keyring.set_password(self.service, key, str(out[key]))
                out[key] = True
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f, sort_keys=True)
