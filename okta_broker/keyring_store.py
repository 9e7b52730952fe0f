"""Secret storage over the OS keyring.

Items are addressed by key inside a single keyring service.  The ``keyring``
library only stores text, so item data (JSON payloads) is kept as UTF-8.
"""

import logging
from dataclasses import dataclass

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .errors import CacheError

SERVICE_NAME = "aws-okta-login"


class ItemNotFoundError(KeyError):
    """No keyring item exists for the requested key."""


@dataclass
class Item:
    key: str
    data: bytes
    label: str = ""


class KeyringStore:
    """Get/set/remove items in one keyring service.

    *backend* defaults to whatever ``keyring.get_keyring()`` selects for the
    platform (macOS Keychain, Secret Service, Windows Credential Manager...).
    """

    def __init__(self, backend=None, service_name=SERVICE_NAME, logger=None):
        self.backend = backend or keyring.get_keyring()
        self.service_name = service_name
        self.log = logger or logging.getLogger(__name__)

    def get(self, key):
        try:
            value = self.backend.get_password(self.service_name, key)
        except KeyringError as exc:
            raise CacheError(f"Failed to read {key!r} from keyring: {exc}") from exc
        if value is None:
            raise ItemNotFoundError(key)
        return Item(key=key, data=value.encode("utf-8"))

    def set(self, item):
        self.log.debug("Storing keyring item %s (%s)", item.key, item.label or "no label")
        try:
            self.backend.set_password(self.service_name, item.key, item.data.decode("utf-8"))
        except KeyringError as exc:
            raise CacheError(f"Failed to write {item.key!r} to keyring: {exc}") from exc

    def remove(self, key):
        try:
            self.backend.delete_password(self.service_name, key)
        except PasswordDeleteError:
            raise ItemNotFoundError(key) from None
        except KeyringError as exc:
            raise CacheError(f"Failed to remove {key!r} from keyring: {exc}") from exc
