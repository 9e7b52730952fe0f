"""Temporary AWS credentials cached in the keyring.

Two layouts are supported:

* ``SingleKrItemStore`` keeps every session in one keyring item as a JSON map
  keyed by ``KeyWithProfileARN.key()``.  Fewer items means fewer keychain
  unlock prompts on macOS.
* ``KrItemPerSessionStore`` writes one keyring item per cache key.
"""

import datetime
import hashlib
import json
import logging
from dataclasses import dataclass, field

from .errors import CacheError
from .keyring_store import Item, ItemNotFoundError

SESSION_CACHE_ITEM = "session-cache"


def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


def _parse_timestamp(value):
    if isinstance(value, datetime.datetime):
        ts = value
    else:
        ts = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=datetime.timezone.utc)
    return ts


@dataclass
class Credentials:
    access_key_id: str
    secret_access_key: str
    session_token: str
    expiration: datetime.datetime

    @classmethod
    def from_sts(cls, creds):
        """Build from the ``Credentials`` member of an STS response."""
        return cls(
            access_key_id=creds["AccessKeyId"],
            secret_access_key=creds["SecretAccessKey"],
            session_token=creds["SessionToken"],
            expiration=_parse_timestamp(creds["Expiration"]),
        )

    def to_dict(self):
        return {
            "AccessKeyId": self.access_key_id,
            "SecretAccessKey": self.secret_access_key,
            "SessionToken": self.session_token,
            "Expiration": self.expiration.isoformat(),
        }


@dataclass
class Session:
    name: str
    credentials: Credentials

    @classmethod
    def from_dict(cls, data):
        return cls(name=data["Name"], credentials=Credentials.from_sts(data["Credentials"]))

    def to_dict(self):
        return {"Name": self.name, "Credentials": self.credentials.to_dict()}

    def expires_within(self, window, now=None):
        """True when fewer than *window* remain before expiry."""
        now = now or _utcnow()
        return self.credentials.expiration - now <= window


@dataclass(frozen=True)
class KeyWithProfileARN:
    """Identity of a cached session.

    Every field takes part in ``key()``: sessions requested for different
    durations or chained roles never share a slot.
    """

    profile_name: str
    profile_conf: dict = field(default_factory=dict)
    duration: datetime.timedelta = datetime.timedelta()
    profile_arn: str = ""

    def key(self):
        payload = json.dumps(
            [self.profile_name, self.profile_conf,
             self.duration.total_seconds(), self.profile_arn],
            sort_keys=True,
        )
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
        return f"{self.profile_name} session ({digest[:10]})"

    def __hash__(self):
        return hash(self.key())


def _decode_session(data, key):
    try:
        return Session.from_dict(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise CacheError(f"Corrupt cached session {key!r}: {exc}") from exc


class SingleKrItemStore:
    """All sessions in the single keyring item ``session-cache``."""

    def __init__(self, keyring, logger=None):
        self.keyring = keyring
        self.log = logger or logging.getLogger(__name__)

    def _read(self):
        """Raw item data, or None when the item does not exist yet.

        Backend failures raise CacheError.
        """
        try:
            return self.keyring.get(SESSION_CACHE_ITEM).data
        except ItemNotFoundError:
            return None

    @staticmethod
    def _decode(data):
        if data is None:
            return {}
        try:
            sessions = json.loads(data)
        except ValueError as exc:
            raise CacheError(f"Corrupt session cache item: {exc}") from exc
        if not isinstance(sessions, dict):
            raise CacheError("Corrupt session cache item: not a mapping")
        return sessions

    def get(self, key):
        entry = self._decode(self._read()).get(key.key())
        if entry is None:
            return None
        return _decode_session(entry, key.key())

    def put(self, key, session):
        # a failed read must not replace the sessions of other profiles
        data = self._read()
        try:
            sessions = self._decode(data)
        except CacheError as exc:
            self.log.warning("Discarding corrupt session cache: %s", exc)
            sessions = {}

        # drop sessions that have already expired
        now = _utcnow()
        for name, entry in list(sessions.items()):
            try:
                expired = _decode_session(entry, name).expires_within(datetime.timedelta(), now)
            except CacheError:
                expired = True
            if expired:
                del sessions[name]

        sessions[key.key()] = session.to_dict()
        self.keyring.set(Item(
            key=SESSION_CACHE_ITEM,
            data=json.dumps(sessions).encode("utf-8"),
            label="aws-okta session cache",
        ))


class KrItemPerSessionStore:
    """One keyring item per cache key."""

    def __init__(self, keyring, logger=None):
        self.keyring = keyring
        self.log = logger or logging.getLogger(__name__)

    def get(self, key):
        try:
            item = self.keyring.get(key.key())
        except ItemNotFoundError:
            return None
        try:
            data = json.loads(item.data)
        except ValueError as exc:
            raise CacheError(f"Corrupt cached session {key.key()!r}: {exc}") from exc
        return _decode_session(data, key.key())

    def put(self, key, session):
        self.keyring.set(Item(
            key=key.key(),
            data=json.dumps(session.to_dict()).encode("utf-8"),
            label=f"aws-okta session for {key.profile_name}",
        ))
