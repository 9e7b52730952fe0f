"""Okta-backed AWS credential provider.

``Provider.retrieve()`` returns cached credentials while they are still valid
for longer than the expiry window.  Otherwise it logs in to Okta, fetches the
SAML assertion, assumes the granted role with STS (optionally chaining into a
second role) and caches the result in the keyring.
"""

import dataclasses
import datetime
import logging
from dataclasses import dataclass, field

import boto3
from botocore import UNSIGNED
from botocore.config import Config
from botocore.credentials import CredentialProvider, RefreshableCredentials
from botocore.exceptions import BotoCoreError, ClientError

from .config import Profiles, source_profile
from .errors import AuthError, CacheError, NotFoundError, ValidationError
from .keyring_store import ItemNotFoundError
from .mfa import MFAConfig
from .okta import OktaClient, OktaCreds
from .saml import (
    account_id_and_role_from_role_arn,
    get_assumable_roles,
    get_role,
    parse_saml,
)
from .sessioncache import (
    Credentials,
    KeyWithProfileARN,
    KrItemPerSessionStore,
    Session,
    SingleKrItemStore,
)

PROVIDER_NAME = "okta"

MIN_SESSION_DURATION = datetime.timedelta(minutes=15)
MAX_SESSION_DURATION = datetime.timedelta(days=90)
DEFAULT_SESSION_DURATION = datetime.timedelta(hours=4)
MIN_ASSUME_ROLE_DURATION = datetime.timedelta(minutes=15)
MAX_ASSUME_ROLE_DURATION = datetime.timedelta(hours=12)
DEFAULT_ASSUME_ROLE_DURATION = datetime.timedelta(minutes=15)
DEFAULT_EXPIRY_WINDOW = datetime.timedelta(minutes=5)

STS_MAX_DURATION_SECONDS = 43200  # STS max is 12 h
DEFAULT_REGION = "us-east-1"

OKTA_SESSION_COOKIE_KEY = "okta-session-cookie"
OKTA_ACCOUNT_NAME = "okta-creds"


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


def _check_bounds(name, value, lower, upper):
    if value < lower:
        raise ValidationError(f"Minimum {name} is {lower}, got {value}")
    if value > upper:
        raise ValidationError(f"Maximum {name} is {upper}, got {value}")


@dataclass
class ProviderOptions:
    session_duration: datetime.timedelta = datetime.timedelta()
    assume_role_duration: datetime.timedelta = datetime.timedelta()
    expiry_window: datetime.timedelta = datetime.timedelta()
    profiles: Profiles = field(default_factory=Profiles)
    mfa_config: MFAConfig = field(default_factory=MFAConfig)
    assume_role_arn: str = ""
    session_cache_single_item: bool = False

    def validate(self):
        """Raise ValidationError unless both durations are within bounds."""
        _check_bounds("session duration", self.session_duration,
                      MIN_SESSION_DURATION, MAX_SESSION_DURATION)
        _check_bounds("assume role duration", self.assume_role_duration,
                      MIN_ASSUME_ROLE_DURATION, MAX_ASSUME_ROLE_DURATION)

    def apply_defaults(self):
        """Return a copy with zero durations replaced by their defaults."""
        return dataclasses.replace(
            self,
            session_duration=self.session_duration or DEFAULT_SESSION_DURATION,
            assume_role_duration=self.assume_role_duration or DEFAULT_ASSUME_ROLE_DURATION,
            expiry_window=self.expiry_window or DEFAULT_EXPIRY_WINDOW,
        )


@dataclass
class Value:
    """Credentials handed to the caller."""

    access_key_id: str
    secret_access_key: str
    session_token: str
    provider_name: str = PROVIDER_NAME
    expiration: datetime.datetime = None

    def to_credential_process(self):
        """Document printed by an AWS ``credential_process`` command."""
        doc = {
            "Version": 1,
            "AccessKeyId": self.access_key_id,
            "SecretAccessKey": self.secret_access_key,
            "SessionToken": self.session_token,
        }
        if self.expiration is not None:
            doc["Expiration"] = self.expiration.isoformat()
        return doc


# ---------------------------------------------------------------------------
# STS
# ---------------------------------------------------------------------------


def sts_client(region, credentials=None):
    """Return an STS client; unsigned unless *credentials* are given."""
    if credentials is None:
        return boto3.client("sts", region_name=region, config=Config(signature_version=UNSIGNED))
    return boto3.client(
        "sts",
        region_name=region,
        aws_access_key_id=credentials.access_key_id,
        aws_secret_access_key=credentials.secret_access_key,
        aws_session_token=credentials.session_token,
    )


def _duration_seconds(duration):
    return min(int(duration.total_seconds()), STS_MAX_DURATION_SECONDS)


def assume_role_with_saml(sts, role, saml_assertion, duration):
    """Call STS AssumeRoleWithSAML and return Credentials."""
    try:
        response = sts.assume_role_with_saml(
            RoleArn=role.role,
            PrincipalArn=role.principal,
            SAMLAssertion=saml_assertion,
            DurationSeconds=_duration_seconds(duration),
        )
    except (ClientError, BotoCoreError) as exc:
        raise AuthError(f"Failed to assume role {role.role}: {exc}") from exc
    return Credentials.from_sts(response["Credentials"])


def assume_role(sts, role_arn, duration, role_session_name):
    """Call STS AssumeRole with the client's credentials and return Credentials."""
    try:
        response = sts.assume_role(
            RoleArn=role_arn,
            RoleSessionName=role_session_name[:64],
            DurationSeconds=_duration_seconds(duration),
        )
    except (ClientError, BotoCoreError) as exc:
        raise AuthError(f"Failed to assume role {role_arn}: {exc}") from exc
    return Credentials.from_sts(response["Credentials"])


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class Provider(CredentialProvider):
    """Credential provider for one profile of the AWS config file.

    Usable directly through ``retrieve()`` or inserted into a botocore
    credential resolver, in which case ``load()`` returns refreshable
    credentials.
    """

    METHOD = PROVIDER_NAME
    CANONICAL_NAME = "custom-okta"

    def __init__(self, keyring, profile, options, okta_client_factory=None,
                 sts_client_factory=sts_client, logger=None):
        super().__init__()
        options = options.apply_defaults()
        options.validate()

        self.keyring = keyring
        self.profile = profile
        self.options = options
        self.profiles = options.profiles
        self.log = logger or logging.getLogger(__name__)
        self.okta_client_factory = okta_client_factory or self._okta_client
        self.sts_client_factory = sts_client_factory

        if options.session_cache_single_item:
            self.sessions = SingleKrItemStore(keyring, logger=self.log)
        else:
            self.sessions = KrItemPerSessionStore(keyring, logger=self.log)
        self.session = None

    # -----------------------------------------------------------------------
    # Configuration lookups
    # -----------------------------------------------------------------------

    def get_saml_url(self):
        """Return the required ``aws_saml_url``; raises NotFoundError when unset."""
        url, profile = self.profiles.get_value(self.profile, "aws_saml_url")
        self.log.debug("Using aws_saml_url from profile %s", profile)
        return url

    def get_okta_session_cookie_key(self):
        return OKTA_SESSION_COOKIE_KEY

    def get_okta_account_name(self):
        return OKTA_ACCOUNT_NAME

    def _optional_value(self, profile, key, default=""):
        try:
            value, _ = self.profiles.get_value(profile, key)
        except NotFoundError:
            return default
        return value

    def _saml_role_arn(self):
        """Role requested from the SAML assertion: the source profile's role_arn."""
        return self._optional_value(source_profile(self.profile, self.profiles), "role_arn")

    def _chained_role_arn(self):
        """Role assumed with the SAML credentials, or "" when there is none."""
        if self.options.assume_role_arn:
            return self.options.assume_role_arn
        if source_profile(self.profile, self.profiles) != self.profile:
            return self.profiles.get(self.profile, {}).get("role_arn", "")
        return ""

    def _cache_key(self):
        chained = bool(self._chained_role_arn())
        duration = self.options.assume_role_duration if chained else self.options.session_duration
        return KeyWithProfileARN(
            profile_name=self.profile,
            profile_conf=dict(self.profiles.get(self.profile, {})),
            duration=duration,
            profile_arn=self.options.assume_role_arn,
        )

    # -----------------------------------------------------------------------
    # Credential retrieval
    # -----------------------------------------------------------------------

    def _cached_session(self, key):
        try:
            session = self.sessions.get(key)
        except CacheError as exc:
            self.log.warning("Ignoring session cache: %s", exc)
            return None
        if session is None:
            self.log.debug("No cached session for %s", key.key())
            return None
        if session.expires_within(self.options.expiry_window):
            self.log.debug("Cached session for %s is about to expire", key.key())
            return None
        return session

    def _okta_creds(self):
        try:
            item = self.keyring.get(self.get_okta_account_name())
        except ItemNotFoundError:
            raise AuthError(
                "No Okta credentials stored; run `okta-broker add` first"
            ) from None
        except CacheError as exc:
            raise AuthError(f"Could not read Okta credentials: {exc}") from exc
        creds = OktaCreds.from_json(item.data)
        creds.validate()
        return creds

    def _okta_client(self, creds):
        return OktaClient(
            creds,
            self.keyring,
            self.get_okta_session_cookie_key(),
            mfa_config=self.options.mfa_config,
            logger=self.log,
        )

    def _new_session(self):
        saml_url = self.get_saml_url()
        creds = self._okta_creds()
        client = self.okta_client_factory(creds)

        assertion = parse_saml(client.fetch_saml_page(saml_url))
        role = get_role(get_assumable_roles(assertion), self._saml_role_arn())
        account_id, role_name = account_id_and_role_from_role_arn(role.role)
        self.log.info("Assuming role %s in account %s", role_name, account_id or "unknown")

        session_duration = self.options.session_duration
        granted = assertion.session_duration
        if granted and granted < session_duration.total_seconds():
            self.log.info("Okta grants sessions of at most %s seconds", granted)
            session_duration = datetime.timedelta(seconds=granted)

        region = self._optional_value(self.profile, "region", DEFAULT_REGION)
        credentials = assume_role_with_saml(
            self.sts_client_factory(region), role, assertion.raw, session_duration
        )

        chained = self._chained_role_arn()
        if chained:
            account_id, role_name = account_id_and_role_from_role_arn(chained)
            self.log.info("Assuming chained role %s in account %s",
                          role_name, account_id or "unknown")
            credentials = assume_role(
                self.sts_client_factory(region, credentials),
                chained,
                self.options.assume_role_duration,
                creds.username,
            )

        return Session(name=self.profile, credentials=credentials)

    def retrieve(self):
        """Return credentials for the profile, authenticating when needed."""
        key = self._cache_key()
        session = self._cached_session(key)
        if session is None:
            session = self._new_session()
            try:
                self.sessions.put(key, session)
            except CacheError as exc:
                self.log.warning("Failed to cache session: %s", exc)
        else:
            self.log.debug("Using cached session for %s", key.key())

        self.session = session
        creds = session.credentials
        return Value(
            access_key_id=creds.access_key_id,
            secret_access_key=creds.secret_access_key,
            session_token=creds.session_token,
            expiration=creds.expiration,
        )

    def get_expiration(self):
        """Expiration of the session returned by the last ``retrieve()``."""
        if self.session is None:
            return None
        return self.session.credentials.expiration

    # -----------------------------------------------------------------------
    # botocore integration
    # -----------------------------------------------------------------------

    def _metadata(self):
        value = self.retrieve()
        return {
            "access_key": value.access_key_id,
            "secret_key": value.secret_access_key,
            "token": value.session_token,
            "expiry_time": self.get_expiration().isoformat(),
        }

    def load(self):
        return RefreshableCredentials.create_from_metadata(
            metadata=self._metadata(),
            refresh_using=self._metadata,
            method=self.METHOD,
        )
