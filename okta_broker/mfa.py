"""Okta MFA factor descriptors and factor selection."""

import sys
from dataclasses import dataclass, field

from .errors import AuthError, UnsupportedFactorError

FACTOR_LABELS = {
    "web": "Duo Web",
    "token": "Hardware Token",
    "token:software:totp": "TOTP Authenticator",
    "token:hardware": "Hardware Token",
    "push": "Push Notification",
    "sms": "SMS",
    "u2f": "U2F Security Key",
    "webauthn": "WebAuthn",
}

# factor types usable with any provider
_ANY_PROVIDER = ("web", "token:software:totp", "token:hardware", "sms", "u2f", "webauthn")
_PROVIDERS_BY_TYPE = {
    "token": ("SYMANTEC",),
    "push": ("OKTA", "DUO"),
}


@dataclass
class OktaUserAuthnFactor:
    """One enrolled factor from an Okta ``MFA_REQUIRED`` response."""

    id: str
    factor_type: str
    provider: str
    profile: dict = field(default_factory=dict)
    embedded: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data.get("id", ""),
            factor_type=data.get("factorType", ""),
            provider=data.get("provider", ""),
            profile=data.get("profile") or {},
            embedded=data.get("_embedded") or {},
        )

    @property
    def label(self):
        label = FACTOR_LABELS.get(self.factor_type, self.factor_type)
        if self.provider:
            label = f"{label} ({self.provider})"
        return label


@dataclass
class MFAConfig:
    """Preferred factor, used when several factors are enrolled."""

    provider: str = ""
    factor_type: str = ""


def get_factor_id(factor):
    """Return the id to verify *factor* with.

    Raises UnsupportedFactorError for an unknown factor type, or a known type
    whose provider is not supported.
    """
    if factor.factor_type in _ANY_PROVIDER:
        return factor.id
    if factor.factor_type in _PROVIDERS_BY_TYPE:
        if factor.provider in _PROVIDERS_BY_TYPE[factor.factor_type]:
            return factor.id
        raise UnsupportedFactorError(
            f"Unsupported provider {factor.provider!r} for factor type {factor.factor_type!r}"
        )
    raise UnsupportedFactorError(f"Unsupported factor type {factor.factor_type!r}")


def prompt_stderr(message):
    """Read a line from stdin, writing the prompt to stderr so stdout stays clean.

    Raises EOFError when stdin is closed.
    """
    sys.stderr.write(message)
    sys.stderr.flush()
    line = sys.stdin.readline()
    if not line:
        raise EOFError("no input on stdin")
    return line.rstrip("\n")


def select_factor(factors, mfa_config=None, prompt=prompt_stderr):
    """Return a single factor from *factors*.

    A configured provider/factor type wins; otherwise a lone factor is used
    directly and the user is prompted to pick among several.
    """
    if not factors:
        raise UnsupportedFactorError("No MFA factors are enrolled")

    if mfa_config and (mfa_config.provider or mfa_config.factor_type):
        for factor in factors:
            if mfa_config.provider and factor.provider.upper() != mfa_config.provider.upper():
                continue
            if mfa_config.factor_type and factor.factor_type != mfa_config.factor_type:
                continue
            return factor
        raise UnsupportedFactorError(
            f"No enrolled factor matches provider={mfa_config.provider or 'any'}, "
            f"factor type={mfa_config.factor_type or 'any'}"
        )

    if len(factors) == 1:
        return factors[0]

    print("\nAvailable MFA factors:", file=sys.stderr)
    for i, factor in enumerate(factors):
        print(f"  [{i + 1}] {factor.label}", file=sys.stderr)

    while True:
        try:
            answer = prompt("\nSelect MFA factor: ")
        except EOFError:
            raise AuthError("No MFA factor selected: input is closed") from None
        try:
            choice = int(answer.strip()) - 1
            if 0 <= choice < len(factors):
                return factors[choice]
        except ValueError:
            pass
        print("Invalid selection, please try again.", file=sys.stderr)
