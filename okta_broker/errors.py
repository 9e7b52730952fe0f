"""Exceptions raised by okta-broker."""


class OktaBrokerError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(OktaBrokerError):
    """The configuration source could not be read or parsed."""


class NotFoundError(OktaBrokerError, KeyError):
    """A configuration key is missing from a profile and its fallbacks."""

    def __init__(self, key, profile):
        self.key = key
        self.profile = profile
        super().__init__(
            f"Could not find {key} in {profile}, source profile, or okta"
        )

    def __str__(self):
        return self.args[0]


class ValidationError(OktaBrokerError, ValueError):
    """Provider options are outside their allowed bounds."""


class UnsupportedFactorError(OktaBrokerError):
    """The MFA factor type or provider is not supported."""


class ParseError(OktaBrokerError):
    """The SAML page or assertion could not be parsed."""


class RoleResolutionError(OktaBrokerError):
    """No granted role matches the requested one."""


class CacheError(OktaBrokerError):
    """The session cache backend failed or held a corrupt payload."""


class AuthError(OktaBrokerError):
    """Okta or STS rejected the credentials or the MFA challenge."""
