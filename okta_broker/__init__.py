"""okta-broker: short-lived AWS credentials from an Okta SAML login.

Authenticates to Okta (including MFA), reads the AWS roles granted in the SAML
assertion, assumes the configured role via STS and caches the temporary
credentials in the OS keyring.
"""

__version__ = "0.1.0"

from .provider import Provider, ProviderOptions, Value  # noqa: E402

__all__ = ["Provider", "ProviderOptions", "Value", "__version__"]
