"""Okta authentication: primary login, MFA and SAML page retrieval.

The Okta session is kept as the ``sid`` cookie in the keyring so that later
invocations fetch the SAML page without prompting for MFA again.
"""

import json
import logging
import sys
import time
from dataclasses import asdict, dataclass

import requests

from .errors import AuthError, CacheError, UnsupportedFactorError, ValidationError
from .keyring_store import Item, ItemNotFoundError
from .mfa import OktaUserAuthnFactor, get_factor_id, prompt_stderr, select_factor
from .saml import extract_saml_response

OKTA_SERVER_US = "okta.com"
OKTA_SERVER_EMEA = "okta-emea.com"
OKTA_SERVER_PREVIEW = "oktapreview.com"
OKTA_SERVER_DEFAULT = OKTA_SERVER_US

OKTA_DOMAINS = {
    "us": OKTA_SERVER_US,
    "emea": OKTA_SERVER_EMEA,
    "preview": OKTA_SERVER_PREVIEW,
}

SESSION_COOKIE_NAME = "sid"
REQUEST_TIMEOUT = 30
PUSH_POLL_INTERVAL = 3   # seconds between push-approval polls
PUSH_POLL_TIMEOUT = 180  # seconds before giving up on a push

# factors answered with a one-time code typed by the user
_CODE_FACTORS = ("token", "token:software:totp", "token:hardware")
# factors that need a browser or a hardware key bridge
_BROWSER_FACTORS = ("web", "u2f", "webauthn")


def get_okta_domain(region):
    """Map an Okta region (``us``, ``emea``, ``preview``) to its domain."""
    try:
        return OKTA_DOMAINS[region]
    except KeyError:
        raise ValueError(f"invalid region {region!r}") from None


@dataclass
class OktaCreds:
    organization: str
    username: str
    password: str
    domain: str = OKTA_SERVER_DEFAULT

    @classmethod
    def from_json(cls, data):
        try:
            values = json.loads(data)
            return cls(
                organization=values["organization"],
                username=values["username"],
                password=values["password"],
                domain=values.get("domain") or OKTA_SERVER_DEFAULT,
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise ValidationError(f"Stored Okta credentials are unreadable: {exc}") from exc

    def to_json(self):
        return json.dumps(asdict(self)).encode("utf-8")

    def validate(self):
        for name in ("organization", "username", "password"):
            if not getattr(self, name):
                raise ValidationError(f"Okta {name} is required")

    @property
    def base_url(self):
        return f"https://{self.organization}.{self.domain}"


class OktaClient:
    """Talks to one Okta organization on behalf of one user."""

    def __init__(self, creds, keyring, session_cookie_key, mfa_config=None,
                 prompt=prompt_stderr, http=None, logger=None):
        self.creds = creds
        self.keyring = keyring
        self.session_cookie_key = session_cookie_key
        self.mfa_config = mfa_config
        self.prompt = prompt
        self.http = http or requests.Session()
        self.log = logger or logging.getLogger(__name__)

    # -----------------------------------------------------------------------
    # Primary authentication
    # -----------------------------------------------------------------------

    def _post(self, path, payload):
        url = f"{self.creds.base_url}{path}"
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        try:
            response = self.http.post(url, json=payload, headers=headers, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
        except requests.HTTPError as exc:
            status_code = exc.response.status_code
            if status_code == 401:
                raise AuthError("Authentication failed: invalid username or password.") from exc
            if status_code == 429:
                raise AuthError(
                    "Authentication failed: too many requests, please wait and retry."
                ) from exc
            raise AuthError(f"Authentication failed: HTTP {status_code}.") from exc
        except requests.RequestException as exc:
            raise AuthError(f"Could not reach Okta at {url}: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise AuthError(f"Okta returned a non-JSON response from {url}") from exc

    def authenticate(self):
        """Log in with username/password (and MFA) and return a session token."""
        self.log.debug("Authenticating to %s as %s", self.creds.base_url, self.creds.username)
        authn_result = self._post(
            "/api/v1/authn",
            {"username": self.creds.username, "password": self.creds.password},
        )
        status = authn_result.get("status")

        if status == "LOCKED_OUT":
            raise AuthError("Your account is locked out. Please contact your administrator.")
        if status == "PASSWORD_EXPIRED":
            raise AuthError("Your password has expired. Please reset it in Okta and try again.")
        if status == "MFA_ENROLL":
            raise AuthError("MFA enrollment is required. Please enroll a factor in Okta first.")

        if status in ("MFA_REQUIRED", "MFA_CHALLENGE"):
            self.log.info("MFA verification required")
            authn_result = self.complete_mfa(authn_result)
            status = authn_result.get("status")

        if status != "SUCCESS":
            raise AuthError(f"Authentication failed with unexpected status: {status}")

        session_token = authn_result.get("sessionToken")
        if not session_token:
            raise AuthError("Okta did not return a session token.")
        return session_token

    # -----------------------------------------------------------------------
    # MFA
    # -----------------------------------------------------------------------

    def verify_factor(self, factor_id, state_token, passcode=None):
        """Send an MFA verification request to Okta.

        For push factors call without *passcode* to trigger the challenge, then
        poll this endpoint again (without passcode) to check approval status.
        """
        payload = {"stateToken": state_token}
        if passcode:
            payload["passCode"] = passcode
        return self._post(f"/api/v1/authn/factors/{factor_id}/verify", payload)

    def _ask(self, message):
        try:
            return self.prompt(message).strip()
        except EOFError:
            raise AuthError("No MFA code entered: input is closed") from None

    def complete_mfa(self, authn_result):
        """Answer the MFA challenge in *authn_result* and return the new result."""
        state_token = authn_result["stateToken"]
        factors = [
            OktaUserAuthnFactor.from_dict(f)
            for f in authn_result.get("_embedded", {}).get("factors", [])
        ]
        factor = select_factor(factors, self.mfa_config, prompt=self.prompt)
        factor_id = get_factor_id(factor)

        self.log.debug("Using MFA factor %s (%s)", factor.label, factor_id)

        if factor.factor_type == "push":
            return self._handle_push(factor_id, state_token)

        if factor.factor_type == "sms":
            print("Sending SMS code...", file=sys.stderr)
            self.verify_factor(factor_id, state_token)
            passcode = self._ask("Enter SMS code: ")
            return self.verify_factor(factor_id, state_token, passcode)

        if factor.factor_type in _CODE_FACTORS:
            passcode = self._ask(f"Enter code for {factor.label}: ")
            return self.verify_factor(factor_id, state_token, passcode)

        if factor.factor_type in _BROWSER_FACTORS:
            raise AuthError(f"MFA factor {factor.label} needs a browser and is not supported here")
        raise UnsupportedFactorError(f"Unsupported factor type {factor.factor_type!r}")

    def _handle_push(self, factor_id, state_token):
        """Poll a push factor until approved, rejected, or timeout."""
        print("Sending push notification... please approve it.", file=sys.stderr, flush=True)
        result = self.verify_factor(factor_id, state_token)
        deadline = time.time() + PUSH_POLL_TIMEOUT

        while result.get("status") == "MFA_CHALLENGE":
            factor_result = result.get("factorResult", "")
            if factor_result == "WAITING":
                if time.time() > deadline:
                    raise AuthError("Push notification timed out.")
                time.sleep(PUSH_POLL_INTERVAL)
                result = self.verify_factor(factor_id, state_token)
            elif factor_result == "REJECTED":
                raise AuthError("Push notification was rejected.")
            elif factor_result == "TIMEOUT":
                raise AuthError("Push notification timed out.")
            else:
                break  # unknown status, the caller checks the final status

        return result

    # -----------------------------------------------------------------------
    # Session cookie
    # -----------------------------------------------------------------------

    def _load_session_cookie(self):
        try:
            item = self.keyring.get(self.session_cookie_key)
        except ItemNotFoundError:
            return False
        except CacheError as exc:
            self.log.warning("Could not read Okta session cookie: %s", exc)
            return False
        self.http.cookies.set(
            SESSION_COOKIE_NAME,
            item.data.decode("utf-8"),
            domain=f"{self.creds.organization}.{self.creds.domain}",
        )
        return True

    def _store_session_cookie(self):
        sid = self.http.cookies.get(SESSION_COOKIE_NAME)
        if not sid:
            self.log.debug("Okta did not set a session cookie")
            return
        try:
            self.keyring.set(Item(
                key=self.session_cookie_key,
                data=sid.encode("utf-8"),
                label="okta session cookie",
            ))
        except CacheError as exc:
            self.log.warning("Could not store Okta session cookie: %s", exc)

    def _forget_session_cookie(self):
        try:
            self.keyring.remove(self.session_cookie_key)
        except ItemNotFoundError:
            pass
        except CacheError as exc:
            self.log.warning("Could not remove Okta session cookie: %s", exc)

    def establish_session(self, redirect_url):
        """Log in and exchange the session token for a session cookie.

        Returns the page Okta redirects to, usually the SAML form.
        """
        session_token = self.authenticate()
        try:
            resp = self.http.get(
                f"{self.creds.base_url}/login/sessionCookieRedirect",
                params={
                    "checkAccountSetupComplete": "true",
                    "token": session_token,
                    "redirectUrl": redirect_url,
                },
                allow_redirects=True,
                timeout=REQUEST_TIMEOUT,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise AuthError(f"Failed to create an Okta session: {exc}") from exc
        self.log.debug("Final URL after redirects: %s", resp.url)
        self._store_session_cookie()
        return resp.content

    # -----------------------------------------------------------------------
    # SAML page
    # -----------------------------------------------------------------------

    def saml_url(self, aws_saml_url):
        if aws_saml_url.startswith(("http://", "https://")):
            return aws_saml_url
        return f"{self.creds.base_url}/{aws_saml_url.lstrip('/')}"

    def fetch_saml_page(self, aws_saml_url):
        """Return the HTML page carrying the SAMLResponse form.

        A stored session cookie is tried first; when Okta answers with
        anything but the SAML form the user logs in again.
        """
        url = self.saml_url(aws_saml_url)
        if self._load_session_cookie():
            self.log.debug("Requesting SAML page with stored session cookie")
            try:
                resp = self.http.get(url, allow_redirects=True, timeout=REQUEST_TIMEOUT)
                resp.raise_for_status()
            except requests.RequestException as exc:
                raise AuthError(f"Failed to fetch SAML page {url}: {exc}") from exc
            if extract_saml_response(resp.content):
                return resp.content
            self.log.info("Stored Okta session is no longer valid, logging in again")
            self.http.cookies.clear()
            self._forget_session_cookie()

        return self.establish_session(url)
