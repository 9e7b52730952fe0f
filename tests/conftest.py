import base64
import datetime

import pytest
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from okta_broker.keyring_store import KeyringStore
from okta_broker.sessioncache import Credentials, Session


class MemoryBackend(KeyringBackend):
    """In-memory keyring backend."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        try:
            del self.passwords[(service, username)]
        except KeyError:
            raise PasswordDeleteError(username)


class LockedBackend(MemoryBackend):
    """Backend whose every call fails, like a locked keychain."""

    def get_password(self, service, username):
        raise KeyringError("keychain is locked")

    def set_password(self, service, username, password):
        raise KeyringError("keychain is locked")


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def keyring(backend):
    return KeyringStore(backend=backend)


@pytest.fixture
def locked_keyring():
    return KeyringStore(backend=LockedBackend())


THE_DISTANT_FUTURE = datetime.datetime(3000, 1, 1, tzinfo=datetime.timezone.utc)


def make_session(name="test-profile", expiration=THE_DISTANT_FUTURE, suffix="1"):
    return Session(
        name=name,
        credentials=Credentials(
            access_key_id=f"ASIA{suffix}",
            secret_access_key=f"secret{suffix}",
            session_token=f"token{suffix}",
            expiration=expiration,
        ),
    )


SAML_RESPONSE_XML = """
<?xml version="1.0" encoding="UTF-8"?>
<saml2p:Response Destination="{dest}"
                 ID="{response_id}"
                 IssueInstant="{issue_instant}"
                 Version="{version}"
                 xmlns:saml2p="urn:oasis:names:tc:SAML:2.0:protocol"
                 xmlns:xs="http://www.w3.org/2001/XMLSchema">
    <saml2:Issuer Format="urn:oasis:names:tc:SAML:2.0:nameid-format:entity"
                  xmlns:saml2="urn:oasis:names:tc:SAML:2.0:assertion">http://www.okta.com/exk1234567890</saml2:Issuer>
    <ds:Signature xmlns:ds="http://www.w3.org/2000/09/xmldsig#">
        <ds:SignedInfo>
            <ds:CanonicalizationMethod Algorithm="http://www.w3.org/2001/10/xml-exc-c14n#"/>
            <ds:Reference URI="#{response_id}">
                <ds:DigestValue>testDigestValue</ds:DigestValue>
            </ds:Reference>
        </ds:SignedInfo>
        <ds:SignatureValue>testData</ds:SignatureValue>
    </ds:Signature>
    <saml2p:Status><saml2p:StatusCode Value="urn:oasis:names:tc:SAML:2.0:status:Success"/></saml2p:Status>
    <saml2:Assertion ID="id98765" IssueInstant="{issue_instant}" Version="2.0"
                     xmlns:saml2="urn:oasis:names:tc:SAML:2.0:assertion">
        <saml2:Issuer Format="urn:oasis:names:tc:SAML:2.0:nameid-format:entity">
            http://www.okta.com/exk1234567890
        </saml2:Issuer>
        <saml2:Subject>
            <saml2:NameID Format="urn:oasis:names:tc:SAML:2.0:nameid-format:unspecified">jdoe</saml2:NameID>
            <saml2:SubjectConfirmation Method="urn:oasis:names:tc:SAML:2.0:cm:bearer">
                <saml2:SubjectConfirmationData NotOnOrAfter="2030-01-01T00:10:00Z" Recipient="https://signin.aws.amazon.com/saml"/>
            </saml2:SubjectConfirmation>
        </saml2:Subject>
        <saml2:Conditions NotBefore="2030-01-01T00:00:00Z" NotOnOrAfter="2030-01-01T00:10:00Z">
            <saml2:AudienceRestriction><saml2:Audience>urn:amazon:webservices</saml2:Audience></saml2:AudienceRestriction>
        </saml2:Conditions>
        <saml2:AuthnStatement AuthnInstant="{issue_instant}" SessionIndex="id1234.5678">
            <saml2:AuthnContext><saml2:AuthnContextClassRef>urn:oasis:names:tc:SAML:2.0:ac:classes:PasswordProtectedTransport</saml2:AuthnContextClassRef></saml2:AuthnContext>
        </saml2:AuthnStatement>
        <saml2:AttributeStatement>
            <saml2:Attribute Name="https://aws.amazon.com/SAML/Attributes/Role" NameFormat="urn:oasis:names:tc:SAML:2.0:attrname-format:uri">
{role_values}
            </saml2:Attribute>
            <saml2:Attribute Name="https://aws.amazon.com/SAML/Attributes/RoleSessionName" NameFormat="urn:oasis:names:tc:SAML:2.0:attrname-format:basic">
                <saml2:AttributeValue>jdoe</saml2:AttributeValue>
            </saml2:Attribute>
            <saml2:Attribute Name="https://aws.amazon.com/SAML/Attributes/SessionDuration" NameFormat="urn:oasis:names:tc:SAML:2.0:attrname-format:basic">
                <saml2:AttributeValue>{session_duration}</saml2:AttributeValue>
            </saml2:Attribute>
        </saml2:AttributeStatement>
    </saml2:Assertion>
</saml2p:Response>
"""

SAML_HTML = """
<!DOCTYPE html>
<html lang="en">
    <head><title>Signing in...</title></head>
    <body id="app">
        <div id="okta-auth-band"><h1>Signing in to AWS</h1></div>
        <form id="appForm" action="https&#x3a;&#x2f;&#x2f;signin.aws.amazon.com&#x2f;saml" method="POST">
            <input name="SAMLResponse" type="hidden" value="{value}"/>
            <input name="RelayState" type="hidden" value=""/>
        </form>
    </body>
</html>
"""

SAML_FIELDS = {
    "dest": "https://signin.aws.amazon.com/saml",
    "response_id": "id2739187465019283746501928374",
    "issue_instant": "2030-01-01T00:00:00Z",
    "version": "2.0",
    "session_duration": "43200",
}


def saml_xml(roles, **fields):
    values = "\n".join(
        f"<saml2:AttributeValue>{principal},{role}</saml2:AttributeValue>"
        for role, principal in roles
    )
    return SAML_RESPONSE_XML.format(role_values=values, **{**SAML_FIELDS, **fields})


def saml_html(roles, **fields):
    value = base64.b64encode(saml_xml(roles, **fields).encode("utf-8")).decode("ascii")
    # Okta HTML-escapes the base64 padding and plus signs
    value = value.replace("+", "&#x2b;").replace("=", "&#x3d;")
    return SAML_HTML.format(value=value).encode("utf-8")


ACCOUNT_ID = "123456789012"
PRINCIPAL_ARN = f"arn:aws:iam::{ACCOUNT_ID}:saml-provider/okta"
ADMIN_ROLE_ARN = f"arn:aws:iam::{ACCOUNT_ID}:role/okta-admin-role"
VIEWONLY_ROLE_ARN = f"arn:aws:iam::{ACCOUNT_ID}:role/okta-viewonly-role"
