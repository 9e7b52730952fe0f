"""SAML response extraction and AWS role resolution.

Okta answers the AWS app URL with an auto-submitting HTML form whose hidden
``SAMLResponse`` field carries the base64-encoded SAML response.  Only the
fields needed to pick a role and call STS are extracted; signatures are not
verified here, STS does that.
"""

import base64
import binascii
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

from bs4 import BeautifulSoup

from .errors import ParseError, RoleResolutionError

SAML_ROLE_ATTRIBUTE = "https://aws.amazon.com/SAML/Attributes/Role"
SAML_SESSION_ATTRIBUTE = "https://aws.amazon.com/SAML/Attributes/SessionDuration"

NS = {
    "saml2p": "urn:oasis:names:tc:SAML:2.0:protocol",
    "saml2": "urn:oasis:names:tc:SAML:2.0:assertion",
}
_RESPONSE_TAG = f"{{{NS['saml2p']}}}Response"


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class AssumableRole:
    role: str
    principal: str


@dataclass
class Attribute:
    name: str
    name_format: str = ""
    values: list = field(default_factory=list)


@dataclass
class Subject:
    name_id: str = ""
    confirmation_method: str = ""
    recipient: str = ""
    not_on_or_after: str = ""


@dataclass
class Conditions:
    not_before: str = ""
    not_on_or_after: str = ""
    audience: str = ""


@dataclass
class AuthnStatement:
    authn_instant: str = ""
    session_index: str = ""


@dataclass
class Assertion:
    id: str = ""
    issue_instant: str = ""
    version: str = ""
    issuer: str = ""
    subject: Subject = field(default_factory=Subject)
    conditions: Conditions = field(default_factory=Conditions)
    authn_statement: AuthnStatement = field(default_factory=AuthnStatement)
    attributes: list = field(default_factory=list)


@dataclass
class Response:
    """The ``samlp:Response`` envelope.

    ``samlp``, ``saml`` and ``samlsig`` mirror namespace declarations on the
    root element.  The XML parser consumes those declarations, so the fields
    stay empty.
    """

    samlp: str = ""
    saml: str = ""
    samlsig: str = ""
    destination: str = ""
    id: str = ""
    version: str = ""
    issue_instant: str = ""
    in_response_to: str = ""
    issuer: str = ""
    status: str = ""
    assertion: Assertion = field(default_factory=Assertion)


@dataclass
class SAMLAssertion:
    resp: Response = field(default_factory=Response)
    raw: str = ""

    @property
    def session_duration(self):
        """SessionDuration granted by the IdP in seconds, or None."""
        for attr in self.resp.assertion.attributes:
            if attr.name == SAML_SESSION_ATTRIBUTE:
                for value in attr.values:
                    try:
                        return int(value)
                    except ValueError:
                        continue
        return None


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _text(el):
    if el is None:
        return ""
    return (el.text or "").strip()


def _attr(el, name):
    if el is None:
        return ""
    return el.get(name, "")


def _parse_assertion(el):
    if el is None:
        return Assertion()

    subject = el.find("saml2:Subject", NS)
    confirmation = el.find("saml2:Subject/saml2:SubjectConfirmation", NS)
    confirmation_data = el.find(
        "saml2:Subject/saml2:SubjectConfirmation/saml2:SubjectConfirmationData", NS
    )
    conditions = el.find("saml2:Conditions", NS)
    authn = el.find("saml2:AuthnStatement", NS)

    attributes = []
    for attr in el.iterfind("saml2:AttributeStatement/saml2:Attribute", NS):
        attributes.append(Attribute(
            name=attr.get("Name", "").strip(),
            name_format=attr.get("NameFormat", ""),
            values=[_text(v) for v in attr.iterfind("saml2:AttributeValue", NS)],
        ))

    return Assertion(
        id=el.get("ID", ""),
        issue_instant=el.get("IssueInstant", ""),
        version=el.get("Version", ""),
        issuer=_text(el.find("saml2:Issuer", NS)),
        subject=Subject(
            name_id=_text(subject.find("saml2:NameID", NS)) if subject is not None else "",
            confirmation_method=_attr(confirmation, "Method"),
            recipient=_attr(confirmation_data, "Recipient"),
            not_on_or_after=_attr(confirmation_data, "NotOnOrAfter"),
        ),
        conditions=Conditions(
            not_before=_attr(conditions, "NotBefore"),
            not_on_or_after=_attr(conditions, "NotOnOrAfter"),
            audience=_text(el.find(
                "saml2:Conditions/saml2:AudienceRestriction/saml2:Audience", NS
            )),
        ),
        authn_statement=AuthnStatement(
            authn_instant=_attr(authn, "AuthnInstant"),
            session_index=_attr(authn, "SessionIndex"),
        ),
        attributes=attributes,
    )


def extract_saml_response(html):
    """Return the SAMLResponse value from an HTML form, or None."""
    soup = BeautifulSoup(html, "lxml")
    tag = soup.find("input", {"name": "SAMLResponse"})
    if not tag or not tag.get("value"):
        return None
    return tag["value"]


def parse_saml(html):
    """Parse the Okta SAML page *html* into a SAMLAssertion.

    Raises ParseError when the form field is missing, is not base64, or does
    not decode to a SAML response document.
    """
    value = extract_saml_response(html)
    if value is None:
        raise ParseError("Could not find SAMLResponse in the Okta response")

    try:
        saml_xml = base64.b64decode(value)
    except (binascii.Error, ValueError) as exc:
        raise ParseError(f"SAMLResponse is not valid base64: {exc}") from exc

    try:
        root = ET.fromstring(saml_xml.strip())
    except ET.ParseError as exc:
        raise ParseError(f"SAMLResponse is not valid XML: {exc}") from exc

    if root.tag != _RESPONSE_TAG:
        raise ParseError(f"Unexpected SAML root element {root.tag}")

    resp = Response(
        samlp=root.get("xmlns:saml2p", ""),
        saml=root.get("xmlns:saml2", ""),
        samlsig=root.get("xmlns:ds", ""),
        destination=root.get("Destination", ""),
        id=root.get("ID", ""),
        version=root.get("Version", ""),
        issue_instant=root.get("IssueInstant", ""),
        in_response_to=root.get("InResponseTo", ""),
        issuer=_text(root.find("saml2:Issuer", NS)),
        status=_attr(root.find("saml2p:Status/saml2p:StatusCode", NS), "Value"),
        assertion=_parse_assertion(root.find("saml2:Assertion", NS)),
    )
    return SAMLAssertion(resp=resp, raw=value)


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


def _parse_role_value(text):
    """Parse a single Role attribute value into an AssumableRole.

    The value is a comma-separated pair of ARNs:
    ``arn:aws:iam::ACCT:saml-provider/P,arn:aws:iam::ACCT:role/R``
    or in reverse order.  Returns None if the value cannot be parsed.
    """
    parts = [p.strip() for p in text.split(",")]
    if len(parts) != 2:
        return None

    principal = next((p for p in parts if ":saml-provider/" in p), None)
    role = next((p for p in parts if p != principal), None)
    if not role or not principal:
        return None
    return AssumableRole(role=role, principal=principal)


def get_assumable_roles(assertion):
    """Return the roles granted by *assertion*, in document order."""
    roles = []
    for attr in assertion.resp.assertion.attributes:
        if attr.name != SAML_ROLE_ATTRIBUTE:
            continue
        for value in attr.values:
            role = _parse_role_value(value)
            if role:
                roles.append(role)
    return roles


def get_role(roles, role_arn):
    """Pick the role to assume out of *roles*.

    A single granted role is always used, whatever *role_arn* says.
    Otherwise the first role whose ARN equals *role_arn* is returned.
    """
    if not roles:
        raise RoleResolutionError("No roles granted in the SAML assertion")

    if len(roles) == 1:
        return roles[0]

    for role in roles:
        if role.role == role_arn:
            return role

    granted = ", ".join(r.role for r in roles)
    raise RoleResolutionError(
        f"Role {role_arn!r} not found in the SAML assertion; granted roles: {granted}"
    )


def account_id_and_role_from_role_arn(role_arn):
    """Split ``arn:<partition>:iam::<account>:role/<name>`` into (account, name).

    Anything else returns ``("", role_arn)`` so callers can still print it.
    """
    parts = role_arn.split(":", 5)
    if len(parts) != 6 or parts[0] != "arn":
        return "", role_arn

    resource_type, sep, resource_id = parts[5].partition("/")
    if not sep or resource_type != "role" or not resource_id or not parts[4]:
        return "", role_arn
    return parts[4], resource_id.split("/")[-1]
