"""AWS SAML assertion parser and role selection."""
import base64
import binascii
import logging
import xml.etree.ElementTree as ET

from bs4 import BeautifulSoup

import prompt

LOG = logging.getLogger(__name__)

SAML_NAMESPACES = {"saml2": "urn:oasis:names:tc:SAML:2.0:assertion"}
ROLE_ATTRIBUTE = "https://aws.amazon.com/SAML/Attributes/Role"
ROLE_QUERY = (
    f".//saml2:Attribute[@Name='{ROLE_ATTRIBUTE}']/saml2:AttributeValue"
)


class InvalidSaml(Exception):
    """Exception raised when the SAML Assertion is invalid."""


class SamlNotFound(InvalidSaml):
    """The response carried no SAMLResponse field; a new login is needed."""


class MalformedSaml(InvalidSaml):
    """A SAMLResponse was found but could not be turned into roles."""


class Role:
    """An AWS role paired with the SAML provider trusted to assume it."""

    def __init__(self, provider_arn, role_arn):
        self.provider_arn = provider_arn
        self.role_arn = role_arn

    @classmethod
    def parse(cls, value):
        """Parses a "<arn>,<arn>" attribute value into a Role.

        The provider and role ARNs come in no guaranteed order, so each
        token is identified by its content.
        """
        tokens = [token.strip() for token in value.split(",")]
        if len(tokens) < 2:
            raise MalformedSaml(f"Not enough elements in {value}")
        if len(tokens) > 2:
            raise MalformedSaml(f"Too many elements in {value}")

        providers = [t for t in tokens if ":saml-provider/" in t]
        roles = [t for t in tokens if ":role/" in t]
        if len(providers) != 1 or len(roles) != 1 or providers[0] == roles[0]:
            raise MalformedSaml(
                f"Unable to tell role and provider apart in {value}",
            )
        return cls(provider_arn=providers[0], role_arn=roles[0])

    def __eq__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return (self.provider_arn, self.role_arn) == (
            other.provider_arn,
            other.role_arn,
        )

    def __hash__(self):
        return hash((self.provider_arn, self.role_arn))

    def __repr__(self):
        return f"Role(provider_arn={self.provider_arn!r}, role_arn={self.role_arn!r})"

    def __str__(self):
        return self.role_arn


class SamlAssertion:
    """Handles parsing of the AWS SAML assertion.

    ``raw`` is the base64 string exactly as the identity provider sent it;
    it is what STS expects back.
    """

    def __init__(self, raw, roles):
        self.raw = raw
        self.roles = roles

    @classmethod
    def parse(cls, raw):
        """Decodes a base64 assertion and extracts its set of roles."""
        try:
            document = base64.b64decode("".join(raw.split()), validate=True)
            document = document.decode("utf-8")
        except (binascii.Error, ValueError) as err:
            raise MalformedSaml("SAMLResponse is not base64 encoded UTF-8") from err

        LOG.debug(f"SAML: {document}")

        try:
            root = ET.fromstring(document)
        except ET.ParseError as err:
            raise MalformedSaml("SAMLResponse is not valid XML") from err

        values = root.findall(ROLE_QUERY, SAML_NAMESPACES)
        roles = {Role.parse(value.text or "") for value in values}

        if not roles:
            raise MalformedSaml("Could not find any Role in the SAML assertion")

        LOG.debug(f"SAML Roles: {roles}")
        return cls(raw, roles)

    @classmethod
    def from_html(cls, html):
        """Extracts the SAML assertion from an HTML form.

        Args:
        html: HTML content returned by the identity provider

        Returns: SamlAssertion
        """
        soup = BeautifulSoup(html, "html.parser")
        field = soup.find("input", attrs={"name": "SAMLResponse"})
        if field is None:
            raise SamlNotFound("No SAMLResponse found in the response")
        return cls.parse(field.get("value", ""))


def select_role(roles, preferred=None):
    """Picks the role to assume.

    An exact match on ``preferred`` wins, a single role is returned without
    asking, anything else is put in front of the operator.
    """
    if not roles:
        raise MalformedSaml("No roles to choose from")

    by_arn = {role.role_arn: role for role in roles}
    if preferred and preferred in by_arn:
        LOG.debug(f"Using preferred role {preferred}")
        return by_arn[preferred]

    if len(roles) == 1:
        return next(iter(roles))

    if preferred:
        title = f"Role {preferred} not found; select the role to assume:"
    else:
        title = "Select the role to assume:"

    arns = sorted(by_arn)
    return by_arn[arns[prompt.selector_menu(arns, title)]]
