"""Shared fixtures for the saml-broker test suite."""
import base64

import pytest

from config import Profile
from credentials import SecretStore, TemporaryCredentials

OKTA_URL = "https://example.okta.com"
APP_URL = f"{OKTA_URL}/home/amazon_aws/0oa1okvmwx7JTBo5r1d8/272"
AUTHN_URL = f"{OKTA_URL}/api/v1/authn"
SESSIONS_URL = f"{OKTA_URL}/api/v1/sessions"

PROVIDER_ARN = "arn:aws:iam::123456789012:saml-provider/okta-idp"
ADMIN_ROLE = "arn:aws:iam::123456789012:role/Admin"
READONLY_ROLE = "arn:aws:iam::123456789012:role/ReadOnly"


class MemoryStore(SecretStore):
    """SecretStore kept in a dict, standing in for the OS keyring."""

    def __init__(self):
        self.secrets = {}

    def get(self, service, key):
        return self.secrets.get((service, key))

    def set(self, service, key, value):
        self.secrets[(service, key)] = value

    def delete(self, service, key):
        self.secrets.pop((service, key), None)


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_saml(*pairs):
    """Base64 SAML response carrying one Role attribute value per pair."""
    values = "".join(
        f"<saml2:AttributeValue>{pair}</saml2:AttributeValue>" for pair in pairs
    )
    document = (
        '<saml2p:Response xmlns:saml2p="urn:oasis:names:tc:SAML:2.0:protocol" '
        'xmlns:saml2="urn:oasis:names:tc:SAML:2.0:assertion">'
        "<saml2:Assertion><saml2:AttributeStatement>"
        '<saml2:Attribute Name="https://aws.amazon.com/SAML/Attributes/Role">'
        f"{values}"
        "</saml2:Attribute>"
        '<saml2:Attribute Name="https://aws.amazon.com/SAML/Attributes/RoleSessionName">'
        "<saml2:AttributeValue>bob@example.com</saml2:AttributeValue>"
        "</saml2:Attribute>"
        "</saml2:AttributeStatement></saml2:Assertion></saml2p:Response>"
    )
    return base64.b64encode(document.encode()).decode()


def saml_form(raw):
    """The auto-submitting form identity providers send to AWS."""
    return (
        "<html><body>"
        '<form method="post" action="https://signin.aws.amazon.com/saml">'
        f'<input type="hidden" name="SAMLResponse" value="{raw}"/>'
        "</form></body></html>"
    )


def sts_credentials(expiration="2038-01-01T10:10:10Z", key="ASIAEXAMPLE"):
    return TemporaryCredentials(
        access_key_id=key,
        secret_access_key="secret",
        session_token="token",
        expiration=expiration,
    )


@pytest.fixture()
def store():
    return MemoryStore()


@pytest.fixture()
def clock(monkeypatch):
    fake = FakeClock()
    monkeypatch.setattr("time.monotonic", fake.monotonic)
    monkeypatch.setattr("time.sleep", fake.sleep)
    return fake


@pytest.fixture()
def okta_profile():
    return Profile(
        name="work",
        provider="okta",
        username="bob@example.com",
        url=APP_URL,
    )


@pytest.fixture()
def jumpcloud_profile():
    return Profile(
        name="jc",
        provider="jumpcloud",
        username="bob@example.com",
        url="https://sso.jumpcloud.com/saml2/aws",
    )


@pytest.fixture()
def adfs_profile():
    return Profile(
        name="corp",
        provider="adfs",
        username="bob@example.com",
        url="https://adfs.example.com/adfs/ls/IdpInitiatedSignOn.aspx",
    )
