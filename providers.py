"""Identity provider types and the adapter interface they share."""
import enum
import logging

from aws_saml import select_role

LOG = logging.getLogger(__name__)


class TransportError(Exception):
    """The identity provider could not be reached, or answered with something unreadable."""


class LoginError(Exception):
    """The identity provider refused the login; ``status`` is its own label for why."""

    def __init__(self, message, status=None):
        self.status = status
        super().__init__(message)


class InvalidPassword(LoginError):
    """Invalid Password."""


class LoginFailed(LoginError):
    """The login ended unauthenticated."""


class MfaFailed(Exception):
    """The MFA challenge was rejected, timed out or got a bad passcode."""

    def __init__(self, message, factor_result=None):
        self.factor_result = factor_result
        super().__init__(message)


class ProviderType(enum.Enum):
    """The identity providers we know how to log into."""

    OKTA = "okta"
    JUMPCLOUD = "jumpcloud"
    ADFS = "adfs"

    @classmethod
    def from_str(cls, value):
        """Case-insensitive lookup of a provider by name."""
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError("Unable to determine provider type") from None


class Provider:
    """An identity provider adapter.

    Adapters log the user in with ``new_session`` and turn that session into
    AWS credentials with ``fetch_aws_credentials``. Each adapter instance
    owns its own HTTP session, so independent instances can run side by
    side.
    """

    def __init__(self, passwords, exchange):
        self.passwords = passwords
        self.exchange = exchange

    def new_session(self, profile, force=False):
        raise NotImplementedError

    def fetch_aws_credentials(self, profile, session):
        raise NotImplementedError

    def assume_role(self, profile, assertion):
        """Selects a role from the assertion and exchanges it with STS."""
        role = select_role(assertion.roles, profile.role)
        LOG.info(f"Assuming role: {role} for profile {profile.name}")
        return self.exchange.assume(role, assertion.raw, profile.duration)

