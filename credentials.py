"""
Temporary AWS credentials and how we keep them, along with the identity
provider password, in the OS keyring between runs.
"""
import datetime
import json
import logging

import keyring
import keyring.errors

import prompt

LOG = logging.getLogger(__name__)

SERVICE_PREFIX = "saml_broker"
EXPIRY_MARGIN = datetime.timedelta(seconds=900)
CREDENTIAL_FIELDS = (
    "access_key_id",
    "secret_access_key",
    "session_token",
    "expiration",
)


class CacheError(Exception):
    """The secret store refused a write or delete."""


def parse_timestamp(value):
    """Parses an RFC3339 timestamp into an aware datetime."""
    if value.endswith("Z") or value.endswith("z"):
        value = value[:-1] + "+00:00"
    stamp = datetime.datetime.fromisoformat(value)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=datetime.timezone.utc)
    return stamp


def format_timestamp(value):
    """Renders a datetime as an RFC3339 UTC timestamp."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class TemporaryCredentials:
    """A set of temporary AWS credentials; any field may be absent."""

    version = 1

    def __init__(
            self,
            access_key_id=None,
            secret_access_key=None,
            session_token=None,
            expiration=None):
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.session_token = session_token
        self.expiration = expiration

    @classmethod
    def from_sts(cls, creds):
        """Builds credentials from the Credentials block of an STS response."""
        expiration = creds.get("Expiration")
        if isinstance(expiration, datetime.datetime):
            expiration = format_timestamp(expiration)
        return cls(
            access_key_id=creds.get("AccessKeyId"),
            secret_access_key=creds.get("SecretAccessKey"),
            session_token=creds.get("SessionToken"),
            expiration=expiration,
        )

    @property
    def is_valid(self):
        """True when all four fields are present."""
        return all(getattr(self, field) for field in CREDENTIAL_FIELDS)

    def is_expired(self, now=None):
        """True when the credentials expire within the safety margin."""
        if not self.expiration:
            return True
        try:
            expiration = parse_timestamp(self.expiration)
        except ValueError:
            LOG.debug(f"Unparseable expiration {self.expiration}")
            return True

        now = now or datetime.datetime.now(datetime.timezone.utc)
        LOG.debug(f"Session Expiration: {expiration}  // Now: {now}")
        return expiration - now < EXPIRY_MARGIN

    def to_json(self):
        """Renders the credential_process JSON document."""
        return json.dumps(
            {
                "Version": self.version,
                "AccessKeyId": self.access_key_id,
                "SecretAccessKey": self.secret_access_key,
                "SessionToken": self.session_token,
                "Expiration": self.expiration,
            },
        )

    def environment(self):
        """Returns the AWS_* environment variables, expiration excluded."""
        return {
            "AWS_ACCESS_KEY_ID": self.access_key_id,
            "AWS_SECRET_ACCESS_KEY": self.secret_access_key,
            "AWS_SESSION_TOKEN": self.session_token,
        }

    def __eq__(self, other):
        if not isinstance(other, TemporaryCredentials):
            return NotImplemented
        return all(
            getattr(self, field) == getattr(other, field)
            for field in CREDENTIAL_FIELDS
        )

    def __repr__(self):
        present = [field for field in CREDENTIAL_FIELDS if getattr(self, field)]
        return f"TemporaryCredentials(present={present}, expiration={self.expiration!r})"


class SecretStore:
    """String secrets addressed by a service name and a key."""

    def get(self, service, key):
        raise NotImplementedError

    def set(self, service, key, value):
        raise NotImplementedError

    def delete(self, service, key):
        raise NotImplementedError


class KeyringStore(SecretStore):
    """SecretStore backed by the OS keyring."""

    def get(self, service, key):
        try:
            return keyring.get_password(service, key)
        except keyring.errors.KeyringError as err:
            LOG.warning(f"Keyring unavailable, ignoring cached {key}: {err}")
            return None

    def set(self, service, key, value):
        try:
            keyring.set_password(service, key, value)
        except keyring.errors.KeyringError as err:
            raise CacheError(f"Unable to store {key} for {service}") from err

    def delete(self, service, key):
        try:
            keyring.delete_password(service, key)
        except keyring.errors.PasswordDeleteError:
            LOG.debug(f"Nothing stored for {key} at {service}")
        except keyring.errors.KeyringError as err:
            raise CacheError(f"Unable to delete {key} for {service}") from err


class CredentialCache:
    """Per-profile store of temporary AWS credentials.

    Each field lives in its own entry under the profile's service name, so
    a partially written or partially wiped entry can be told apart.
    """

    def __init__(self, store):
        self.store = store

    @staticmethod
    def service(profile):
        # Profiles sharing an IdP login still reach different AWS accounts
        return f"{SERVICE_PREFIX}::aws::{profile.identifier}::{profile.name}"

    def load(self, profile):
        """Returns the cached credentials; absent fields are None."""
        service = self.service(profile)
        LOG.debug(
            f"Trying to fetch AWS credentials for {profile.name} for ID {service}",
        )
        values = {field: self.store.get(service, field) for field in CREDENTIAL_FIELDS}

        missing = [field for field, value in values.items() if value is None]
        if missing and len(missing) < len(CREDENTIAL_FIELDS):
            LOG.debug(f"Cached credentials for {profile.name} lack {missing}")
        return TemporaryCredentials(**values)

    def write(self, creds, profile):
        """Stores all four fields, or none of them."""
        if not creds.is_valid:
            raise CacheError(f"Refusing to cache incomplete credentials {creds!r}")

        service = self.service(profile)
        LOG.debug(f"Saving AWS credentials for {profile.name}")
        written = []
        try:
            for field in CREDENTIAL_FIELDS:
                self.store.set(service, field, getattr(creds, field))
                written.append(field)
        except CacheError:
            for field in written:
                self.store.delete(service, field)
            raise

    def delete(self, profile):
        """Removes every cached field of the profile."""
        service = self.service(profile)
        LOG.debug(f"Deleting credentials for {profile.name} at {service}")
        for field in CREDENTIAL_FIELDS:
            self.store.delete(service, field)


class PasswordCache:
    """The identity provider password, kept per profile identity."""

    def __init__(self, store):
        self.store = store

    @staticmethod
    def service(profile):
        return f"{SERVICE_PREFIX}::{profile.provider.value}::{profile.identifier}"

    def get(self, profile, force=False):
        """Returns the cached password, prompting when missing or forced."""
        password = None
        if force:
            LOG.debug("Force new is set, prompting for password")
        else:
            LOG.debug(f"Trying to load credentials from ID {self.service(profile)}")
            password = self.store.get(self.service(profile), profile.username)

        if password is None:
            password = prompt.user_password(
                f"Password for {profile.username} at {profile.host}: ",
            )
        return password

    def save(self, profile, password):
        """Remembers the password; a store that refuses only costs a prompt next time."""
        LOG.debug(f"Saving {profile.provider.value} credentials for {profile.host}")
        try:
            self.store.set(self.service(profile), profile.username, password)
        except CacheError as err:
            LOG.warning(f"Unable to cache the password for {profile.username}: {err}")

    def delete(self, profile):
        LOG.debug(f"Deleting {profile.provider.value} credentials for {profile.host}")
        self.store.delete(self.service(profile), profile.username)
