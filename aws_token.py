import logging
import os
import subprocess
from http.client import HTTPConnection

import aws
import aws_saml
import credentials
import providers
from adfs import AdfsProvider
from config import Config, ConfigError, Profile
from jumpcloud import JumpcloudProvider
from metadata import __desc__, __version__
from okta_saml import OktaProvider
from providers import ProviderType

LOG = logging.getLogger(__name__)

PROVIDERS = {
    ProviderType.OKTA: OktaProvider,
    ProviderType.JUMPCLOUD: JumpcloudProvider,
    ProviderType.ADFS: AdfsProvider,
}

# Checked in order, so subclasses come before their bases
EXIT_CODES = (
    (ConfigError, 2),
    (providers.LoginError, 1),
    (providers.MfaFailed, 1),
    (aws_saml.InvalidSaml, 1),
    (providers.TransportError, 3),
    (aws.ExchangeError, 4),
    (aws.NoCredentials, 4),
    (credentials.CacheError, 5),
    (OSError, 6),
)


def provider_for(profile, passwords, exchange):
    """Returns the adapter for the profile's identity provider."""
    try:
        provider_cls = PROVIDERS[profile.provider]
    except KeyError:
        raise ConfigError(f"No adapter for provider {profile.provider}") from None
    return provider_cls(passwords, exchange)


class AwsToken:
    """Fetches AWS credentials for a profile, from the cache or a fresh login."""

    def __init__(self, argv, store=None, exchange=None, aws_config=None):
        self.log = LOG
        self.log.debug(f"{__desc__} 🔐 v{__version__}")
        self.config = Config(argv)

        store = store or credentials.KeyringStore()
        self.cache = credentials.CredentialCache(store)
        self.passwords = credentials.PasswordCache(store)
        self._exchange = exchange
        self.aws_config = aws_config or aws.AwsConfig()

    @property
    def exchange(self):
        if self._exchange is None:
            self._exchange = aws.StsExchange()
        return self._exchange

    def main(self):
        """Runs the requested action and returns the process exit code."""
        try:
            return self.run()
        except KeyboardInterrupt:
            self.log.warning("Interrupted")
            return 130
        except Exception as err:
            for exc_cls, code in EXIT_CODES:
                if isinstance(err, exc_cls):
                    self.log_error(err)
                    return code
            raise

    def load_config(self):
        """Reads the arguments and the profile file."""
        self.config.get_config()
        if self.config.debug:
            self.log.setLevel(logging.DEBUG)
            self.debug_requests_on()

    def run(self):
        self.load_config()
        if self.config.action == "profiles":
            return self.manage_profiles()

        profile = self.config.get_profile(self.config.profile)
        creds = self.fetch_aws_credentials(profile, self.config.force)

        if self.config.action == "exec":
            return self.run_command(creds, self.config.command)

        if self.config.print:
            print(creds.to_json())
        else:
            self.log.info(f"Credentials for {profile.name} valid until {creds.expiration}")
        return 0

    def fetch_aws_credentials(self, profile, force=False):
        """Returns usable credentials for the profile.

        Cached credentials are returned while they have more than the
        expiry margin left; otherwise the profile's identity provider is
        logged into and the new credentials are cached.

        Args:
        profile: the Profile to get credentials for
        force: forget the cached credentials and password first

        Returns: TemporaryCredentials
        """
        if force:
            self.log.info(f"Forcing a new login for {profile.name}")
            self.cache.delete(profile)
            self.passwords.delete(profile)

        creds = self.cache.load(profile)
        if creds.is_valid and not creds.is_expired():
            self.log.debug(f"Using cached credentials for {profile.name}")
            return creds

        self.log.info(
            "Logging into {provider} as {user}".format(
                provider=profile.provider.value,
                user=profile.username,
            ),
        )
        provider = provider_for(profile, self.passwords, self.exchange)
        session = provider.new_session(profile, force)
        creds = provider.fetch_aws_credentials(profile, session)

        try:
            self.cache.write(creds, profile)
        except credentials.CacheError as err:
            self.log.warning(f"Unable to cache credentials: {err}")
        return creds

    def run_command(self, creds, command):
        """Runs the command through $SHELL with the credentials in its environment."""
        shell = os.environ.get("SHELL", "/bin/sh")
        env = dict(os.environ)
        env.update(creds.environment())

        self.log.debug(f"Running {command} with {shell}")
        result = subprocess.run([shell, "-c", " ".join(command)], env=env)
        return result.returncode

    def manage_profiles(self):
        action = self.config.profile_action

        if action == "list":
            for name, profile in sorted(self.config.profiles.items()):
                print(f"{name}\t{profile.provider.value}\t{profile.username}\t{profile.url}")
            return 0

        if action == "add":
            profile = Profile(
                name=self.config.profile,
                provider=self.config.provider,
                username=self.config.username,
                url=self.config.url,
                role=self.config.role,
                duration=self.config.duration,
                totp_secret=self.config.totp_secret,
            )
            self.config.add_profile(profile)
            self.aws_config.add_profile(profile.name)
            self.log.info(f"Added profile {profile.name}")
            return 0

        profile = self.config.get_profile(self.config.profile)
        self.cache.delete(profile)
        self.passwords.delete(profile)
        self.config.delete_profile(profile.name)
        self.aws_config.delete_profile(profile.name)
        self.log.info(f"Deleted profile {profile.name}")
        return 0

    def log_error(self, err):
        """Logs the error and every cause chained to it."""
        self.log.fatal(err)
        cause = err.__cause__
        while cause is not None:
            self.log.error(f"Caused by: {cause}")
            cause = cause.__cause__

    def debug_requests_on(self):
        """Switches on logging of the requests module."""
        HTTPConnection.debuglevel = 1

        logging.basicConfig()
        logging.getLogger().setLevel(logging.DEBUG)
        requests_log = logging.getLogger("requests.packages.urllib3")
        requests_log.setLevel(logging.DEBUG)
        requests_log.propagate = True
