import argparse
import hashlib
import logging
import os
from urllib.parse import urlparse

import yaml

from metadata import __version__
from providers import ProviderType

LOG = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/.config/saml_broker.yml"


class ConfigError(ValueError):
    """The configuration file or the arguments are unusable."""


class Profile:
    """A named identity provider login that yields one set of AWS credentials."""

    def __init__(
            self,
            name,
            provider,
            username,
            url,
            role=None,
            duration=None,
            totp_secret=None):
        self.name = name
        try:
            self.provider = ProviderType.from_str(provider)
        except ValueError as err:
            raise ConfigError(f"Profile {name}: {err}") from err
        self.username = username
        self.url = url
        self.role = role
        try:
            self.duration = int(duration) if duration else None
        except ValueError as err:
            raise ConfigError(f"Profile {name}: duration must be a number of seconds") from err
        self.totp_secret = totp_secret

        for key in ("name", "username", "url"):
            if not getattr(self, key):
                raise ConfigError(f"Profile is missing the {key} setting")

        parsed = urlparse(self.url)
        if not parsed.scheme or not parsed.hostname:
            raise ConfigError(f"Cannot parse profile URL: {self.url}")

    @property
    def base_url(self):
        """Scheme and host of the login URL."""
        parsed = urlparse(self.url)
        return f"{parsed.scheme}://{parsed.hostname}"

    @property
    def host(self):
        return urlparse(self.url).hostname

    @property
    def identifier(self):
        """Stable hashed identity used to key cached secrets."""
        identity = f"{self.provider.value}-{self.base_url}-{self.username}"
        return hashlib.sha256(identity.encode()).hexdigest()

    @classmethod
    def from_dict(cls, name, data):
        """Builds a profile from its section of the YAML file."""
        if not isinstance(data, dict):
            raise ConfigError(f"Profile {name} must be a mapping")
        return cls(
            name=name,
            provider=data.get("provider"),
            username=data.get("username"),
            url=data.get("url"),
            role=data.get("role"),
            duration=data.get("duration"),
            totp_secret=data.get("totp_secret"),
        )

    def to_dict(self):
        """Returns the YAML representation, leaving out unset values."""
        data = {
            "provider": self.provider.value,
            "username": self.username,
            "url": self.url,
            "role": self.role,
            "duration": self.duration,
            "totp_secret": self.totp_secret,
        }
        return {k: v for k, v in data.items() if v is not None}

    def __repr__(self):
        return f"Profile(name={self.name!r}, provider={self.provider.value!r})"


class Config:
    """Handles the command line and the YAML profile file."""

    def __init__(self, argv):
        self.argv = argv
        self.config = DEFAULT_CONFIG_PATH
        self.action = None
        self.profile = None
        self.force = False
        self.debug = False
        self.print = False
        self.command = []
        self.profile_action = None
        self.provider = None
        self.username = None
        self.url = None
        self.role = None
        self.duration = None
        self.totp_secret = None
        self.profiles = {}

    def get_config(self):
        """Parses the arguments, then loads the profile file."""
        self.parse_args()
        self.profiles = self.read_profiles()

    def parse_args(self):
        """Parses command-line arguments and stores the values in the Config object."""
        arg_parser = argparse.ArgumentParser(
            prog=os.path.basename(self.argv[0]),
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog=self.usage_epilog(),
            description=f"SAML Broker v{__version__}",
        )
        self.optional_args(arg_parser)

        actions = arg_parser.add_subparsers(dest="action", metavar="ACTION")
        actions.required = True

        creds = actions.add_parser("creds", help="Fetch AWS credentials")
        creds.add_argument("-p", "--profile", required=True, help="Profile name")
        creds.add_argument(
            "--print",
            action="store_true",
            default=False,
            help="Print the credentials as credential_process JSON",
        )

        run = actions.add_parser("exec", help="Run a command with AWS credentials")
        run.add_argument("-p", "--profile", required=True, help="Profile name")
        run.add_argument("command", nargs=argparse.REMAINDER, help="Command to run")

        profiles = actions.add_parser("profiles", help="Add, list or delete profiles")
        profile_actions = profiles.add_subparsers(dest="profile_action", metavar="ACTION")
        profile_actions.required = True

        add = profile_actions.add_parser("add", help="Add a profile")
        add.add_argument("profile", help="The name of the profile")
        add.add_argument(
            "--provider",
            required=True,
            choices=[p.value for p in ProviderType],
            help="The identity provider type",
        )
        add.add_argument(
            "-u",
            "--username",
            required=True,
            help="The username to use for logging into your IdP",
        )
        add.add_argument(
            "--url",
            required=True,
            help="The URL used to log into AWS from your IdP",
        )
        add.add_argument(
            "-r",
            "--role",
            help="The AWS role ARN to assume after a successful login",
        )
        add.add_argument(
            "-d",
            "--duration",
            type=int,
            help="Requested session duration in seconds",
        )
        add.add_argument(
            "--totp-secret",
            help="Base32 TOTP secret, to generate Okta TOTP codes instead of prompting",
        )

        profile_actions.add_parser("list", help="List all profiles")

        delete = profile_actions.add_parser("delete", help="Delete a profile")
        delete.add_argument("profile", help="The name of the profile")

        config = arg_parser.parse_args(args=self.argv[1:])
        config_dict = vars(config)

        for key in config_dict:
            setattr(self, key, config_dict[key])

        if self.command and self.command[0] == "--":
            self.command = self.command[1:]
        if self.action == "exec" and not self.command:
            raise ConfigError("exec needs a command to run")

    @staticmethod
    def optional_args(arg_parser):
        """Adds the global command-line arguments to the argument parser."""
        arg_parser.add_argument(
            "-c",
            "--config",
            type=str,
            help="Config file path",
            default=DEFAULT_CONFIG_PATH,
        )
        arg_parser.add_argument(
            "-f",
            "--force",
            action="store_true",
            help="Forces re-entering of your IdP credentials",
            default=False,
        )
        arg_parser.add_argument(
            "-D",
            "--debug",
            action="store_true",
            help=(
                "Enable DEBUG logging - note, this is "
                "extremely verbose and exposes "
                "credentials on the screen so be "
                "careful here!"
            ),
            default=False,
        )
        arg_parser.add_argument(
            "-V",
            "--version",
            action="version",
            version=__version__,
        )

    @staticmethod
    def usage_epilog():
        """Returns the epilog text for the argument parser."""
        epilog = (
            "** Configuration File **\n"
            "Profiles are stored in '~/.config/saml_broker.yml'. Use 'profiles add' "
            "to create one, for instance:\n"
            "\n"
            "\tsaml-broker profiles add work --provider okta -u bob "
            "--url https://example.okta.com/home/amazon_aws/0oa1okvmwx7JTBo5r1d8/123\n"
            "\n"
            "Adding a profile also registers it as a credential_process in ~/.aws/config.\n"
        )
        return epilog

    def read_yaml(self):
        """Reads the configuration from a YAML file."""
        config = {}
        try:
            with open(os.path.expanduser(self.config)) as file:
                config = yaml.safe_load(file) or {}
            LOG.debug(f"YAML loaded config: {config}")
        except FileNotFoundError:
            LOG.debug(f"No config file at {self.config}")
        except yaml.YAMLError as err:
            raise ConfigError(
                f"Error parsing config file; invalid YAML. Error: {err}",
            ) from err
        if not isinstance(config, dict):
            raise ConfigError("Config file must hold a mapping")
        return config

    def read_profiles(self):
        """Returns the profiles from the YAML file keyed by name."""
        sections = self.read_yaml().get("profiles") or {}
        return {
            name: Profile.from_dict(name, data)
            for name, data in sections.items()
        }

    def get_profile(self, name):
        """Looks up a profile by name."""
        try:
            return self.profiles[name]
        except KeyError:
            raise ConfigError(f"Profile {name} not found in {self.config}") from None

    def add_profile(self, profile):
        """Adds or replaces a profile and writes the file."""
        self.profiles[profile.name] = profile
        self.write_config()

    def delete_profile(self, name):
        """Removes a profile and writes the file."""
        self.get_profile(name)
        del self.profiles[name]
        self.write_config()

    def write_config(self):
        """Writes the current profiles to the configuration file."""
        file_path = os.path.expanduser(self.config)
        config = self.read_yaml()
        config["profiles"] = {
            name: profile.to_dict() for name, profile in sorted(self.profiles.items())
        }

        LOG.debug(f"YAML being saved: {config}")

        file_folder = os.path.dirname(os.path.abspath(file_path))
        if not os.path.exists(file_folder):
            LOG.debug(
                f"Creating missing config file folder : {file_folder}",
            )
            os.makedirs(file_folder)

        with open(file_path, "w") as outfile:
            yaml.safe_dump(config, outfile, default_flow_style=False)
