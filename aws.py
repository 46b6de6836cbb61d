"""
AWS side of the broker: exchanging a SAML assertion for temporary
credentials, and registering profiles in the AWS config file.
"""
import configparser
import logging
import os

import boto3
import botocore.exceptions
from botocore import UNSIGNED
from botocore.config import Config

from credentials import TemporaryCredentials

LOG = logging.getLogger(__name__)


class ExchangeError(Exception):
    """STS could not be reached or refused the assertion."""


class NoCredentials(Exception):
    """STS answered without a Credentials block."""


class StsExchange:
    """Trades a SAML assertion for temporary credentials with STS.

    AssumeRoleWithSAML is authenticated by the assertion itself, so the
    client sends unsigned requests and needs no local AWS credentials.
    """

    def __init__(self, region=None, client=None):
        boto_logger = logging.getLogger("botocore")
        boto_logger.setLevel(logging.WARNING)

        if client is None:
            client = boto3.client(
                "sts",
                region_name=region or "us-east-1",
                config=Config(signature_version=UNSIGNED),
            )
        self.sts = client

    def assume(self, role, raw_assertion, duration=None):
        """Assumes the role with the untouched base64 assertion."""
        request = {
            "PrincipalArn": role.provider_arn,
            "RoleArn": role.role_arn,
            "SAMLAssertion": raw_assertion,
        }
        if duration:
            request["DurationSeconds"] = duration

        LOG.debug(f"Assuming role: {role.role_arn} via {role.provider_arn}")
        try:
            response = self.sts.assume_role_with_saml(**request)
        except (
                botocore.exceptions.ClientError,
                botocore.exceptions.BotoCoreError,
        ) as err:
            raise ExchangeError(f"Error assuming role {role.role_arn}") from err

        if not response.get("Credentials"):
            raise NoCredentials(
                f"Error fetching credentials from assumed AWS role {role.role_arn}",
            )

        creds = TemporaryCredentials.from_sts(response["Credentials"])
        LOG.info(
            "Session expires at {time} ⏳".format(
                time=creds.expiration,
            ),
        )
        return creds


class AwsConfig:
    """Handles the Amazon ~/.aws/config file.

    Profiles registered here point the AWS SDKs at this tool through the
    credential_process setting.
    """

    def __init__(self, filename=None):
        self.filename = os.path.expanduser(
            filename or os.environ.get("AWS_CONFIG_FILE", "~/.aws/config"),
        )

    def _read(self):
        config = configparser.ConfigParser(interpolation=None)
        try:
            with open(self.filename) as configfile:
                config.read_file(configfile)
        except OSError:
            LOG.debug(f"Unable to open {self.filename}")
        return config

    def _write(self, config):
        cred_dir = os.path.dirname(self.filename)
        if cred_dir and not os.path.exists(cred_dir):
            LOG.info(
                "Creating missing AWS config dir {dir} 📁".format(
                    dir=cred_dir,
                ),
            )
            os.makedirs(cred_dir)

        with open(self.filename, "w+") as configfile:
            os.chmod(self.filename, 0o600)
            config.write(configfile)

    def add_profile(self, name):
        """Writes a credential_process profile section to disk."""
        section = f"profile {name}"
        config = self._read()
        if not config.has_section(section):
            config.add_section(section)
        config.set(
            section,
            "credential_process",
            f"saml-broker creds -p {name} --print",
        )
        self._write(config)
        LOG.info(
            'Wrote profile "{name}" to {file} 💾'.format(
                name=name,
                file=self.filename,
            ),
        )

    def delete_profile(self, name):
        """Removes the profile section, if present."""
        config = self._read()
        if config.remove_section(f"profile {name}"):
            self._write(config)
            LOG.info(f'Removed profile "{name}" from {self.filename}')
