import logging
import re

import requests
from bs4 import BeautifulSoup

import okta
from aws_saml import SamlAssertion, SamlNotFound
from metadata import __version__
from providers import Provider, TransportError

LOG = logging.getLogger(__name__)

MAX_LOGIN_ATTEMPTS = 2


class OktaProvider(Provider):
    """Okta adapter: authn API login, then the AWS app's SAML form."""

    def new_session(self, profile, force=False, state_token=None):
        """Logs into Okta and returns a client carrying the session cookie.

        Args:
        profile: the Profile to log in with
        force: prompt for the password even if one is cached
        state_token: resume an existing transaction instead of sending
            the password

        Returns: okta.Okta client with a session id
        """
        client = okta.Okta(profile.base_url, totp_secret=profile.totp_secret)

        if state_token:
            request = okta.LoginRequest.from_state_token(state_token)
            password = None
        else:
            password = self.passwords.get(profile, force)
            request = okta.LoginRequest.from_credentials(profile.username, password)

        session_token = client.obtain_session_token(request)
        client.create_session(session_token)

        if password is not None:
            self.passwords.save(profile, password)
        return client

    def fetch_aws_credentials(self, profile, session):
        """Fetches the SAML assertion for the profile's app and assumes a role."""
        LOG.debug(f"Requesting temporary STS credentials for {profile.name}")

        for attempt in range(1, MAX_LOGIN_ATTEMPTS + 1):
            try:
                assertion = self.get_assertion(session, profile.url)
                break
            except okta.ReauthNeeded as err:
                if attempt == MAX_LOGIN_ATTEMPTS:
                    raise
                LOG.warning("Application-level MFA present; re-authenticating Okta")
                session = self.new_session(profile, state_token=err.state_token)
            except SamlNotFound:
                if attempt == MAX_LOGIN_ATTEMPTS:
                    raise
                LOG.warning("No SAML assertion in the response; logging in again")
                session = self.new_session(profile)

        return self.assume_role(profile, assertion)

    @staticmethod
    def get_assertion(client, url):
        """Requests Okta for the SAML assertion.

        Args:
        client: logged-in okta.Okta client
        url: the AWS application's embed link

        Returns: SamlAssertion
        """
        headers = {
            "Accept": "text/html",
            "User-Agent": f"saml_broker/{__version__}",
        }
        try:
            resp = client.session.get(url, headers=headers)
        except requests.exceptions.RequestException as err:
            raise TransportError(f"Error getting SAML response from {url}") from err

        if "second-factor" in resp.url:
            try:
                state_token = get_state_token_from_html(resp.text)
                LOG.debug("Redirected; reauthing with new token")
                raise okta.ReauthNeeded(state_token)
            except AttributeError:
                LOG.debug("Error finding state token in response")
                raise okta.ReauthNeeded() from None

        try:
            resp.raise_for_status()
        except requests.exceptions.HTTPError as err:
            if err.response.status_code == 404:
                LOG.fatal(f"Provided app URL {url} not found")
            raise TransportError(f"Error getting SAML response from {url}") from err

        try:
            return SamlAssertion.from_html(resp.text)
        except SamlNotFound:
            LOG.error(get_okta_error_from_response(resp.text))
            raise


def get_okta_error_from_response(html):
    """Extracts the error message from Okta's HTML response."""
    err = ""
    soup = BeautifulSoup(html, "html.parser")
    for err_div in soup.find_all("div", {"class": "error-content"}):
        heading = err_div.select("h1")
        if heading:
            err = heading[0].text.strip()
    if err == "":
        err = "Unknown error"
    return err


def get_state_token_from_html(html):
    """Extracts the state token from Okta's HTML response.

    Raises AttributeError when the page carries no token.
    """
    match = re.search("var stateToken = \\'(.{,50})\\'", str(html))

    token = match.group(1).replace("\\\\x2D", "-")
    token = token.replace("\\x2D", "-")
    return token
