import logging
from urllib.parse import urlparse

import requests

import prompt
from aws_saml import SamlAssertion, SamlNotFound
from metadata import __version__
from providers import InvalidPassword, MfaFailed, Provider, TransportError

LOG = logging.getLogger(__name__)

AUTH_SUBMIT_URL = "https://console.jumpcloud.com/userconsole/auth"
XSRF_URL = "https://console.jumpcloud.com/userconsole/xsrf"
XSRF_HEADER = "X-Xsrftoken"
MAX_LOGIN_ATTEMPTS = 2


class JumpcloudSession:
    """Logged-in JumpCloud HTTP session and where it sends us for SAML."""

    def __init__(self, http, redirect_to):
        self.http = http
        self.redirect_to = redirect_to


def create_redirect_to(url):
    """The SSO path of the profile URL, without its leading slash."""
    return urlparse(url).path.lstrip("/")


class JumpcloudProvider(Provider):
    """JumpCloud adapter: JSON console login, OTP on demand."""

    def new_session(self, profile, force=False):
        http = requests.Session()
        http.headers.update({"User-Agent": f"saml_broker/{__version__}"})

        try:
            resp = http.get(XSRF_URL, headers={"Accept": "application/json"})
            resp.raise_for_status()
            token = resp.json()["xsrf"]
        except (requests.exceptions.RequestException, ValueError, KeyError) as err:
            raise TransportError("Unable to obtain XSRF token") from err

        password = self.passwords.get(profile, force)
        login_request = {
            "context": "sso",
            "email": profile.username,
            "password": password,
            "redirectTo": create_redirect_to(profile.url),
            "otp": "",
        }
        LOG.debug(f"Logging into JumpCloud as {profile.username}")

        resp = self._post(http, login_request, token)
        if resp.status_code == 401:
            LOG.warning("MFA Requirement Detected - Enter your code here")
            login_request["otp"] = prompt.user_input("Enter MFA code: ")
            resp = self._post(http, login_request, token)
            if resp.status_code == 401:
                raise MfaFailed("JumpCloud rejected the MFA code")
        elif resp.status_code in (400, 403):
            raise InvalidPassword(
                "Invalid username or password",
                status=str(resp.status_code),
            )

        try:
            resp.raise_for_status()
            redirect_to = resp.json()["redirectTo"]
        except (requests.exceptions.RequestException, ValueError, KeyError) as err:
            raise TransportError("Unable to login to JumpCloud") from err

        self.passwords.save(profile, password)
        return JumpcloudSession(http, redirect_to)

    @staticmethod
    def _post(http, body, token):
        try:
            return http.post(
                AUTH_SUBMIT_URL,
                json=body,
                headers={"Accept": "application/json", XSRF_HEADER: token},
            )
        except requests.exceptions.RequestException as err:
            raise TransportError("Unable to reach JumpCloud") from err

    def fetch_aws_credentials(self, profile, session):
        for attempt in range(1, MAX_LOGIN_ATTEMPTS + 1):
            try:
                resp = session.http.get(session.redirect_to)
                resp.raise_for_status()
            except requests.exceptions.RequestException as err:
                raise TransportError(
                    f"Error getting SAML response for profile {profile.name}",
                ) from err

            LOG.debug(f"Text for SAML response: {resp.text}")
            try:
                assertion = SamlAssertion.from_html(resp.text)
                break
            except SamlNotFound:
                if attempt == MAX_LOGIN_ATTEMPTS:
                    raise
                LOG.warning("No SAML assertion in the response; logging in again")
                session = self.new_session(profile)

        return self.assume_role(profile, assertion)
