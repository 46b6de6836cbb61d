import logging
import time

import pyotp
import requests

import prompt
from metadata import __version__
from okta_factors import AuthResponse, FactorResult, Status
from providers import (
    InvalidPassword,
    LoginError,
    LoginFailed,
    MfaFailed,
    TransportError,
)

LOG = logging.getLogger(__name__)

API_AUTHN_PATH = "/api/v1/authn"
API_SESSIONS_PATH = "/api/v1/sessions"
BACKOFF_INTERVAL = 2
PUSH_WAIT_TIMEOUT = 60

HEADERS = {
    "Accept": "application/json",
    "User-Agent": f"saml_broker/{__version__}",
    "Content-Type": "application/json",
}


class UnsupportedState(LoginError):
    """The transaction reached a state we cannot complete from here."""


class NoFactors(LoginError):
    """MFA is required but no factor is enrolled."""


class UnsupportedFactor(LoginError):
    """The selected factor cannot be verified by this tool."""


class ReauthNeeded(Exception):
    """Raised when the SAML Assertion is invalid and we need to reauth."""

    def __init__(self, state_token=None):
        self.state_token = state_token
        super().__init__("Re-authentication needed")


class LoginRequest:
    """Body of an authn call: either credentials or a state token."""

    def __init__(self, username=None, password=None, state_token=None):
        self.username = username
        self.password = password
        self.state_token = state_token

    @classmethod
    def from_credentials(cls, username, password):
        return cls(username=username, password=password)

    @classmethod
    def from_state_token(cls, state_token):
        return cls(state_token=state_token)

    def to_json(self):
        if self.state_token:
            return {"stateToken": self.state_token}
        return {"username": self.username, "password": self.password}


class Okta:
    """Drives an Okta authn transaction to a session.

    ``obtain_session_token`` walks the transaction states, handling MFA on
    the way, until Okta hands out a session token or the login fails.
    """

    def __init__(self, base_url, totp_secret=None, session=None):
        self.base_url = base_url.rstrip("/")
        LOG.debug(f"Base URL Set to: {self.base_url}")
        self.totp_secret = totp_secret
        self.session = session or requests.Session()
        self.session_id = None

    def _request(self, path, data=None):
        """Make Okta API calls and return the response as a dictionary.

        HTTP error statuses are raised as requests' HTTPError so callers
        can tell rejections apart; everything else is a TransportError.
        """
        if path.startswith("http"):
            url = path
        else:
            url = f"{self.base_url}{path}"

        try:
            resp = self.session.post(
                url=url,
                headers=HEADERS,
                json=data,
                allow_redirects=False,
            )
            resp.raise_for_status()
            resp_obj = resp.json()
        except requests.exceptions.HTTPError:
            raise
        except (requests.exceptions.RequestException, ValueError) as err:
            raise TransportError(f"Error calling {url}") from err

        LOG.debug(resp_obj)
        return resp_obj

    def _transaction(self, path, data):
        """POST one authn step and parse the answer."""
        resp_obj = self._request(path, data)
        try:
            return AuthResponse.from_json(resp_obj)
        except (ValueError, TypeError, KeyError) as err:
            raise TransportError(f"Unreadable authn response from {path}") from err

    def login(self, login_request):
        """POST credentials or a state token to the authn endpoint."""
        login_type = "State Token" if login_request.state_token else "Credentials"
        LOG.debug(f"Attempting to login with {login_type}")
        try:
            return self._transaction(API_AUTHN_PATH, login_request.to_json())
        except requests.exceptions.HTTPError as err:
            if err.response is not None and err.response.status_code == 401:
                raise InvalidPassword(
                    "Invalid username or password",
                    status=Status.UNAUTHENTICATED.value,
                ) from err
            raise TransportError("Error calling the authn endpoint") from err

    def verify(self, factor, body):
        """POST a verification body to the factor's verify link."""
        try:
            url = factor.verify_url
        except ValueError as err:
            raise TransportError(str(err)) from err
        try:
            return self._transaction(url, body)
        except requests.exceptions.HTTPError as err:
            status = err.response.status_code if err.response is not None else None
            if status == 403:
                raise MfaFailed("Invalid passcode detected") from err
            if status == 401:
                raise MfaFailed("Invalid passcode retries exceeded") from err
            raise TransportError(f"Error verifying {factor}") from err

    def poll(self, response, body):
        """POST to the ``next`` link of a pending verification."""
        try:
            url = response.link("next")
        except ValueError as err:
            raise TransportError("Pending verification has no next link") from err
        try:
            return self._transaction(url, body)
        except requests.exceptions.HTTPError as err:
            raise TransportError("Error polling for verification") from err

    def obtain_session_token(self, login_request):
        """Runs the authn transaction until it yields a session token."""
        response = self.login(login_request)
        factor = None

        while True:
            LOG.debug(f"Okta status: {response.status.value}")

            if response.status is Status.SUCCESS:
                if not response.session_token:
                    raise TransportError("SUCCESS response without a session token")
                LOG.info(f"Successfully authed {response.user_name}")
                return response.session_token

            if response.status is Status.MFA_REQUIRED:
                factor = self.select_factor(response.factors)
                response = self.start_challenge(factor, response)
            elif response.status is Status.MFA_CHALLENGE:
                factor = factor or response.factor
                response = self.answer_challenge(factor, response)
            elif response.status is Status.UNAUTHENTICATED:
                raise LoginFailed(
                    "Login ended unauthenticated",
                    status=response.status.value,
                )
            else:
                raise UnsupportedState(
                    f"Unsupported login state {response.status.value}",
                    status=response.status.value,
                )

    @staticmethod
    def select_factor(factors):
        """Chooses the MFA factor, asking only when there is a choice."""
        if not factors:
            raise NoFactors(
                "MFA required, and no available factors",
                status=Status.MFA_REQUIRED.value,
            )
        if len(factors) == 1:
            LOG.info("Only one factor available, using it")
            return factors[0]

        index = prompt.selector_menu(
            [str(factor) for factor in factors],
            "Please select the factor to use:",
        )
        LOG.debug(f"Factor: {factors[index]}")
        return factors[index]

    def start_challenge(self, factor, response):
        """Begins verification of the chosen factor."""
        if not factor.supported:
            raise UnsupportedFactor(
                f"The factor cannot be verified since it isn't implemented: {factor}",
                status=response.status.value,
            )
        state_token = self._state_token(response)

        if factor.challenge_first:
            LOG.warning(f"{factor} being requested...")
            challenge = self.verify(factor, factor.verification_request(state_token))
            self._check_result(challenge)
            return challenge

        result = self.verify(
            factor,
            factor.verification_request(state_token, self.passcode(factor)),
        )
        self._check_result(result)
        if result.status is not Status.SUCCESS:
            raise MfaFailed(f"{factor} verification did not succeed", result.factor_result)
        return result

    def answer_challenge(self, factor, response):
        """Completes an issued challenge: a typed code, or push polling."""
        if factor is None:
            raise TransportError("MFA_CHALLENGE response without a factor")
        if not factor.supported:
            raise UnsupportedFactor(
                f"The factor cannot be verified since it isn't implemented: {factor}",
                status=response.status.value,
            )
        self._check_result(response)
        state_token = self._state_token(response)

        if factor.polls:
            result = self.poll_for_push_result(
                response,
                factor.verification_request(state_token),
            )
        elif factor.needs_code:
            result = self.verify(
                factor,
                factor.verification_request(state_token, self.passcode(factor)),
            )
        else:
            raise UnsupportedFactor(
                f"Unable to answer a challenge for {factor}",
                status=response.status.value,
            )

        self._check_result(result)
        if result.status is not Status.SUCCESS:
            raise MfaFailed(
                (result.factor_result or FactorResult.TIMEOUT).describe(PUSH_WAIT_TIMEOUT),
                result.factor_result,
            )
        return result

    def poll_for_push_result(self, response, body, sleep=BACKOFF_INTERVAL):
        """Wait loop that keeps checking Okta for MFA status.

        Returns the last response seen; it is still WAITING when the
        PUSH_WAIT_TIMEOUT ceiling was hit.
        """
        pending = (FactorResult.WAITING, FactorResult.CHALLENGE)
        started = time.monotonic()

        try:
            while response.factor_result in pending:
                remaining = PUSH_WAIT_TIMEOUT - (time.monotonic() - started)
                if remaining <= 0:
                    LOG.warning(f"No verification after {PUSH_WAIT_TIMEOUT} seconds")
                    break
                LOG.info("Waiting for MFA success...")
                time.sleep(min(sleep, remaining))
                response = self.poll(response, body)
        except KeyboardInterrupt:
            LOG.info("User canceled waiting for MFA success.")
            raise
        return response

    def passcode(self, factor):
        """Returns a code for the factor, generated or typed in."""
        if self.totp_secret and factor.factor_type == "token:software:totp":
            LOG.info("TOTP secret found, generating the passcode")
            return pyotp.TOTP(self.totp_secret).now()

        passcode = ""
        while not passcode:
            passcode = prompt.user_input(f"MFA response for {factor}: ")
        return passcode

    def create_session(self, session_token):
        """Trades a one-time session token for a session id cookie."""
        LOG.debug("Long-lived session needed; requesting Okta session")
        try:
            resp = self._request(API_SESSIONS_PATH, {"sessionToken": session_token})
        except requests.exceptions.HTTPError as err:
            raise TransportError("Error creating an Okta session") from err
        try:
            self.session_id = resp["id"]
        except (KeyError, TypeError) as err:
            raise TransportError("Session response without an id") from err
        self.session.cookies.set("sid", self.session_id)
        return self.session_id

    @staticmethod
    def _state_token(response):
        if not response.state_token:
            raise TransportError("No state token found in response")
        return response.state_token

    @staticmethod
    def _check_result(response):
        if response.factor_result in (FactorResult.REJECTED, FactorResult.TIMEOUT):
            raise MfaFailed(
                response.factor_result.describe(PUSH_WAIT_TIMEOUT),
                response.factor_result,
            )
