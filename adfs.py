"""
ADFS adapter. ADFS has no login API, so the sign-on pages are scraped:
the login form is filled in from its own inputs, and the pages that come
back are told apart by what they carry.
"""
import enum
import logging
import re
import time
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

import prompt
from aws_saml import SamlAssertion, SamlNotFound
from metadata import __version__
from providers import LoginFailed, MfaFailed, Provider, TransportError

LOG = logging.getLogger(__name__)

ADFS_URL_SUFFIX = "/adfs/ls/IdpInitiatedSignOn.aspx?loginToRp=urn:amazon:webservices"
USERNAME_FIELD = re.compile(r"(^email.*|^[Uu]ser.*)")
PASSWORD_FIELD = re.compile(r"(^[Pp]ass.*)")
CODE_FIELD = re.compile(r"(?i).*(code|otp).*")
BACKOFF_INTERVAL = 2
MFA_WAIT_TIMEOUT = 60
MAX_LOGIN_ATTEMPTS = 2


class LoginState(enum.Enum):
    """What an ADFS page asks of us next."""

    SUCCESS = "SUCCESS"
    MFA_PROMPT = "MFA_PROMPT"
    MFA_WAIT = "MFA_WAIT"


class AdfsSession:
    """Logged-in ADFS HTTP session and the page holding the assertion."""

    def __init__(self, http, html):
        self.http = http
        self.html = html


def login_url(profile):
    """The IdP-initiated sign-on URL for AWS, unless the profile names one."""
    if "/adfs/" in profile.url:
        return profile.url
    return f"{profile.base_url}{ADFS_URL_SUFFIX}"


def _inputs(html):
    soup = BeautifulSoup(html, "html.parser")
    return soup.find_all(re.compile("(INPUT|input)"))


def form_fields(html):
    """Every named input of the page with the value it came with."""
    fields = {}
    for tag in _inputs(html):
        name = tag.get("name")
        value = tag.get("value")
        if name and value is not None:
            fields[name] = value
    return fields


def build_login_form(username, password, html):
    """Fills the login form: user and email fields get the username,
    password fields the password, and everything else keeps its value.
    """
    fields = {}
    for tag in _inputs(html):
        name = tag.get("name")
        if not name:
            continue
        if USERNAME_FIELD.match(name):
            fields[name] = username
        elif PASSWORD_FIELD.match(name):
            fields[name] = password
        elif tag.get("value") is not None:
            fields[name] = tag.get("value")
    return fields


def form_action(html, page_url):
    """Absolute URL the page's form posts to; the page itself if it has none."""
    soup = BeautifulSoup(html, "html.parser")
    form = soup.find("form", attrs={"id": "loginForm"}) or soup.find("form")
    if form is None or not form.get("action"):
        return page_url
    return urljoin(page_url, form.get("action"))


def code_field(html):
    """Name of the visible input that takes an MFA code, if there is one."""
    for tag in _inputs(html):
        name = tag.get("name") or ""
        if tag.get("type", "").lower() == "hidden":
            continue
        if CODE_FIELD.match(name):
            return name
    return None


def get_adfs_error_from_response(html):
    """Extracts the error message ADFS shows on a failed login, if any."""
    soup = BeautifulSoup(html, "html.parser")
    error = soup.find(attrs={"id": "errorText"})
    if error is not None and error.get_text(strip=True):
        return error.get_text(strip=True)
    for div in soup.find_all("div", attrs={"class": "error"}):
        text = div.get_text(strip=True)
        if text:
            return text
    return None


def classify(html):
    """Works out the login state from a page ADFS returned.

    Pages asking for MFA carry a hidden AuthMethod field. Any page that is
    neither an MFA page nor shows an error counts as signed in, whether or
    not it holds the assertion. Raises LoginFailed with the page's error
    text otherwise.
    """
    soup = BeautifulSoup(html, "html.parser")
    if soup.find("input", attrs={"name": "SAMLResponse"}):
        return LoginState.SUCCESS

    # The login form itself carries AuthMethod too; getting it back means
    # the credentials were refused.
    if any(PASSWORD_FIELD.match(tag.get("name") or "") for tag in _inputs(html)):
        raise LoginFailed(get_adfs_error_from_response(html) or "Unknown error")

    auth_method = soup.find("input", attrs={"name": "AuthMethod", "type": "hidden"})
    if auth_method is not None:
        if code_field(html):
            return LoginState.MFA_PROMPT
        return LoginState.MFA_WAIT

    error = get_adfs_error_from_response(html)
    if error:
        raise LoginFailed(error)
    return LoginState.SUCCESS


class AdfsProvider(Provider):
    """ADFS adapter: scraped login form, then MFA by code or by approval."""

    def new_session(self, profile, force=False):
        http = requests.Session()
        http.headers.update({"User-Agent": f"saml_broker/{__version__}"})

        resp = self._get(http, login_url(profile))
        password = self.passwords.get(profile, force)
        form = build_login_form(profile.username, password, resp.text)
        LOG.debug(f"Logging into ADFS as {profile.username}")

        resp = self._post(http, form_action(resp.text, resp.url), form)
        html = self.complete_login(http, resp)

        self.passwords.save(profile, password)
        return AdfsSession(http, html)

    def complete_login(self, http, resp, sleep=BACKOFF_INTERVAL):
        """Answers MFA pages until ADFS lets us through.

        A code is asked for once; a second code page means it was rejected.
        Approval pages are re-posted until MFA_WAIT_TIMEOUT is reached.
        """
        prompted = False
        started = None

        while True:
            state = classify(resp.text)
            LOG.debug(f"ADFS login state: {state.value}")
            if state is LoginState.SUCCESS:
                return resp.text

            fields = form_fields(resp.text)
            action = form_action(resp.text, resp.url)

            if state is LoginState.MFA_PROMPT:
                if prompted:
                    raise MfaFailed("ADFS rejected the MFA code")
                prompted = True
                LOG.warning("MFA Requirement Detected - Enter your code here")
                passcode = ""
                while not passcode:
                    passcode = prompt.user_input("Enter MFA code: ")
                fields[code_field(resp.text)] = passcode
            else:
                if started is None:
                    started = time.monotonic()
                remaining = MFA_WAIT_TIMEOUT - (time.monotonic() - started)
                if remaining <= 0:
                    raise MfaFailed(f"No verification after {MFA_WAIT_TIMEOUT} seconds")
                LOG.info("Waiting for MFA approval...")
                try:
                    time.sleep(min(sleep, remaining))
                except KeyboardInterrupt:
                    LOG.info("User canceled waiting for MFA approval.")
                    raise

            resp = self._post(http, action, fields)

    @staticmethod
    def _get(http, url):
        try:
            resp = http.get(url)
            resp.raise_for_status()
        except requests.exceptions.RequestException as err:
            raise TransportError(f"Unable to load the ADFS login page {url}") from err
        return resp

    @staticmethod
    def _post(http, url, fields):
        try:
            resp = http.post(url, data=fields)
            resp.raise_for_status()
        except requests.exceptions.RequestException as err:
            raise TransportError(f"Unable to post the ADFS form to {url}") from err
        return resp

    def fetch_aws_credentials(self, profile, session):
        for attempt in range(1, MAX_LOGIN_ATTEMPTS + 1):
            LOG.debug(f"Text for SAML response: {session.html}")
            try:
                assertion = SamlAssertion.from_html(session.html)
                break
            except SamlNotFound:
                if attempt == MAX_LOGIN_ATTEMPTS:
                    raise
                LOG.warning("No SAML assertion in the response; logging in again")
                session = self.new_session(profile)

        return self.assume_role(profile, assertion)
