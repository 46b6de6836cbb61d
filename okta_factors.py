"""Okta authn API responses and the MFA factors embedded in them."""
import enum
import logging

LOG = logging.getLogger(__name__)


class Status(enum.Enum):
    """Transaction states of the Okta authn API."""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    PASSWORD_WARN = "PASSWORD_WARN"
    PASSWORD_EXPIRED = "PASSWORD_EXPIRED"
    RECOVERY = "RECOVERY"
    RECOVERY_CHALLENGE = "RECOVERY_CHALLENGE"
    PASSWORD_RESET = "PASSWORD_RESET"
    LOCKED_OUT = "LOCKED_OUT"
    MFA_ENROLL = "MFA_ENROLL"
    MFA_ENROLL_ACTIVATE = "MFA_ENROLL_ACTIVATE"
    MFA_REQUIRED = "MFA_REQUIRED"
    MFA_CHALLENGE = "MFA_CHALLENGE"
    SUCCESS = "SUCCESS"


class FactorResult(enum.Enum):
    """Outcome of a factor verification."""

    CHALLENGE = "CHALLENGE"
    SUCCESS = "SUCCESS"
    TIMEOUT = "TIMEOUT"
    WAITING = "WAITING"
    REJECTED = "REJECTED"

    def describe(self, timeout):
        if self in (FactorResult.WAITING, FactorResult.TIMEOUT):
            return f"No verification after {timeout} seconds"
        if self is FactorResult.REJECTED:
            return "Verification challenge was rejected"
        if self is FactorResult.SUCCESS:
            return "Verification challenge was successful"
        return "Waiting for confirmation"


class Link:
    """A hypermedia link from a ``_links`` block."""

    def __init__(self, href, name=None):
        self.href = href
        self.name = name

    @classmethod
    def from_json(cls, data):
        return cls(href=data["href"], name=data.get("name"))


class Links:
    """The value of one ``_links`` relation: a single link or a list of them.

    Okta sends either shape; both are kept as sent and ``href`` resolves to
    the single link or the first of the list.
    """

    def __init__(self, single=None, multi=None):
        if (single is None) == (multi is None):
            raise ValueError("Links holds exactly one of single or multi")
        self.single = single
        self.multi = multi

    @classmethod
    def from_json(cls, data):
        if isinstance(data, list):
            return cls(multi=[Link.from_json(item) for item in data])
        return cls(single=Link.from_json(data))

    @property
    def href(self):
        if self.single is not None:
            return self.single.href
        if not self.multi:
            raise ValueError("Empty link list")
        return self.multi[0].href


def links_from_json(data):
    """Parses a ``_links`` mapping into relation name -> Links."""
    return {name: Links.from_json(value) for name, value in (data or {}).items()}


class Factor:
    """An MFA factor enrolled for the user.

    Subclasses form a closed set keyed by the ``factorType`` Okta sends;
    anything we do not handle becomes an UnimplementedFactor.
    """

    factor_type = None
    # Operator must type a code
    needs_code = False
    # Verified by polling the "next" link
    polls = False
    # A first verify call without a code starts the challenge
    challenge_first = False
    supported = True

    def __init__(self, id, factor_type, provider, profile, links):
        self.id = id
        self.factor_type = factor_type
        self.provider = provider
        self.profile = profile or {}
        self.links = links

    @classmethod
    def from_json(cls, data):
        factor_type = data.get("factorType")
        factor_cls = FACTOR_TYPES.get(factor_type, UnimplementedFactor)
        return factor_cls(
            id=data.get("id"),
            factor_type=factor_type,
            provider=data.get("provider"),
            profile=data.get("profile"),
            links=links_from_json(data.get("_links")),
        )

    @property
    def verify_url(self):
        try:
            return self.links["verify"].href
        except KeyError:
            raise ValueError("Missing verification link in factor") from None

    def verification_request(self, state_token, pass_code=None):
        """Body of a verify call for this factor."""
        body = {"stateToken": state_token}
        if pass_code is not None:
            body["passCode"] = pass_code
        return body


class SmsFactor(Factor):
    factor_type = "sms"
    needs_code = True
    challenge_first = True

    def __str__(self):
        return f"Okta SMS to {self.profile.get('phoneNumber')}"


class TotpFactor(Factor):
    factor_type = "token:software:totp"
    needs_code = True

    def __str__(self):
        # Okta identifies any other TOTP provider as "Google"
        if self.provider == "GOOGLE":
            return "Software TOTP"
        return "Okta Verify TOTP"


class PushFactor(Factor):
    factor_type = "push"
    polls = True
    challenge_first = True

    def verification_request(self, state_token, pass_code=None):
        return {"stateToken": state_token}

    def __str__(self):
        return "Okta Verify Push"


class WebAuthnFactor(Factor):
    factor_type = "webauthn"
    supported = False

    def __str__(self):
        return "Okta WebAuthn"


class UnimplementedFactor(Factor):
    supported = False

    def __str__(self):
        return f"Unsupported factor {self.factor_type}"


FACTOR_TYPES = {
    factor.factor_type: factor
    for factor in (SmsFactor, TotpFactor, PushFactor, WebAuthnFactor)
}


class AuthResponse:
    """One step of an Okta authn transaction."""

    def __init__(
            self,
            status,
            state_token=None,
            session_token=None,
            factor_result=None,
            factors=None,
            factor=None,
            links=None,
            user=None):
        self.status = status
        self.state_token = state_token
        self.session_token = session_token
        self.factor_result = factor_result
        self.factors = factors or []
        self.factor = factor
        self.links = links or {}
        self.user = user or {}

    @classmethod
    def from_json(cls, data):
        """Builds a response from the decoded JSON body.

        Raises ValueError for bodies that are not authn transactions.
        """
        if not isinstance(data, dict) or "status" not in data:
            raise ValueError(f"Not an authn response: {data}")

        embedded = data.get("_embedded") or {}
        factor_result = data.get("factorResult")
        factor = embedded.get("factor")
        return cls(
            status=Status(data["status"]),
            state_token=data.get("stateToken"),
            session_token=data.get("sessionToken"),
            factor_result=FactorResult(factor_result) if factor_result else None,
            factors=[Factor.from_json(f) for f in embedded.get("factors") or []],
            factor=Factor.from_json(factor) if factor else None,
            links=links_from_json(data.get("_links")),
            user=embedded.get("user"),
        )

    def link(self, relation):
        """Resolves the href of a ``_links`` relation."""
        try:
            return self.links[relation].href
        except KeyError:
            raise ValueError(f"Response has no {relation} link") from None

    @property
    def user_name(self):
        profile = self.user.get("profile") or {}
        return "{first} {last}".format(
            first=profile.get("firstName", ""),
            last=profile.get("lastName", ""),
        ).strip()
