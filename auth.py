from dataclasses import asdict, dataclass
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


class InvalidSessionError(ValueError):
    pass


@dataclass(frozen=True)
class Identity:
    """An authenticated user as asserted by the identity provider."""

    subject: str
    email: str = ""
    name: Optional[str] = None
    company_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        if self.email:
            return self.email.split("@", 1)[0]
        return "User"


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.session_secret, salt="session-token")


def issue_session_token(identity: Identity) -> str:
    return _serializer().dumps(asdict(identity))


def load_identity(token: str, max_age_hours: Optional[int] = None) -> Identity:
    if max_age_hours is None:
        max_age_hours = get_settings().session_max_age_hours
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except SignatureExpired as exc:
        raise InvalidSessionError("Session expired") from exc
    except BadSignature as exc:
        raise InvalidSessionError("Invalid session token") from exc

    subject = data.get("subject") if isinstance(data, dict) else None
    if not subject:
        raise InvalidSessionError("Invalid session token")
    return Identity(
        subject=str(subject),
        email=data.get("email") or "",
        name=data.get("name"),
        company_name=data.get("company_name"),
    )
