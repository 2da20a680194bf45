"""Read-only snapshot of instance-wide signup policy."""

from pydantic import BaseModel, ConfigDict

from provisioning.config import Settings, settings


class InstancePolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    email_required_for_signup: bool = False
    disable_registration: bool = False
    preserved_usernames: tuple[str, ...] = ()
    banned_email_domains: tuple[str, ...] = ()

    enable_active_email_validation: bool = True
    enable_verifymail_api: bool = False
    verifymail_auth_key: str | None = None
    enable_truemail_api: bool = False
    truemail_instance: str | None = None
    truemail_auth_key: str | None = None

    enable_hcaptcha: bool = False
    hcaptcha_secret_key: str | None = None
    enable_recaptcha: bool = False
    recaptcha_secret_key: str | None = None
    enable_turnstile: bool = False
    turnstile_secret_key: str | None = None
    enable_mcaptcha: bool = False
    mcaptcha_secret_key: str | None = None
    mcaptcha_sitekey: str | None = None
    mcaptcha_instance_url: str | None = None

    @classmethod
    def from_settings(cls, source: Settings) -> "InstancePolicy":
        data = {name: getattr(source, name) for name in cls.model_fields}
        data["preserved_usernames"] = tuple(source.preserved_usernames)
        data["banned_email_domains"] = tuple(source.banned_email_domains)
        return cls(**data)

    def is_preserved(self, username: str) -> bool:
        lowered = username.lower()
        return any(name.lower() == lowered for name in self.preserved_usernames)


def get_instance_policy() -> InstancePolicy:
    """FastAPI dependency: a fresh snapshot per request."""
    return InstancePolicy.from_settings(settings)
