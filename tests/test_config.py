"""Unit tests for provisioning/config.py and the policy snapshot built from it."""

import pytest

from provisioning.config import Settings
from provisioning.services.policy import InstancePolicy


def test_signup_complete_url() -> None:
    s = Settings(base_url="https://social.example/")
    assert s.signup_complete_url == "https://social.example/signup-complete"


def test_is_test() -> None:
    assert Settings(env="test").is_test is True
    assert Settings(env="production").is_test is False


def test_default_pending_window() -> None:
    assert Settings().pending_registration_ttl_minutes == 30


def test_default_settings_safe() -> None:
    s = Settings()
    assert s.env != "production"
    assert s.email_backend == "log"
    assert s.enable_verifymail_api is False
    assert s.enable_truemail_api is False


def test_policy_snapshot_copies_settings() -> None:
    s = Settings(
        email_required_for_signup=True,
        disable_registration=True,
        preserved_usernames=["Admin"],
        banned_email_domains=["spam.example"],
    )
    policy = InstancePolicy.from_settings(s)
    assert policy.email_required_for_signup is True
    assert policy.disable_registration is True
    assert policy.preserved_usernames == ("Admin",)
    assert policy.banned_email_domains == ("spam.example",)


def test_policy_is_frozen() -> None:
    policy = InstancePolicy.from_settings(Settings())
    with pytest.raises(Exception):
        policy.disable_registration = True  # type: ignore[misc]


def test_preserved_usernames_are_case_insensitive() -> None:
    policy = InstancePolicy(preserved_usernames=("admin",))
    assert policy.is_preserved("ADMIN")
    assert policy.is_preserved("Admin")
    assert not policy.is_preserved("administrator")
