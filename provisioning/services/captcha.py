"""Bot-challenge verification against hCaptcha, reCAPTCHA, Turnstile and mCaptcha.

Each verifier raises CaptchaError with a short provider-prefixed message
when the response token is missing or rejected.
"""

import logging

import httpx

from provisioning.config import settings

logger = logging.getLogger(__name__)

HCAPTCHA_VERIFY_URL = "https://hcaptcha.com/siteverify"
RECAPTCHA_VERIFY_URL = "https://www.recaptcha.net/recaptcha/api/siteverify"
TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"


class CaptchaError(Exception):
    """Challenge response missing, rejected, or unverifiable."""


async def _siteverify(provider: str, url: str, secret: str, response: str | None) -> None:
    """Shared siteverify flow for the three providers with the same wire format."""
    if not response:
        raise CaptchaError(f"{provider}-failed: no response provided")

    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        try:
            resp = await client.post(url, data={"secret": secret, "response": response})
        except httpx.HTTPError as e:
            logger.error("%s siteverify request failed: %s", provider, e)
            raise CaptchaError(f"{provider}-request-failed")

    if resp.status_code != 200:
        raise CaptchaError(f"{provider}-request-failed: {resp.status_code}")

    try:
        data = resp.json()
    except ValueError:
        logger.error("%s siteverify returned a non-JSON body", provider)
        raise CaptchaError(f"{provider}-request-failed")

    if not isinstance(data, dict):
        raise CaptchaError(f"{provider}-request-failed")
    if not data.get("success"):
        error_codes = ",".join(data.get("error-codes") or []) or "unknown"
        raise CaptchaError(f"{provider}-failed: {error_codes}")


async def verify_hcaptcha(secret: str, response: str | None) -> None:
    await _siteverify("hcaptcha", HCAPTCHA_VERIFY_URL, secret, response)


async def verify_recaptcha(secret: str, response: str | None) -> None:
    await _siteverify("recaptcha", RECAPTCHA_VERIFY_URL, secret, response)


async def verify_turnstile(secret: str, response: str | None) -> None:
    await _siteverify("turnstile", TURNSTILE_VERIFY_URL, secret, response)


async def verify_mcaptcha(
    secret: str, sitekey: str, instance_url: str, response: str | None
) -> None:
    if not response:
        raise CaptchaError("mcaptcha-failed: no response provided")

    endpoint = f"{instance_url.rstrip('/')}/api/v1/pow/siteverify"
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        try:
            resp = await client.post(
                endpoint, json={"key": sitekey, "secret": secret, "token": response}
            )
        except httpx.HTTPError as e:
            logger.error("mCaptcha siteverify request failed: %s", e)
            raise CaptchaError("mcaptcha-request-failed")

    if resp.status_code != 200:
        raise CaptchaError(f"mcaptcha-request-failed: {resp.status_code}")

    try:
        data = resp.json()
    except ValueError:
        logger.error("mCaptcha siteverify returned a non-JSON body")
        raise CaptchaError("mcaptcha-request-failed")

    if not isinstance(data, dict) or not data.get("valid"):
        raise CaptchaError("mcaptcha-failed")
