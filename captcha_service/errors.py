"""Exceptions raised by the captcha engine.

Verification failures are not listed here: they are ordinary
``VerificationOutcome`` values, see ``captcha_service.challenge``.
"""


class CaptchaError(Exception):
    """Base class for captcha engine errors."""


class NoAssetsAvailable(CaptchaError):
    """No background images or no puzzle shapes exist on storage."""


class ImageServeError(CaptchaError):
    """An image could not be served for a session."""


class InvalidSession(ImageServeError):
    pass


class InvalidRole(ImageServeError):
    pass


class AssetReadError(ImageServeError):
    pass


class InvalidProof(CaptchaError):
    """A verification proof was forged, expired or already redeemed."""
