class AuthError(Exception):
    """Base exception for authentication failures that are reported to the client."""

    code: str = "AUTH_ERROR"
    status_code: int = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


class InvalidCredentials(AuthError):
    """Unknown email, wrong password, inactive or unverified account."""

    code = "LOGIN_BAD_CREDENTIALS"


class InvalidOrExpiredToken(AuthError):
    """Email verification or password reset token is unknown, used or expired."""

    code = "TOKEN_INVALID_OR_EXPIRED"


class InvalidCode(AuthError):
    """Neither the TOTP nor any backup code matched."""

    code = "INVALID_CODE"


class NoPendingLogin(AuthError):
    """The pending login is missing, expired or was already consumed."""

    code = "NO_PENDING_LOGIN"


class NoPendingChallenge(AuthError):
    """The WebAuthn challenge is missing, expired, consumed or of the wrong purpose."""

    code = "NO_PENDING_CHALLENGE"


class UnknownCredential(AuthError):
    code = "WEBAUTHN_UNKNOWN_CREDENTIAL"


class WrongUser(AuthError):
    """The asserted credential belongs to another account."""

    code = "WEBAUTHN_WRONG_USER"


class AssertionFailed(AuthError):
    code = "WEBAUTHN_ASSERTION_FAILED"


class RegistrationFailed(AuthError):
    code = "WEBAUTHN_REGISTRATION_FAILED"


class PasswordCompromised(AuthError):
    """The password appears in a known breach corpus."""

    code = "PASSWORD_COMPROMISED"


class SecondFactorNotEnabled(AuthError):
    code = "SECOND_FACTOR_NOT_ENABLED"


class TotpAlreadyEnabled(AuthError):
    code = "TOTP_ALREADY_ENABLED"


class CredentialNotFound(AuthError):
    code = "NOT_FOUND"
    status_code = 404


class BreachCheckUnavailable(Exception):
    """The breach lookup service could not be reached. Never surfaced to clients."""

    pass
