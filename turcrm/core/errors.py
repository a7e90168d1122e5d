"""Typed outcomes of the trust core.

Services raise these; the HTTP layer turns them into status codes in
``turcrm.core.http_hardening.install_error_handlers``.
"""

from __future__ import annotations


class TrustError(Exception):
    status_code = 400
    code = "error"
    default_detail = "Запрос не может быть выполнен"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFound(TrustError):
    status_code = 404
    code = "not_found"
    default_detail = "Объект не найден"


class InvalidInput(TrustError):
    status_code = 400
    code = "invalid_input"
    default_detail = "Некорректные данные запроса"


class Conflict(TrustError):
    status_code = 409
    code = "conflict"
    default_detail = "Конфликт данных"


class RateLimited(TrustError):
    status_code = 429
    code = "rate_limited"
    default_detail = "Слишком много запросов"

    def __init__(self, detail: str | None = None, *, retry_after_seconds: int = 0):
        super().__init__(detail)
        self.retry_after_seconds = max(int(retry_after_seconds), 0)


# --- login ---

class AuthError(TrustError):
    status_code = 401
    code = "auth_error"


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    default_detail = "Неверный email или пароль"


class NotVerified(AuthError):
    status_code = 403
    code = "not_verified"
    default_detail = "Телефон не подтвержден. Используйте /register/confirm или /register/resend"


# --- refresh / access tokens ---

class TokenError(TrustError):
    status_code = 401
    code = "token_error"


class TokenExpired(TokenError):
    code = "token_expired"
    default_detail = "Срок действия токена истек"


class TokenInvalid(TokenError):
    code = "token_invalid"
    default_detail = "Некорректный токен"


class TokenRevoked(TokenError):
    code = "token_revoked"
    default_detail = "Токен отозван"


# --- one-time codes ---

class OtpError(TrustError):
    status_code = 400
    code = "otp_error"


class CodeInvalid(OtpError):
    code = "code_invalid"
    default_detail = "Неверный код подтверждения"


class CodeExpired(OtpError):
    code = "code_expired"
    default_detail = "Срок действия кода истек, запросите новый"


class TooManyAttempts(OtpError):
    status_code = 429
    code = "too_many_attempts"
    default_detail = "Превышено количество попыток, запросите новый код"


class ResendThrottled(OtpError):
    status_code = 429
    code = "resend_throttled"
    default_detail = "Слишком много отправок кода, повторите позже"


# --- document lifecycle ---

class TransitionError(TrustError):
    code = "transition_error"


class Forbidden(TransitionError):
    status_code = 403
    code = "forbidden"
    default_detail = "Недостаточно прав"


class InvalidState(TransitionError):
    status_code = 409
    code = "invalid_state"
    default_detail = "Недопустимый статус документа для этого действия"
