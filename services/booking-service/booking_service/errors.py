from fastapi import status


class BookingError(Exception):
    """
    Base for every error surfaced to a caller.

    `code` and `message` are what the caller sees; `detail` is internal and
    only ever logged.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "internal_error"
    message = "エラーが発生しました"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.code)
        self.detail = detail

    def to_response(self) -> dict:
        return {"success": False, "error": self.code, "message": self.message}


class Unauthenticated(BookingError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthenticated"
    message = "ログインが必要です"


class InvalidInput(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_input"
    message = "入力内容が正しくありません"


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    message = "見つかりませんでした"


class BookingNotFound(NotFound):
    code = "booking_not_found"
    message = "予約が存在しません"


class PaymentNotFound(NotFound):
    code = "payment_not_found"
    message = "決済情報が見つかりません"


# Terminal "Rejected": the request itself is wrong; retrying will not help.

class ConfirmationRejected(BookingError):
    status_code = status.HTTP_409_CONFLICT


class Forbidden(ConfirmationRejected):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    message = "不正なアクセス"


class PaymentIncomplete(ConfirmationRejected):
    code = "payment_incomplete"
    message = "まだ支払いが完了していません"


class PaymentMismatch(ConfirmationRejected):
    code = "payment_mismatch"
    message = "決済情報が予約と一致しません"


# Terminal "Failed": something outside the request broke; the caller may retry.

class ConfirmationFailed(BookingError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class GatewayUnavailable(ConfirmationFailed):
    code = "gateway_unavailable"
    message = "支払い確認失敗"


class GatewayNotConfigured(GatewayUnavailable):
    code = "gateway_not_configured"
    message = "決済設定が未完了です"


class ConcurrentUpdateExhausted(ConfirmationFailed):
    code = "concurrent_update_exhausted"
    message = "混み合っています。しばらくしてからもう一度お試しください"


class StorageError(ConfirmationFailed):
    code = "storage_error"
    message = "予約の保存に失敗しました"
