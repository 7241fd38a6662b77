from typing import Optional


class PayError(Exception):
    """支付相关错误的基类"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TransportFailed(PayError):
    """HTTP 请求失败或网关返回非 200 状态码"""

    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(message)
        self.http_status = http_status


class GatewayRejected(PayError):
    """网关响应的 code 不是 200"""

    def __init__(self, message: str, code=None):
        super().__init__(message)
        self.code = code


class UnexpectedError(PayError):
    pass


class SignError(PayError):
    """回调验签失败"""
    pass


class TimestampMissing(SignError):
    pass


class TimestampExpired(SignError):
    pass


class SignatureInvalid(SignError):
    pass
