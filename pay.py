import hashlib
import json
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

import requests

import sign_utils
from cache import Cache, MemoryCache
from exceptions import (
    GatewayRejected,
    PayError,
    SignatureInvalid,
    TimestampExpired,
    TimestampMissing,
    TransportFailed,
    UnexpectedError,
)
from models import PayConfig

logger = logging.getLogger(__name__)

PAYMENT_METHOD_UNSPECIFIED = 0
PAYMENT_METHOD_ALIPAY = 2        # 支付宝扫码（当面付）
PAYMENT_METHOD_WECHAT_APP = 3    # 微信APP（赞赏码）
PAYMENT_METHOD_ALIPAY_APP = 4    # 支付宝APP（收款码）

ORDER_CACHE_TTL = 300
TIME_WINDOW = 300


def order_fingerprint(order_data: dict) -> str:
    """订单业务字段（不含时间戳和签名）的稳定哈希，用作缓存键"""
    payload = json.dumps(order_data, separators=(",", ":"), ensure_ascii=False, sort_keys=True)
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def _format_price(original_price) -> str:
    try:
        price = Decimal(repr(original_price)) if isinstance(original_price, float) else Decimal(str(original_price))
    except InvalidOperation:
        raise PayError(f"Invalid original_price: {original_price!r}")
    if not price.is_finite() or price <= 0:
        raise PayError("original_price must be greater than 0")
    return sign_utils.to_param_str(price)


def _response_code(body: dict) -> Optional[int]:
    # code 可能是整数也可能是数字字符串
    try:
        return int(body.get("code"))
    except (TypeError, ValueError):
        return None


class Pay:
    """
    支付网关客户端：创建订单、查询订单状态、校验回调签名。

    配置在构造时读取一次，之后修改配置只影响新建的客户端。
    """

    def __init__(
        self,
        config: PayConfig,
        cache: Optional[Cache] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
        timeout: float = 10,
    ):
        self.url = config.url.rstrip("/")
        self.client_id = config.client_id
        self.client_secret = config.client_secret
        self.debug = config.debug
        self.cache = cache if cache is not None else MemoryCache()
        self.session = session or requests.Session()
        self.clock = clock
        self.timeout = timeout

    def create_order(
        self,
        original_price,
        product_name: str,
        payment_method: int = PAYMENT_METHOD_UNSPECIFIED,
        notify_url: str = "",
        return_url: str = "",
        extra_param=None,
    ) -> dict:
        """
        创建支付订单。

        相同的订单参数在 300 秒内重复提交时直接返回缓存中的订单，
        不会再次请求网关。

        :param original_price: 订单原价（元），必须大于 0
        :param product_name: 商品名称，显示在支付页面上
        :param payment_method: 支付方式，见 PAYMENT_METHOD_* 常量，默认 0 表示不指定
        :param notify_url: 异步通知地址
        :param return_url: 支付完成后跳转的地址
        :param extra_param: 附加业务参数（dict 会被编码成 JSON），回调时原样返回
        :return: 网关响应中的 data，包含订单号、支付链接等
        """
        if extra_param is None:
            extra_param = {}
        try:
            if not isinstance(extra_param, str):
                extra_param = json.dumps(extra_param, ensure_ascii=False)
            payment_method = int(payment_method)
        except (TypeError, ValueError) as e:
            raise UnexpectedError(f"Invalid order parameters: {e}") from e

        order_data = {
            "original_price": _format_price(original_price),
            "merchant_id": self.client_id,
            "product_name": product_name,
            "payment_method": payment_method,
            "notify_url": notify_url,
            "return_url": return_url,
            "extra_param": extra_param,
        }

        cache_key = "order_" + order_fingerprint(order_data)
        order = self.cache.get(cache_key)
        if order:
            logger.debug("order cache hit: %s", cache_key)
            return order

        order = self._post("/create", order_data)
        self.cache.set(cache_key, order, ORDER_CACHE_TTL)
        return order

    def state(self, order_id: str) -> dict:
        """查询订单状态，结果随时间变化，不做缓存"""
        order_data = {
            "merchant_id": self.client_id,
            "order_id": order_id,
        }
        return self._post("/state", order_data)

    def check_sign(self, data: dict) -> bool:
        """
        校验回调参数：先检查时间戳是否在 5 分钟窗口内，再校验签名。
        校验失败时抛出 SignError 的子类。
        """
        try:
            t = int(data.get("t") or 0)
        except (TypeError, ValueError):
            t = 0

        if t <= 0:
            raise TimestampMissing("Timestamp is missing")

        if abs(int(self.clock()) - t) > TIME_WINDOW:
            raise TimestampExpired("Request expired, please check the system time")

        if not sign_utils.check_sign(data, self.client_secret, debug=self.debug):
            raise SignatureInvalid("Signature verification failed")
        return True

    def _post(self, path: str, order_data: dict) -> dict:
        params = {k: sign_utils.to_param_str(v) for k, v in order_data.items()}
        params["t"] = str(int(self.clock()))
        signed_data = sign_utils.sign(params, self.client_secret, debug=self.debug)

        try:
            logger.info("POST %s%s", self.url, path)
            try:
                response = self.session.post(self.url + path, data=signed_data, timeout=self.timeout)
            except requests.RequestException as e:
                raise TransportFailed(f"Request to {path} failed: {e}") from e

            if response.status_code != 200:
                raise TransportFailed(
                    f"Request to {path} failed: HTTP {response.status_code}",
                    http_status=response.status_code,
                )

            response_data = response.json()
            if not isinstance(response_data, dict):
                raise UnexpectedError(f"Unexpected response from {path}: {response_data!r}")

            if _response_code(response_data) != 200:
                raise GatewayRejected(
                    str(response_data.get("msg") or "Gateway rejected the request"),
                    code=response_data.get("code"),
                )
            return response_data.get("data")
        except PayError as e:
            logger.warning("%s failed: %s", path, e.message)
            raise
        except Exception as e:
            logger.warning("%s failed: %s", path, e)
            raise UnexpectedError(f"Error while calling {path}: {e}") from e
