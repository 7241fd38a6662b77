import hashlib
import hmac
import logging
from decimal import Decimal

logger = logging.getLogger(__name__)


def to_param_str(value) -> str:
    """
    把参数值转成对端网关拼接签名时使用的字符串形式。
    True -> "1"，False -> ""，浮点数和 Decimal 用普通小数表示并去掉末尾的 0。
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else ""
    if isinstance(value, float):
        value = Decimal(repr(value))
    if isinstance(value, Decimal):
        text = format(value, "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text
    return str(value)


def canonical_string(params: dict, key: str) -> str:
    """
    生成待签名字符串。
    1. 过滤掉 sign 以及值为空的参数。
    2. 按照参数名 ASCII 升序排序。
    3. 拼接成 "a=b&c=d&..." 形式（值不做 URL 编码）。
    4. 末尾拼接上 "&key=密钥"。
    """
    filtered_params = {}
    for k, v in params.items():
        if k == "sign":
            continue
        value = to_param_str(v)
        if value == "":
            continue
        filtered_params[str(k)] = value

    sorted_keys = sorted(filtered_params.keys(), key=lambda k: k.encode("utf-8"))
    sign_str = "&".join(f"{k}={filtered_params[k]}" for k in sorted_keys)
    return f"{sign_str}&key={key}"


def get_sign(params: dict, key: str, debug: bool = False) -> str:
    """
    计算签名：对待签名字符串做 MD5，再把结果转成大写。
    """
    sign_str_with_key = canonical_string(params, key)

    if debug:
        logger.info("sign string: %s", sign_str_with_key)

    md5_obj = hashlib.md5(sign_str_with_key.encode("utf-8"))
    return md5_obj.hexdigest().upper()


def sign(params: dict, key: str, debug: bool = False) -> dict:
    """
    返回附带 sign 字段的参数副本，原字典不会被修改。
    已有的 sign 字段不参与签名，会被新值覆盖。
    """
    if debug:
        logger.info("sign params: %s", params)

    signed = dict(params)
    signed["sign"] = get_sign(params, key, debug=debug)
    return signed


def check_sign(params: dict, key: str, debug: bool = False) -> bool:
    """
    校验参数中的 sign 字段，签名缺失或格式不对时返回 False，不抛异常。
    """
    try:
        received = params.get("sign")
        if not isinstance(received, str):
            return False
        received = received.strip()
        rest = {k: v for k, v in params.items() if k != "sign"}
        expected = get_sign(rest, key, debug=debug)
        return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))
    except (AttributeError, TypeError, ValueError, ArithmeticError) as e:
        # UnicodeEncodeError 也是 ValueError
        logger.warning("malformed sign params: %s", e)
        return False
