import logging
import os
from datetime import datetime

from sqlmodel import Session, select

from models import PayConfig

logger = logging.getLogger(__name__)

CONFIG_FIELDS = ("url", "client_id", "client_secret")


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def pay_config_from_env() -> PayConfig:
    """从环境变量（.env）读取支付配置"""
    return PayConfig(
        url=os.getenv("PAY_URL", ""),
        client_id=os.getenv("PAY_CLIENT_ID", ""),
        client_secret=os.getenv("PAY_CLIENT_SECRET", ""),
        debug=_env_flag("PAY_DEBUG"),
    )


def get_pay_config(db_sess: Session) -> PayConfig:
    """
    读取已保存的支付配置，数据库里还没有记录时用环境变量初始化一条。
    """
    config = db_sess.exec(select(PayConfig)).first()
    if config is None:
        config = pay_config_from_env()
        db_sess.add(config)
        db_sess.commit()
        db_sess.refresh(config)
        logger.info("pay config initialised from environment")
    return config


def save_pay_config(db_sess: Session, **values) -> PayConfig:
    """更新支付配置，值为 None 的字段保持原值"""
    config = get_pay_config(db_sess)
    for name in CONFIG_FIELDS:
        value = values.get(name)
        if value is not None:
            setattr(config, name, value)
    config.update_time = datetime.utcnow()
    db_sess.add(config)
    db_sess.commit()
    db_sess.refresh(config)
    logger.info("pay config saved")
    return config
