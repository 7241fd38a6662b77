from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime

class PayConfig(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    url: str = Field(default="")              # 支付网关地址，如 https://pay.example.com/api
    client_id: str = Field(default="")        # 商户ID（merchant_id）
    client_secret: str = Field(default="")    # 签名密钥
    debug: bool = Field(default=False)        # 调试模式下记录签名字符串
    update_time: datetime = Field(default_factory=datetime.utcnow)
