import hmac
import logging
import os

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from sqlmodel import SQLModel, Session, create_engine
from dotenv import load_dotenv
import requests

from cache import MemoryCache
from config import get_pay_config, save_pay_config, CONFIG_FIELDS
from exceptions import PayError, SignError, TransportFailed, GatewayRejected
from pay import Pay

load_dotenv()

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./pay.db")


app = FastAPI()
engine = create_engine(DATABASE_URL, echo=False)

# 同一进程内共享，避免重复创建订单
order_cache = MemoryCache()
http_session = requests.Session()


@app.on_event("startup")
def on_startup():
    # 创建数据库表
    SQLModel.metadata.create_all(engine)


@app.on_event("shutdown")
def on_shutdown():
    http_session.close()


@app.exception_handler(PayError)
async def pay_error_handler(request: Request, exc: PayError):
    if isinstance(exc, SignError):
        status_code = 400
    elif isinstance(exc, (TransportFailed, GatewayRejected)):
        status_code = 502
    else:
        status_code = 500
    return JSONResponse(status_code=status_code, content={"code": status_code, "msg": exc.message})


def get_pay() -> Pay:
    with Session(engine) as db_sess:
        config = get_pay_config(db_sess)
        return Pay(config, cache=order_cache, session=http_session)


def check_admin(request: Request):
    # 未登录时当作路由不存在处理
    admin_token = os.getenv("ADMIN_TOKEN")
    token = request.headers.get("x-admin-token", "")
    if not admin_token or not hmac.compare_digest(token.encode("utf-8"), admin_token.encode("utf-8")):
        raise HTTPException(status_code=404, detail="Not Found")


@app.get("/pay/config")
def get_config(request: Request):
    check_admin(request)
    with Session(engine) as db_sess:
        config = get_pay_config(db_sess)
        data = {name: getattr(config, name) for name in CONFIG_FIELDS}
    return {"code": 200, "data": data}


def _save_config(values: dict):
    with Session(engine) as db_sess:
        save_pay_config(db_sess, **values)


@app.post("/pay/config")
async def post_config(request: Request):
    check_admin(request)
    form = await request.form()
    values = {name: form.get(name) for name in CONFIG_FIELDS}
    await run_in_threadpool(_save_config, values)
    return {"code": 200, "msg": "Payment config saved"}


@app.post("/pay/create")
async def create_order(request: Request):
    form = await request.form()

    original_price = form.get("original_price")
    product_name = form.get("product_name")
    if not all([original_price, product_name]):
        raise HTTPException(status_code=400, detail="Missing required parameters")

    try:
        payment_method = int(form.get("payment_method") or 0)
    except ValueError:
        raise HTTPException(status_code=400, detail="payment_method format error")

    # requests 是同步调用，放到线程池里执行
    pay = await run_in_threadpool(get_pay)
    order = await run_in_threadpool(
        pay.create_order,
        original_price,
        product_name,
        payment_method=payment_method,
        notify_url=form.get("notify_url", ""),
        return_url=form.get("return_url", ""),
        extra_param=form.get("extra_param") or {},
    )
    return {"code": 200, "data": order}


@app.get("/pay/state/{order_id}")
def order_state(order_id: str):
    return {"code": 200, "data": get_pay().state(order_id)}


@app.post("/pay/notify")
async def pay_notify(request: Request):
    form = await request.form()
    params = dict(form)
    pay = await run_in_threadpool(get_pay)
    pay.check_sign(params)
    logger.info("payment notify accepted: order_id=%s", params.get("order_id"))
    return {"code": 200, "msg": "success"}


@app.get("/pay/return")
def pay_return(request: Request):
    params = dict(request.query_params)
    get_pay().check_sign(params)
    return {"code": 200, "data": params}
