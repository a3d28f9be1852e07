from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from app.logging_config import configure_logging
from app.routers import customers, labels, orders, unshipped_items

configure_logging()

app = FastAPI(title='Order Fulfillment Service')

app.include_router(orders.router)
app.include_router(unshipped_items.router)
app.include_router(labels.router)
app.include_router(customers.router)


@app.get('/healthz', response_class=PlainTextResponse)
def healthz() -> str:
    return 'ok\n'


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
