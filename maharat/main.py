from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request

from maharat.config import settings
from maharat.db import Base, engine
from maharat.request_context import endpoint_context
from maharat.routers import auth, dashboard, lessons, messages, progress, settings as settings_router, students
from maharat.scheduler import start_scheduler, stop_scheduler
from maharat.store import REQUIRED_INDEXES, get_store

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    indexes = get_store().indexes
    if indexes is not None:
        indexes.declare(REQUIRED_INDEXES)
        indexes.refresh()
    start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    with endpoint_context(f'{request.method} {request.url.path}'):
        response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logging.getLogger('maharat.request').info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
        )
    return response


app.include_router(auth.router)
app.include_router(lessons.router)
app.include_router(progress.router)
app.include_router(settings_router.router)
app.include_router(students.router)
app.include_router(messages.router)
app.include_router(dashboard.router)


@app.get('/')
def root():
    return {'app': settings.app_name, 'env': settings.app_env, 'status': 'ok'}


@app.get('/health')
def healthcheck():
    return {'status': 'ok'}
