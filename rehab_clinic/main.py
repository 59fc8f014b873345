import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from rehab_clinic.core import config
from rehab_clinic.core.logging import setup_logging
from rehab_clinic.database import ensure_schema
from rehab_clinic.routes import appointment_routes, auth_routes, patient_routes, service_routes, staff_routes

app = FastAPI(title=config.APP_NAME, version=config.APP_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    setup_logging()
    config.validate_runtime_config()
    try:
        ensure_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': f'{config.APP_NAME} Running', 'version': config.APP_VERSION}


@app.get('/health')
def health():
    return {'status': 'ok', 'environment': config.APP_ENV}


app.include_router(auth_routes.router, prefix='/api/auth')
app.include_router(patient_routes.router, prefix='/api/patients')
app.include_router(staff_routes.router, prefix='/api/staff')
app.include_router(service_routes.router, prefix='/api/services')
app.include_router(appointment_routes.router, prefix='/api/appointments')
