"""
Clinic Core API

This module exposes the clinic service façade over HTTP with FastAPI. Handlers
only translate request schemas into façade calls and results into responses;
all scheduling and inventory rules live behind ``ClinicService``.

The service exposes:
- Appointment booking, rescheduling and status changes
- Inventory items and their stock ledger
- Minimal patient and service registration needed for scheduling
- Health endpoint: Provides service health status for monitoring and orchestration
"""
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from . import config, schemas
from .cache import Cache
from .database import Database
from .errors import ErrorKind, InfrastructureError
from .models import Category
from .result import Result
from .service import ClinicService
from .timeutils import Clock, system_clock

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.SCHEDULING_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INSUFFICIENT_STOCK: status.HTTP_409_CONFLICT,
    ErrorKind.HAS_HISTORY: status.HTTP_409_CONFLICT,
}


def unwrap(result: Result):
    """
    Return a successful result's data or raise the matching HTTP error.

    Raises:
        HTTPException: detail carries the error kind, message and field
    """
    if result.ok:
        return result.data
    raise HTTPException(
        status_code=STATUS_BY_KIND.get(result.kind, status.HTTP_400_BAD_REQUEST),
        detail={"error": result.kind.value, "message": result.message, "field": result.field},
    )


def stock_response(result: Result) -> schemas.StockResult:
    item = unwrap(result)
    return schemas.StockResult(item=item, message=result.message)


def get_service(request: Request) -> ClinicService:
    """Dependency returning the application's service façade."""
    return request.app.state.service


appointments_router = APIRouter(prefix="/appointments", tags=["appointments"])
inventory_router = APIRouter(prefix="/inventory", tags=["inventory"])
registry_router = APIRouter(tags=["registry"])


# ------------------------------------------------------------- registry

@registry_router.post("/patients", response_model=schemas.Patient, status_code=status.HTTP_201_CREATED)
def create_patient(payload: schemas.PatientCreate, service: ClinicService = Depends(get_service)):
    return unwrap(service.create_patient(payload.name, payload.phone, payload.email))


@registry_router.get("/patients/{patient_id}", response_model=schemas.Patient)
def read_patient(patient_id: int, service: ClinicService = Depends(get_service)):
    return unwrap(service.get_patient(patient_id))


@registry_router.post("/services", response_model=schemas.Service, status_code=status.HTTP_201_CREATED)
def create_service(payload: schemas.ServiceCreate, service: ClinicService = Depends(get_service)):
    return unwrap(service.create_service(**payload.model_dump()))


@registry_router.get("/services", response_model=List[schemas.Service])
def list_services(service: ClinicService = Depends(get_service)):
    return unwrap(service.list_active_services())


# --------------------------------------------------------- appointments

@appointments_router.get("/", response_model=List[schemas.Appointment])
def list_appointments(service: ClinicService = Depends(get_service),
                      day: Optional[date] = None, patient_id: Optional[int] = None,
                      skip: int = 0, limit: int = 100):
    """
    List appointments ordered by date and time.

    Args:
        day: Only appointments on this calendar day
        patient_id: Only appointments for this patient
        skip: Number of records to skip (default: 0)
        limit: Maximum number of records to return (default: 100)
    """
    if day is not None:
        return unwrap(service.appointments_on(day))
    if patient_id is not None:
        return unwrap(service.appointments_for_patient(patient_id))
    return unwrap(service.list_appointments(skip=skip, limit=limit))


@appointments_router.get("/today", response_model=List[schemas.Appointment])
def todays_appointments(service: ClinicService = Depends(get_service)):
    return unwrap(service.todays_appointments())


@appointments_router.get("/range", response_model=List[schemas.Appointment])
def appointments_between(start: date, end: date, service: ClinicService = Depends(get_service)):
    return unwrap(service.appointments_between(start, end))


@appointments_router.get("/statistics", response_model=schemas.AppointmentStats)
def appointment_statistics(service: ClinicService = Depends(get_service)):
    return unwrap(service.appointment_statistics())


@appointments_router.get("/{appointment_id}", response_model=schemas.Appointment)
def read_appointment(appointment_id: int, service: ClinicService = Depends(get_service)):
    return unwrap(service.get_appointment(appointment_id))


@appointments_router.post("/", response_model=schemas.Appointment, status_code=status.HTTP_201_CREATED)
def create_appointment(payload: schemas.AppointmentCreate, service: ClinicService = Depends(get_service)):
    """
    Book an appointment.

    Raises:
        HTTPException: 404 if the patient or service does not exist
        HTTPException: 409 if the slot overlaps an existing appointment
        HTTPException: 422 if the date, time or duration is invalid
    """
    return unwrap(service.create_appointment(**payload.model_dump()))


@appointments_router.put("/{appointment_id}", response_model=schemas.Appointment)
def update_appointment(appointment_id: int, payload: schemas.AppointmentUpdate,
                       service: ClinicService = Depends(get_service)):
    """Reschedule or edit an appointment; only provided fields change."""
    changes = payload.model_dump(exclude_unset=True)
    return unwrap(service.update_appointment(appointment_id, changes))


@appointments_router.post("/{appointment_id}/cancel", response_model=schemas.Appointment)
def cancel_appointment(appointment_id: int, payload: schemas.AppointmentNote,
                       service: ClinicService = Depends(get_service)):
    return unwrap(service.cancel_appointment(appointment_id, payload.notes))


@appointments_router.post("/{appointment_id}/complete", response_model=schemas.Appointment)
def complete_appointment(appointment_id: int, payload: schemas.AppointmentNote,
                         service: ClinicService = Depends(get_service)):
    return unwrap(service.complete_appointment(appointment_id, payload.notes))


@appointments_router.post("/{appointment_id}/no-show", response_model=schemas.Appointment)
def mark_no_show(appointment_id: int, payload: schemas.AppointmentNote,
                 service: ClinicService = Depends(get_service)):
    return unwrap(service.mark_no_show(appointment_id, payload.notes))


@appointments_router.delete("/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(appointment_id: int, service: ClinicService = Depends(get_service)):
    unwrap(service.delete_appointment(appointment_id))


# ------------------------------------------------------------ inventory

@inventory_router.get("/", response_model=List[schemas.InventoryItem])
def list_items(service: ClinicService = Depends(get_service),
               category: Optional[Category] = None, q: Optional[str] = None,
               skip: int = 0, limit: int = 100):
    if category is not None:
        return unwrap(service.items_by_category(category))
    if q is not None:
        return unwrap(service.search_items(q))
    return unwrap(service.list_items(skip=skip, limit=limit))


@inventory_router.get("/alerts/low-stock", response_model=List[schemas.InventoryItem])
def low_stock_items(service: ClinicService = Depends(get_service)):
    return unwrap(service.low_stock_items())


@inventory_router.get("/alerts/expired", response_model=List[schemas.InventoryItem])
def expired_items(service: ClinicService = Depends(get_service)):
    return unwrap(service.expired_items())


@inventory_router.get("/alerts/expiring-soon", response_model=List[schemas.InventoryItem])
def expiring_soon_items(service: ClinicService = Depends(get_service)):
    return unwrap(service.expiring_soon_items())


@inventory_router.get("/statistics", response_model=schemas.InventoryStats)
def inventory_statistics(service: ClinicService = Depends(get_service)):
    return unwrap(service.inventory_statistics())


@inventory_router.get("/transactions", response_model=List[schemas.InventoryTransaction])
def recent_transactions(service: ClinicService = Depends(get_service), limit: int = 20):
    return unwrap(service.recent_transactions(limit=max(1, min(limit, 500))))


@inventory_router.get("/{item_id}", response_model=schemas.InventoryItem)
def read_item(item_id: int, service: ClinicService = Depends(get_service)):
    return unwrap(service.get_item(item_id))


@inventory_router.post("/", response_model=schemas.InventoryItem, status_code=status.HTTP_201_CREATED)
def create_item(payload: schemas.InventoryItemCreate, service: ClinicService = Depends(get_service)):
    return unwrap(service.create_item(**payload.model_dump()))


@inventory_router.put("/{item_id}", response_model=schemas.InventoryItem)
def update_item(item_id: int, payload: schemas.InventoryItemUpdate,
                service: ClinicService = Depends(get_service)):
    return unwrap(service.update_item(item_id, payload.model_dump(exclude_unset=True)))


@inventory_router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_item(item_id: int, service: ClinicService = Depends(get_service)):
    """
    Delete an inventory item.

    Raises:
        HTTPException: 404 if item not found
        HTTPException: 409 if the item has ledger history
    """
    unwrap(service.delete_item(item_id))


@inventory_router.post("/{item_id}/add", response_model=schemas.StockResult)
def add_stock(item_id: int, payload: schemas.StockAdd, service: ClinicService = Depends(get_service)):
    return stock_response(service.add_stock(
        item_id, payload.quantity, reason=payload.reason, notes=payload.notes,
    ))


@inventory_router.post("/{item_id}/remove", response_model=schemas.StockResult)
def remove_stock(item_id: int, payload: schemas.StockRemove, service: ClinicService = Depends(get_service)):
    return stock_response(service.remove_stock(
        item_id, payload.quantity, payload.reason,
        appointment_id=payload.appointment_id, notes=payload.notes,
    ))


@inventory_router.post("/{item_id}/adjust", response_model=schemas.StockResult)
def adjust_stock(item_id: int, payload: schemas.StockAdjust, service: ClinicService = Depends(get_service)):
    return stock_response(service.adjust_stock(item_id, payload.new_quantity, payload.notes))


@inventory_router.get("/{item_id}/transactions", response_model=List[schemas.InventoryTransaction])
def item_transactions(item_id: int, service: ClinicService = Depends(get_service)):
    return unwrap(service.transactions_for_item(item_id))


@inventory_router.get("/{item_id}/reconcile", response_model=schemas.LedgerReconciliation)
def reconcile_item(item_id: int, service: ClinicService = Depends(get_service)):
    return unwrap(service.reconcile_item(item_id))


def create_app(database: Optional[Database] = None,
               clock: Clock = system_clock,
               cache: Optional[Cache] = None) -> FastAPI:
    """
    Build the API around a storage handle.

    Args:
        database: Storage handle; when omitted one is built from ``DATABASE_URL``
            and disposed at shutdown
        clock: Source of the current local datetime
        cache: Statistics cache; defaults to ``REDIS_URL``

    Returns:
        FastAPI: configured application
    """
    owns_database = database is None
    if database is None:
        database = Database(config.DATABASE_URL)
    if cache is None:
        cache = Cache.from_url(config.REDIS_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.create_all()
        logger.info(f"Clinic core started ({database.dialect})")
        yield
        if owns_database:
            database.dispose()

    app = FastAPI(title="clinic-core", lifespan=lifespan)
    app.state.service = ClinicService(database, clock=clock, cache=cache)

    @app.exception_handler(InfrastructureError)
    async def infrastructure_error_handler(request: Request, exc: InfrastructureError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": {"error": exc.kind.value, "message": exc.message, "field": None}},
        )

    @app.get("/healthz", response_model=dict)
    def health():
        """
        Health check endpoint for the clinic core.

        Returns:
            dict: {"status": "healthy"} when the service is operational
        """
        return {"status": "healthy"}

    app.include_router(registry_router)
    app.include_router(appointments_router)
    app.include_router(inventory_router)
    return app


def build_app() -> FastAPI:
    """Application factory for ASGI servers (``uvicorn --factory clinic.main:build_app``)."""
    logging.basicConfig(level=config.LOG_LEVEL)
    return create_app()
