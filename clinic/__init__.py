"""
Clinic back-office core: appointment scheduling and inventory stock ledger.
"""
from .database import Database
from .errors import ErrorKind, InfrastructureError
from .result import Failure, Result, Success
from .service import ClinicService

__all__ = [
    "ClinicService",
    "Database",
    "ErrorKind",
    "Failure",
    "InfrastructureError",
    "Result",
    "Success",
]
