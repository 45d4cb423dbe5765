##########
# Imports
##########
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from transactions import TransactionError


logger = logging.getLogger(__name__)

LOCATION_PREFIXES = ("body", "query", "path", "header", "cookie")


def _field_name(loc):
    parts = [str(part) for part in loc]
    if parts and parts[0] in LOCATION_PREFIXES:
        parts = parts[1:]
    return ".".join(parts)


def format_validation_errors(errors):
    return [
        {
            "field": _field_name(error.get("loc", ())),
            "message": error.get("msg", "Invalid value").removeprefix("Value error, "),
            "type": error.get("type", "value_error"),
        }
        for error in errors
    ]


#################
# Exception handlers
#################
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"message": exc.detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"errors": format_validation_errors(exc.errors())}, status_code=400)


async def transaction_exception_handler(request: Request, exc: TransactionError):
    return JSONResponse(
        {"message": "Could not complete the request, no changes were made"},
        status_code=500,
    )


async def database_exception_handler(request: Request, exc: PyMongoError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse({"message": str(exc)}, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"message": "Internal Server Error"}, status_code=500)


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(TransactionError, transaction_exception_handler)
    app.add_exception_handler(PyMongoError, database_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
