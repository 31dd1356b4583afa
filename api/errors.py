"""API error mapping - domain errors to JSON responses"""
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from domain.errors import BookingError, ErrorCode

logger = logging.getLogger(__name__)


def _error_body(code: str, message: str, details=None) -> dict:
    return {"code": code, "message": message, "details": details or {}}


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.error("Booking request failed", extra={"path": request.url.path, "code": exc.code.value})
        else:
            logger.info(
                "Booking request rejected",
                extra={"path": request.url.path, "code": exc.code.value, "status": exc.http_status},
            )
        return JSONResponse(status_code=exc.http_status, content=jsonable_encoder(exc.to_payload()))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content=jsonable_encoder(_error_body(
                ErrorCode.VALIDATION_ERROR.value,
                "Invalid request",
                {"errors": errors},
            )),
        )
