"""HTTP mapping for the machine-readable error codes returned by services."""

from fastapi import HTTPException, status

ERROR_STATUS = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_range": status.HTTP_400_BAD_REQUEST,
    "protected_field": status.HTTP_400_BAD_REQUEST,
    "capacity_exceeded": status.HTTP_409_CONFLICT,
    "illegal_transition": status.HTTP_409_CONFLICT,
    "booking_not_active": status.HTTP_409_CONFLICT,
    "resource_inactive": status.HTTP_409_CONFLICT,
    "reservation_number": status.HTTP_503_SERVICE_UNAVAILABLE,
    "persistence_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def http_error(code: str | None, message: str) -> HTTPException:
    status_code = ERROR_STATUS.get(code or "", status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=status_code, detail={"error": code, "message": message})
