from fastapi import status
from fastapi.responses import JSONResponse

from songbattle.services.outcome import ErrorKind, Outcome


STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.AUTHORIZATION: status.HTTP_403_FORBIDDEN,
    ErrorKind.PHASE: status.HTTP_409_CONFLICT,
    ErrorKind.QUOTA: status.HTTP_409_CONFLICT,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INVARIANT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
}


def outcome_response(outcome: Outcome) -> JSONResponse:
    """Render an ``Outcome``; failures get the status code for their kind."""
    if outcome.success:
        return JSONResponse(status_code=status.HTTP_200_OK, content=outcome.as_dict())
    return JSONResponse(status_code=STATUS_BY_KIND[outcome.kind], content=outcome.as_dict())
