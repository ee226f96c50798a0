from rest_framework import status
from rest_framework.exceptions import APIException


class Conflict(APIException):
    """The requested state transition is not allowed from the current status."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "The operation conflicts with the current state of the resource."
    default_code = "conflict"


class LedgerUnavailable(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "The certificate ledger is not available right now."
    default_code = "ledger_unavailable"
