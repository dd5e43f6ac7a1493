"""Error types shared by the ledger, issuance and HTTP layers."""


class FeeError(Exception):
    status_code = 500

    def __init__(self, message, payload=None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {}

    def to_dict(self):
        body = dict(self.payload)
        body['message'] = self.message
        return body


class NotFound(FeeError):
    status_code = 404


class ValidationError(FeeError):
    """Input rejected before anything was written.

    ``errors`` is a list of ``{'field': ..., 'message': ...}`` dicts.
    """
    status_code = 400

    def __init__(self, message='Validation error', errors=None):
        super().__init__(message)
        self.errors = list(errors or [])

    def to_dict(self):
        return {'message': self.message, 'errors': self.errors}


class ConflictError(FeeError):
    status_code = 409
