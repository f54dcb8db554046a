from __future__ import annotations


class ValidationError(Exception):
    pass


class NotFound(Exception):
    pass


class PermissionDenied(Exception):
    pass


class AuthError(Exception):
    pass
