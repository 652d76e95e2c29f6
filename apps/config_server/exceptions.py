"""
apps.config_server.exceptions
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Error taxonomy of the configuration server.

Resolution errors (``RevisionNotFound``, ``SourceUnavailable``,
``MalformedDocument``) abort a whole request.  ``EmptySourceSet`` is raised by
the repository resolver only; the facade turns it into an empty environment.
Key and cipher errors abort an encrypt/decrypt call but are recovered per key
while assembling an environment.
"""
from rest_framework import status

from common.exceptions import AppError, NotFoundError, ServiceUnavailableError, ValidationError


class InvalidRequest(ValidationError):
    default_code = "invalid_request"
    default_detail = "Application and profile must be non-empty."


class RevisionNotFound(NotFoundError):
    default_code = "revision_not_found"
    default_detail = "The requested label does not exist in the configuration repository."


class EmptySourceSet(NotFoundError):
    default_code = "empty_source_set"
    default_detail = "No configuration documents matched the request."


class MalformedDocument(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "malformed_document"
    default_detail = "A configuration document could not be parsed."


class SourceUnavailable(ServiceUnavailableError):
    default_code = "source_unavailable"
    default_detail = "The configuration repository is unavailable."


class NoDefaultKeyConfigured(AppError):
    default_code = "no_key_configured"
    default_detail = "No default encryption key is configured."


class UnknownKeyAlias(AppError):
    default_code = "unknown_key_alias"
    default_detail = "The requested key alias is not in the keystore."


class DecryptionFailed(AppError):
    default_code = "decryption_failed"
    default_detail = "The value could not be decrypted."


#: Failures the environment assembler recovers from with an invalid marker.
KEY_ERRORS = (NoDefaultKeyConfigured, UnknownKeyAlias, DecryptionFailed)
