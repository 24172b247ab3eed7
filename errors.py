class CertificateError(Exception):
    """Base class for errors reported back to API callers."""

    status_code = 500


class PreconditionError(CertificateError):
    """Request cannot start: missing layout, template image, email column or rows."""

    status_code = 400


class NotFoundError(CertificateError):
    """Nothing stored for the requested key."""

    status_code = 404


class RenderError(CertificateError):
    """Rasterizing or writing a certificate failed; the batch is discarded."""


class NotificationError(CertificateError):
    """Mail transport could not be set up at all."""


class StorageError(CertificateError):
    """A persisted document exists but cannot be read; refusing to overwrite it."""
