class CleanerError(Exception):
    """Base error for all user-facing cleaner exceptions."""


class UnsupportedFileType(CleanerError):
    """Raised when an uploaded file is neither delimited text nor a workbook."""


class InputTooLarge(CleanerError):
    """Raised when a size, dimension or complexity ceiling is exceeded."""


class UnsupportedOrCorruptContainer(CleanerError):
    """Raised when a workbook cannot be decoded, even after repair."""


class EncryptedOrProtected(CleanerError):
    """Raised when a workbook is password protected or encrypted."""


class EmptySheet(CleanerError):
    """Raised when a sheet has no declared extent or no rows."""


class EmptySelection(CleanerError):
    """Raised when no header row or no number column has been chosen."""


class RowProcessingError(CleanerError):
    """Raised for a single malformed row; recovered inside the row pipeline."""


class ExportSerializationError(CleanerError):
    """Raised when neither the workbook nor the CSV export could be written."""


class RunCancelled(CleanerError):
    """Raised at a yield point once the run's cancel token is set."""
