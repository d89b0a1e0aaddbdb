class FragmentError(Exception):
    """Base class for every error raised by the fragments domain layer."""


class InvalidKey(FragmentError):
    """A store key was missing, empty or not a string."""


class NotFound(FragmentError):
    """No metadata or data exists for the given (owner, id).

    Also raised when the fragment exists but belongs to another owner.
    """


class UnsupportedType(FragmentError):
    """A fragment was created with a media type outside the supported set."""


class Unsupported(FragmentError):
    """There is no conversion path from the fragment's type to the extension."""


class ConversionError(FragmentError):
    """A conversion was attempted but the source data was rejected."""


class IOFailure(FragmentError):
    """The backing store could not be reached or failed the request."""


class DeleteFailed(FragmentError):
    """Removing a fragment's metadata and data did not complete."""
