"""
Domain layer for fragments.
Provides the store interfaces (gateways), the fragment entity and service, and
the conversion dispatcher so front-ends (HTTP or others) can share the same
core logic without depending on a particular storage backend.
"""

from .converters import convert, formats_for
from .errors import (
    ConversionError,
    DeleteFailed,
    FragmentError,
    InvalidKey,
    IOFailure,
    NotFound,
    Unsupported,
    UnsupportedType,
)
from .fragment import Fragment, FragmentService
from .interfaces import ByteStore, ConversionResult, MetadataStore, SecurityGateway
from .media_types import SUPPORTED_TYPES, MediaType, is_supported_type, parse_media_type
