from dataclasses import dataclass, field

SUPPORTED_TYPES = frozenset(
    {
        "text/plain",
        "text/markdown",
        "text/html",
        "text/csv",
        "application/json",
        "application/yaml",
        "image/png",
        "image/jpeg",
        "image/webp",
        "image/gif",
        "image/avif",
    }
)


@dataclass(frozen=True)
class MediaType:
    base_type: str
    parameters: dict[str, str] = field(default_factory=dict)

    @property
    def charset(self) -> str | None:
        return self.parameters.get("charset")


def parse_media_type(value: str) -> MediaType:
    """Split a Content-Type value into its base type and parameters.

    ``"Text/Plain; charset=UTF-8"`` -> ``MediaType("text/plain", {"charset": "UTF-8"})``.
    The base type and parameter names are lower-cased; parameter values keep
    their case with surrounding quotes removed. Malformed parameters are skipped.
    """
    base, _, rest = (value or "").partition(";")
    params: dict[str, str] = {}
    for part in rest.split(";"):
        name, sep, val = part.partition("=")
        name = name.strip().lower()
        if not sep or not name:
            continue
        params[name] = val.strip().strip('"')
    return MediaType(base.strip().lower(), params)


def base_type(value: str) -> str:
    return parse_media_type(value).base_type


def is_supported_type(value: str) -> bool:
    if not isinstance(value, str):
        return False
    return base_type(value) in SUPPORTED_TYPES
