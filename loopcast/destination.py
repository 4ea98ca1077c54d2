"""Turn a stream key (or a full ingest URL) into the encoder's output URL."""

from loopcast.errors import InvalidRequest

_URL_SCHEMES = ("rtmp://", "rtmps://")


def resolve_stream_url(key_or_url: str, ingest_base: str) -> str:
    """
    Resolve the destination URL for a stream.

    Full rtmp:// or rtmps:// URLs pass through untouched; anything else is a
    stream key appended to the ingest base.

    Raises:
        InvalidRequest: If the key is empty
    """
    value = (key_or_url or "").strip()
    if not value:
        raise InvalidRequest("No stream key provided")
    if value.lower().startswith(_URL_SCHEMES):
        return value
    return f"{ingest_base.rstrip('/')}/{value}"
