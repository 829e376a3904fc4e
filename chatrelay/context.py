"""RequestContext: carries caller identity through the turn lifecycle."""

import uuid
from dataclasses import dataclass, field


@dataclass
class RequestContext:
    """Per-request values passed explicitly to every pipeline entry point.

    Attributes:
        user_id: Authenticated user identifier supplied by the identity provider.
        request_id: Correlation id for log lines. Generated when omitted.
        client_ip: Remote address of the caller, if known.
    """

    user_id: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    client_ip: str = ""

