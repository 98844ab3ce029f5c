"""
Marker Types

Pydantic models for marker payloads, one per payload `type`, plus the derived
Marker record produced by logic/marker_data.py.

Payload fields keep the profile's camelCase names as aliases, so
`model_dump(by_alias=True)` gives back the JSON shape. Unknown payload types
and payloads that fail validation become GenericPayload, which keeps every
field it was given.
"""

from dataclasses import dataclass
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .logging_utils import get_logger

logger = get_logger(__name__)


# ============================================================================
# Payload Variants
# ============================================================================

class MarkerPayload(BaseModel):
    """Base payload: every variant may carry start/end times of its own."""
    model_config = ConfigDict(populate_by_name=True, extra='allow')

    type: str = ''
    start_time: Optional[float] = Field(default=None, alias='startTime')
    end_time: Optional[float] = Field(default=None, alias='endTime')


class GenericPayload(MarkerPayload):
    """Any payload without a dedicated model."""


class NetworkPayload(MarkerPayload):
    type: Literal['Network'] = 'Network'
    id: int = Field(description="Load id shared by the start and end rows")
    status: str = Field(description="STATUS_START, STATUS_STOP, STATUS_REDIRECT or STATUS_CANCEL")
    uri: Optional[str] = Field(default=None, alias='URI')
    redirect_uri: Optional[str] = Field(default=None, alias='RedirectURI')
    pri: Optional[int] = None
    count: Optional[int] = None
    cause: Optional[dict[str, Any]] = None
    fetch_start: Optional[float] = Field(default=None, alias='fetchStart')
    domain_lookup_start: Optional[float] = Field(default=None, alias='domainLookupStart')
    domain_lookup_end: Optional[float] = Field(default=None, alias='domainLookupEnd')
    connect_start: Optional[float] = Field(default=None, alias='connectStart')
    tcp_connect_end: Optional[float] = Field(default=None, alias='tcpConnectEnd')
    secure_connection_start: Optional[float] = Field(default=None, alias='secureConnectionStart')
    connect_end: Optional[float] = Field(default=None, alias='connectEnd')
    request_start: Optional[float] = Field(default=None, alias='requestStart')
    response_start: Optional[float] = Field(default=None, alias='responseStart')
    response_end: Optional[float] = Field(default=None, alias='responseEnd')


class IPCPayload(MarkerPayload):
    type: Literal['IPC'] = 'IPC'
    other_pid: Union[int, str] = Field(alias='otherPid')
    message_seqno: int = Field(alias='messageSeqno')
    message_type: str = Field(alias='messageType')
    side: Optional[Literal['parent', 'child']] = None
    direction: Literal['sending', 'receiving']
    phase: Optional[Literal['endpoint', 'transferStart', 'transferEnd']] = None
    sync: bool = False
    # Filled in by IPC correlation.
    send_start_time: Optional[float] = Field(default=None, alias='sendStartTime')
    send_end_time: Optional[float] = Field(default=None, alias='sendEndTime')
    recv_end_time: Optional[float] = Field(default=None, alias='recvEndTime')
    send_tid: Optional[Union[int, str]] = Field(default=None, alias='sendTid')
    recv_tid: Optional[Union[int, str]] = Field(default=None, alias='recvTid')
    send_thread_name: Optional[str] = Field(default=None, alias='sendThreadName')
    recv_thread_name: Optional[str] = Field(default=None, alias='recvThreadName')
    nice_direction: Optional[str] = Field(default=None, alias='niceDirection')


class TracingPayload(MarkerPayload):
    type: Literal['tracing'] = 'tracing'
    category: str = ''
    interval: Optional[Literal['start', 'end']] = None
    cause: Optional[dict[str, Any]] = None


class GCMinorPayload(MarkerPayload):
    type: Literal['GCMinor'] = 'GCMinor'
    nursery: Optional[dict[str, Any]] = None


class GCMajorPayload(MarkerPayload):
    type: Literal['GCMajor'] = 'GCMajor'
    timings: dict[str, Any] = Field(default_factory=dict)


class GCSlicePayload(MarkerPayload):
    type: Literal['GCSlice'] = 'GCSlice'
    timings: dict[str, Any] = Field(default_factory=dict)


class FileIOPayload(MarkerPayload):
    type: Literal['FileIO'] = 'FileIO'
    operation: str = ''
    source: str = ''
    filename: Optional[str] = None
    thread_id: Optional[int] = Field(default=None, alias='threadId')


class LogPayload(MarkerPayload):
    type: Literal['Log'] = 'Log'
    name: str = ''
    module: str = ''


class UserTimingPayload(MarkerPayload):
    type: Literal['UserTiming'] = 'UserTiming'
    name: str = ''
    entry_type: Literal['measure', 'mark'] = Field(default='measure', alias='entryType')


class CompositorScreenshotPayload(MarkerPayload):
    type: Literal['CompositorScreenshot'] = 'CompositorScreenshot'
    url: Optional[Union[int, str]] = None
    window_id: str = Field(alias='windowID')
    window_width: Optional[float] = Field(default=None, alias='windowWidth')
    window_height: Optional[float] = Field(default=None, alias='windowHeight')


class TextPayload(MarkerPayload):
    type: Literal['Text'] = 'Text'
    name: str = ''


class DummyForTestsPayload(MarkerPayload):
    type: Literal['DummyForTests'] = 'DummyForTests'


class InvalidationPayload(MarkerPayload):
    """Parsed from marker names of the form `Invalidate <url>:<line>`."""
    type: Literal['Invalidation'] = 'Invalidation'
    url: str
    line: int


class BailoutPayload(MarkerPayload):
    """Parsed from `Bailout_<type> <after|at> <where> on line <N> of <script>:<M>`."""
    type: Literal['Bailout'] = 'Bailout'
    bailout_type: str = Field(alias='bailoutType')
    where: str
    script: str
    bailout_line: int = Field(alias='bailoutLine')
    function_line: int = Field(alias='functionLine')


PAYLOAD_TYPES: dict[str, type[MarkerPayload]] = {
    'Network': NetworkPayload,
    'IPC': IPCPayload,
    'tracing': TracingPayload,
    'GCMinor': GCMinorPayload,
    'GCMajor': GCMajorPayload,
    'GCSlice': GCSlicePayload,
    'FileIO': FileIOPayload,
    'Log': LogPayload,
    'UserTiming': UserTimingPayload,
    'CompositorScreenshot': CompositorScreenshotPayload,
    'Text': TextPayload,
    'DummyForTests': DummyForTestsPayload,
    'Invalidation': InvalidationPayload,
    'Bailout': BailoutPayload,
}


def parse_marker_payload(data: Optional[dict[str, Any]]) -> Optional[MarkerPayload]:
    """
    Turn a raw payload dict into its typed model.

    Returns None for a missing payload. Unknown types, and known types whose
    fields do not validate, fall back to GenericPayload with a warning for the
    latter.
    """
    if data is None:
        return None
    if isinstance(data, MarkerPayload):
        return data
    payload_class = PAYLOAD_TYPES.get(data.get('type', ''))
    if payload_class is None:
        return GenericPayload.model_validate(data)
    try:
        return payload_class.model_validate(data)
    except ValidationError as e:
        logger.warning("Marker payload of type %r did not validate, keeping it generic: %s",
                       data.get('type'), e.errors()[0].get('msg') if e.errors() else e)
        return GenericPayload.model_validate(data)


# ============================================================================
# Derived Marker
# ============================================================================

@dataclass
class Marker:
    """
    A marker with resolved timing.

    end is None for instant markers. incomplete is set when one side of an
    interval was outside the recorded range and was clamped to the thread's
    start or end.
    """
    start: float
    end: Optional[float]
    name: str
    category: int
    data: Optional[MarkerPayload] = None
    thread_id: Optional[int] = None
    incomplete: bool = False

    @property
    def duration(self) -> Optional[float]:
        return None if self.end is None else self.end - self.start
