"""
Camera source records.

The source file is a JSON array with one object per camera:

  [
    {
      "name": "jardin-trasero",
      "user": "admin",
      "password": "xxxxxx",
      "ip": "192.168.1.50",
      "port": 554,
      "stream": "stream2",
      "segmentTime": 300,
      "relayTarget": {"outputEndpoints": ["cam1", "cam2"], "cloneTransport": "tcp"}
    }
  ]

Only name, user, password, ip, port and stream are required.  Everything else
falls back to the defaults below (libx264 / aac / segment / 300 s / reset
timestamps / tcp).  "cloneRTSPStream" is accepted as an older spelling of
"relayTarget".

The name doubles as the output directory and the log prefix, so it must be
unique across the file.
"""

import logging
from collections import Counter
from enum import Enum
from pathlib import Path
from typing import ClassVar, Sequence

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from rtsp_recorder.errors import ConfigError

logger = logging.getLogger(__name__)


class StreamQuality(str, Enum):
    """Which of the camera's two RTSP streams to record."""

    HIGH = "stream1"
    LOW = "stream2"

    @property
    def path(self) -> str:
        return self.value


class RelayTarget(BaseModel):
    """Endpoints the camera stream is duplicated to, unmodified."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    output_format: ClassVar[str] = "rtsp"

    output_endpoints: tuple[str, ...] = Field(alias="outputEndpoints", min_length=1)
    transport: str = Field(default="tcp", alias="cloneTransport")
    # Relay server root, e.g. "rtsp://127.0.0.1:8554".  Unset = the camera itself.
    server: str | None = Field(default=None, alias="rtspServer")

    @field_validator("output_endpoints")
    @classmethod
    def _check_endpoints(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if any(not path.strip() for path in value):
            raise ValueError("endpoint paths must be non-empty")
        return value

    def destinations(self, base_url: str) -> list[str]:
        """Full relay URLs, in endpoint order."""
        root = (self.server or base_url).rstrip("/")
        return [f"{root}/{path.lstrip('/')}" for path in self.output_endpoints]


class SourceConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name: str = Field(min_length=1)
    user: str = Field(min_length=1)
    password: str = Field(min_length=1)
    host: str = Field(alias="ip", min_length=1)
    port: int = Field(gt=0, le=65535)
    quality: StreamQuality = Field(alias="stream")

    video_codec: str = Field(default="libx264", alias="videoCodec")
    audio_codec: str = Field(default="aac", alias="audioCodec")
    container_format: str = Field(default="segment", alias="format")
    segment_time: int = Field(default=300, gt=0, alias="segmentTime")
    reset_timestamps: bool = Field(default=True, alias="resetTimeStamps")
    rtsp_transport: str = Field(default="tcp", alias="RTSPTransport")

    relay: RelayTarget | None = Field(
        default=None,
        validation_alias=AliasChoices("relayTarget", "cloneRTSPStream", "relay"),
    )

    @field_validator("name", "user", "password", "host")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("name")
    @classmethod
    def _usable_as_directory(cls, value: str) -> str:
        if value in (".", "..") or "/" in value or "\\" in value:
            raise ValueError("must be a plain directory name (no path separators)")
        return value

    @field_validator("quality", mode="before")
    @classmethod
    def _parse_stream(cls, value):
        # "stream1" / "STREAM2" / "high" all resolve; anything else is left
        # for the enum validator to reject.
        if isinstance(value, str):
            key = value.strip().lower()
            for member in StreamQuality:
                if key in (member.value, member.name.lower()):
                    return member
        return value

    @property
    def base_url(self) -> str:
        return f"rtsp://{self.user}:{self.password}@{self.host}:{self.port}"

    @property
    def input_url(self) -> str:
        return f"{self.base_url}/{self.quality.path}"

    @property
    def output_pattern(self) -> str:
        # Segment numbering is done by ffmpeg
        return f"{self.name}/output_%03d.ts"

    def redact(self, text: str) -> str:
        """Hide the password in a URL or command line meant for logs."""
        return text.replace(f":{self.password}@", ":***@")


_SOURCE_LIST = TypeAdapter(list[SourceConfig])


def _describe(exc: ValidationError) -> str:
    # Input values are left out on purpose: they may contain passwords.
    lines = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "<root>"
        lines.append(f"  {loc}: {err['msg']}")
    return "\n".join(lines)


def check_unique_names(sources: Sequence[SourceConfig]) -> None:
    counts = Counter(s.name for s in sources)
    dupes = sorted(name for name, n in counts.items() if n > 1)
    if dupes:
        raise ConfigError(
            f"Duplicate source name(s): {', '.join(dupes)}. "
            f"Each name is an output directory and must be unique."
        )


def load_sources(path: str | Path) -> list[SourceConfig]:
    """Read, validate and return the camera list.  Raises ConfigError."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read source file {path}: {exc}") from exc

    try:
        sources = _SOURCE_LIST.validate_json(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid source file {path}:\n{_describe(exc)}") from exc

    if not sources:
        raise ConfigError(f"Source file {path} lists no cameras")
    check_unique_names(sources)

    logger.info(f"Loaded {len(sources)} source(s) from {path}")
    return sources
