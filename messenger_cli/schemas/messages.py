from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class PreviewUrl(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["preview_url"] = "preview_url"
    url: str


class DirectUrl(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["direct_url"] = "direct_url"
    url: str


class InlineImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["inline_image"] = "inline_image"
    url: str


AttachmentSource = Annotated[PreviewUrl | DirectUrl | InlineImage, Field(discriminator="kind")]

# Earlier keys win when an attachment carries more than one of them.
_SOURCE_KEYS: tuple[tuple[tuple[str, ...], type[BaseModel]], ...] = (
    (("previewUrl", "preview_url"), PreviewUrl),
    (("url",), DirectUrl),
    (("image",), InlineImage),
)


class Attachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: AttachmentSource | None = None
    description: str | None = None

    @property
    def url(self) -> str | None:
        return self.source.url if self.source is not None else None

    @classmethod
    def from_raw(cls, raw: Mapping[str, object]) -> Attachment:
        source = None
        for keys, source_type in _SOURCE_KEYS:
            value = next((raw.get(key) for key in keys if raw.get(key)), None)
            if isinstance(value, str) and value:
                source = source_type(url=value)
                break

        description = raw.get("description")
        return cls(
            source=source,
            description=description if isinstance(description, str) and description else None,
        )


class Message(BaseModel):
    message_id: str = Field(min_length=1)
    thread_id: str | None = None
    sender_id: str
    sender_name: str | None = None
    body: str | None = None
    attachments: list[Attachment] = Field(default_factory=list)
    timestamp: int

    @property
    def is_printable(self) -> bool:
        return bool(self.body) or bool(self.attachments)
