from messenger_cli.schemas.messages import Attachment, AttachmentSource, DirectUrl, InlineImage, Message, PreviewUrl
from messenger_cli.schemas.threads import Friend, Thread, ThreadSummary

__all__ = [
    "Attachment",
    "AttachmentSource",
    "DirectUrl",
    "Friend",
    "InlineImage",
    "Message",
    "PreviewUrl",
    "Thread",
    "ThreadSummary",
]
