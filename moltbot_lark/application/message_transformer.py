"""
Message transformer - converts between Lark messages and model messages

Pure and stateless: every method is deterministic and the only failure mode is
TransformationException.
"""

import re
from typing import Any

from ..domain.exceptions import TransformationException
from ..domain.value_objects.model_message import (
    Attachment,
    AttachmentKind,
    MessageContext,
    ModelMessage,
)
from ..domain.value_objects.platform_message import PlatformMessage, PlatformMessageType
from ..domain.value_objects.rendered_message import RenderedMessage, RenderFormat
from ..infrastructure.platform.lark_cards import (
    LARK_MARKDOWN_TOKENS,
    build_card,
    divider,
    heading_block,
    text_block,
)
from ..shared.constants import CARD_TITLE_RESPONSE

# Languages tried, in order, for language-keyed rich-text documents
POST_LANGUAGES = ("zh_cn", "en_us", "ja_jp")

_FENCE_RE = re.compile(r"```(\w*)\n([\s\S]*?)```")
_INLINE_CODE_RE = re.compile(r"`([^`\n]+)`")
_BOLD_RE = re.compile(r"\*\*([^*\n]+)\*\*")
_ITALIC_RE = re.compile(r"(?<!\*)\*([^*\n]+)\*(?!\*)")
_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")

_ATTACHMENT_KINDS = {
    PlatformMessageType.FILE: AttachmentKind.FILE,
    PlatformMessageType.AUDIO: AttachmentKind.AUDIO,
    PlatformMessageType.MEDIA: AttachmentKind.VIDEO,
}


class MessageTransformer:
    """
    Converts inbound platform messages for the model and model output for the
    platform.
    """

    @staticmethod
    def to_model_message(message: PlatformMessage) -> ModelMessage:
        """
        Convert an inbound Lark message for the model.

        Args:
            message: Parsed platform message

        Returns:
            ModelMessage with mention-prefixed text, attachments and context

        Raises:
            TransformationException: If structured content has an unexpected shape
        """
        if message.text_content:
            text = message.text_content
        elif message.post_content is not None:
            text = MessageTransformer.extract_text_from_post(message.post_content)
        else:
            text = ""

        attachments = []
        if message.image_key:
            attachments.append(Attachment(AttachmentKind.IMAGE, message.image_key))
        if message.file_key:
            kind = _ATTACHMENT_KINDS.get(message.message_type, AttachmentKind.FILE)
            attachments.append(Attachment(kind, message.file_key, message.file_name))

        if message.mentions:
            for mention in message.mentions:
                if mention.key:
                    text = re.sub(re.escape(mention.key) + r"(?!\d) ?", "", text)
            mention_text = " ".join(f"@{m.name}" for m in message.mentions)
            text = f"{mention_text} {text}" if text else mention_text

        context = MessageContext(
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            sender_kind=message.sender_kind,
            timestamp=message.timestamp,
            message_id=message.message_id,
        )

        return ModelMessage(text=text, context=context, attachments=tuple(attachments))

    @staticmethod
    def to_platform_message(
        text: str,
        fmt: RenderFormat = RenderFormat.PLAIN,
    ) -> RenderedMessage:
        """
        Render model output for Lark.

        Args:
            text: Model response text
            fmt: Target format

        Returns:
            RenderedMessage; for cards the text field is empty
        """
        if not isinstance(text, str):
            raise TransformationException(
                f"expected str, got {type(text).__name__}", "response"
            )

        if fmt == RenderFormat.RICH_TEXT:
            return RenderedMessage(
                text=MessageTransformer.convert_markdown_to_lark(text),
                format=RenderFormat.RICH_TEXT,
            )

        if fmt == RenderFormat.CARD:
            return RenderedMessage(
                text="",
                format=RenderFormat.CARD,
                card=MessageTransformer.convert_markdown_to_card(text),
            )

        return RenderedMessage(text=text, format=RenderFormat.PLAIN)

    @staticmethod
    def extract_text_from_post(post: Any) -> str:
        """
        Flatten a rich-text document into plain text.

        Accepts the shapes Lark delivers: ``{"title", "content": [[element]]}``
        and the same keyed by language (``{"zh_cn": {...}}``), where a language
        entry may also be a flat list of elements.
        """
        if not isinstance(post, dict):
            raise TransformationException(
                f"expected object, got {type(post).__name__}", "post_content"
            )

        path = "post_content"
        body: Any = post
        if "content" not in post:
            for lang in POST_LANGUAGES:
                if lang in post:
                    body = post[lang]
                    path = f"post_content.{lang}"
                    break
            else:
                raise TransformationException(
                    "no content or known language section", "post_content"
                )

        if isinstance(body, list):
            return MessageTransformer._render_paragraph(body, path)

        if not isinstance(body, dict):
            raise TransformationException(
                f"expected object, got {type(body).__name__}", path
            )

        paragraphs = body.get("content") or []
        if not isinstance(paragraphs, list):
            raise TransformationException("expected list", f"{path}.content")

        lines = []
        title = body.get("title")
        if title:
            lines.append(str(title))
        for index, paragraph in enumerate(paragraphs):
            paragraph_path = f"{path}.content[{index}]"
            if not isinstance(paragraph, list):
                raise TransformationException("expected list", paragraph_path)
            lines.append(MessageTransformer._render_paragraph(paragraph, paragraph_path))
        return "\n".join(lines)

    @staticmethod
    def _render_paragraph(elements: list, path: str) -> str:
        parts = []
        for index, element in enumerate(elements):
            if not isinstance(element, dict) or "tag" not in element:
                raise TransformationException(
                    "expected element with a tag", f"{path}[{index}]"
                )
            tag = element["tag"]
            if tag in ("text", "md"):
                parts.append(element.get("text") or "")
            elif tag == "a":
                parts.append(element.get("text") or element.get("href") or "")
            elif tag == "at":
                name = (
                    element.get("user_name")
                    or element.get("name")
                    or element.get("user_id")
                    or ""
                )
                parts.append(f"@{name}")
            elif tag == "code_block":
                parts.append(element.get("text") or "")
        return "".join(parts)

    @staticmethod
    def convert_markdown_to_lark(markdown: str) -> str:
        """
        Rewrite markdown emphasis onto Lark markdown tokens.

        Fenced code is passed through with its language tag and a single
        trailing newline; inline substitutions are not applied inside it.
        """
        tokens = LARK_MARKDOWN_TOKENS
        out = []
        position = 0
        for match in _FENCE_RE.finditer(markdown):
            out.append(MessageTransformer._convert_inline(markdown[position:match.start()]))
            lang, code = match.group(1), match.group(2)
            code = code[:-1] if code.endswith("\n") else code
            out.append(f"{tokens['fence']}{lang}\n{code}\n{tokens['fence']}")
            position = match.end()
        out.append(MessageTransformer._convert_inline(markdown[position:]))
        return "".join(out)

    @staticmethod
    def _convert_inline(text: str) -> str:
        tokens = LARK_MARKDOWN_TOKENS
        # Inline code first so its body is left alone by emphasis rules
        segments = _INLINE_CODE_RE.split(text)
        for i, segment in enumerate(segments):
            if i % 2 == 1:
                segments[i] = f"{tokens['code']}{segment}{tokens['code']}"
                continue
            segment = _BOLD_RE.sub(lambda m: f"{tokens['bold']}{m.group(1)}{tokens['bold']}", segment)
            segment = _ITALIC_RE.sub(lambda m: f"{tokens['italic']}{m.group(1)}{tokens['italic']}", segment)
            segment = _LINK_RE.sub(lambda m: f"[{m.group(1)}]({m.group(2)})", segment)
            segments[i] = segment
        return "".join(segments)

    @staticmethod
    def convert_markdown_to_card(markdown: str, title: str = CARD_TITLE_RESPONSE) -> dict[str, Any]:
        """
        Convert markdown to an interactive card, one element per line.
        """
        elements = []
        for line in markdown.split("\n"):
            if line.strip() == "":
                elements.append(divider())
            elif line.startswith("## "):
                elements.append(heading_block(line[3:]))
            elif line.startswith("# "):
                elements.append(heading_block(line[2:]))
            elif line.startswith("- ") or line.startswith("* "):
                elements.append(text_block(line[2:]))
            else:
                elements.append(text_block(line))
        return build_card(elements, title)
