"""Structural edits on transcriptions that keep block positions dense.

Every edit rebuilds the block list from its contents, so positions stay
zero-based without gaps and fingerprints always match content.
"""

from __future__ import annotations

from collections.abc import Iterable

from critic.transcriptions.fingerprint import compute_block_fingerprint
from critic.transcriptions.models import (
    AbbreviationBlock,
    BlockContent,
    CorrectionBlock,
    CorrectionVersion,
    LacunaBlock,
    NormalizationPolicy,
    TextBlock,
    Transcription,
    TranscriptionBlock,
    UncertainBlock,
)

_SPLIT_TARGET_KINDS = {"text", "uncertain", "abbreviation", "correction", "lacuna"}


def build_blocks(
    contents: Iterable[BlockContent], policy: NormalizationPolicy | None = None
) -> list[TranscriptionBlock]:
    """Number contents in reading order and fingerprint each one."""

    return [
        TranscriptionBlock(
            position=position,
            content=content,
            fingerprint=compute_block_fingerprint(content, policy),
        )
        for position, content in enumerate(contents)
    ]


def build_transcription(
    username: str,
    contents: Iterable[BlockContent],
    *,
    policy: NormalizationPolicy | None = None,
    published: bool = False,
) -> Transcription:
    return Transcription(
        username=username,
        blocks=build_blocks(contents, policy),
        published=published,
    )


def refingerprint(
    transcription: Transcription, policy: NormalizationPolicy | None = None
) -> Transcription:
    """Recompute positions and fingerprints, e.g. after loading or a policy change."""

    return _rebuilt(transcription, transcription.contents(), policy)


def insert_block(
    transcription: Transcription,
    index: int,
    content: BlockContent,
    policy: NormalizationPolicy | None = None,
) -> Transcription:
    contents = transcription.contents()
    if not 0 <= index <= len(contents):
        raise IndexError(f"Insert position {index} outside 0..{len(contents)}")
    contents.insert(index, content)
    return _rebuilt(transcription, contents, policy)


def delete_block(
    transcription: Transcription, index: int, policy: NormalizationPolicy | None = None
) -> Transcription:
    contents = transcription.contents()
    _check_index(index, len(contents))
    del contents[index]
    return _rebuilt(transcription, contents, policy)


def move_block(
    transcription: Transcription,
    source: int,
    destination: int,
    policy: NormalizationPolicy | None = None,
) -> Transcription:
    contents = transcription.contents()
    _check_index(source, len(contents))
    _check_index(destination, len(contents))
    contents.insert(destination, contents.pop(source))
    return _rebuilt(transcription, contents, policy)


def replace_block(
    transcription: Transcription,
    index: int,
    content: BlockContent,
    policy: NormalizationPolicy | None = None,
) -> Transcription:
    contents = transcription.contents()
    _check_index(index, len(contents))
    contents[index] = content
    return _rebuilt(transcription, contents, policy)


def split_block(
    transcription: Transcription,
    index: int,
    start: int,
    end: int,
    new_kind: str,
    policy: NormalizationPolicy | None = None,
) -> Transcription:
    """Split the block at ``index`` so that ``[start, end)`` becomes its own block.

    The pieces before and after the selection keep the original kind; the
    selection becomes ``new_kind``. Selecting everything yields one block.
    """

    contents = transcription.contents()
    _check_index(index, len(contents))
    original = contents[index]
    text = surface_text(original)
    if text is None:
        raise ValueError(f"Block kind '{original.kind}' has no text to split")
    if not 0 <= start < end <= len(text):
        raise ValueError(f"Invalid selection [{start}, {end}) for text of length {len(text)}")
    if new_kind not in _SPLIT_TARGET_KINDS:
        raise ValueError(f"Cannot split into block kind '{new_kind}'")

    pieces: list[BlockContent] = []
    if start > 0:
        pieces.append(with_text(original, text[:start]))
    pieces.append(content_from_kind(new_kind, primary_lang(original), text[start:end]))
    if end < len(text):
        pieces.append(with_text(original, text[end:]))

    contents[index : index + 1] = pieces
    return _rebuilt(transcription, contents, policy)


def surface_text(content: BlockContent) -> str | None:
    """Primary surface text, the most natural reading of what is on the page."""

    if isinstance(content, (TextBlock, UncertainBlock)):
        return content.content
    if isinstance(content, CorrectionBlock):
        return content.versions[0].content
    if isinstance(content, AbbreviationBlock):
        return content.surface
    return None


def primary_lang(content: BlockContent) -> str:
    if isinstance(content, (TextBlock, UncertainBlock)):
        return content.lang
    if isinstance(content, CorrectionBlock):
        return content.versions[0].lang
    if isinstance(content, AbbreviationBlock):
        return content.expansion_lang
    return ""


def with_text(content: BlockContent, text: str) -> BlockContent:
    """Copy a content-bearing block with its metadata but new text."""

    if isinstance(content, (TextBlock, UncertainBlock)):
        return content.model_copy(update={"content": text})
    if isinstance(content, CorrectionBlock):
        return CorrectionBlock(
            versions=(CorrectionVersion(lang=content.versions[0].lang, content=text),)
        )
    if isinstance(content, AbbreviationBlock):
        return content.model_copy(update={"surface": text, "expansion": text})
    raise ValueError(f"Block kind '{content.kind}' has no text")


def content_from_kind(kind: str, lang: str, text: str) -> BlockContent:
    if kind == "text":
        return TextBlock(lang=lang, content=text)
    if kind == "uncertain":
        return UncertainBlock(lang=lang, content=text)
    if kind == "abbreviation":
        return AbbreviationBlock(
            surface=text, expansion=text, surface_lang=lang, expansion_lang=lang
        )
    if kind == "correction":
        return CorrectionBlock(versions=(CorrectionVersion(lang=lang, content=text),))
    if kind == "lacuna":
        return LacunaBlock(n=max(len(text), 1), unit="character", replaces=text)
    raise ValueError(f"Cannot build block kind '{kind}' from text")


def _rebuilt(
    transcription: Transcription,
    contents: list[BlockContent],
    policy: NormalizationPolicy | None,
) -> Transcription:
    return Transcription(
        username=transcription.username,
        blocks=build_blocks(contents, policy),
        published=transcription.published,
    )


def _check_index(index: int, length: int) -> None:
    if not 0 <= index < length:
        raise IndexError(f"Block position {index} outside 0..{length - 1}")
