from __future__ import annotations

import pytest

from critic.transcriptions.editing import (
    build_transcription,
    delete_block,
    insert_block,
    move_block,
    replace_block,
    split_block,
)
from critic.transcriptions.fingerprint import compute_block_fingerprint
from critic.transcriptions.models import (
    BreakBlock,
    LacunaBlock,
    TextBlock,
    Transcription,
    UncertainBlock,
)


def _sample() -> Transcription:
    return build_transcription(
        "alice",
        [TextBlock(lang="la", content="in principio"), BreakBlock(), TextBlock(content="erat")],
        published=True,
    )


def _assert_dense(transcription: Transcription) -> None:
    assert [block.position for block in transcription.blocks] == list(
        range(len(transcription.blocks))
    )
    for block in transcription.blocks:
        assert block.fingerprint == compute_block_fingerprint(block.content)


def test_build_transcription_numbers_blocks() -> None:
    transcription = _sample()

    _assert_dense(transcription)
    assert transcription.blocks[1].block_id("alice") == "alice:b1"


def test_insert_delete_and_move_keep_positions_dense() -> None:
    transcription = insert_block(_sample(), 0, TextBlock(content="incipit"))
    _assert_dense(transcription)
    assert transcription.blocks[0].content == TextBlock(content="incipit")

    transcription = delete_block(transcription, 2)
    _assert_dense(transcription)
    assert [block.content.kind for block in transcription.blocks] == ["text", "text", "text"]

    transcription = move_block(transcription, 2, 0)
    _assert_dense(transcription)
    assert transcription.blocks[0].content == TextBlock(content="erat")
    assert transcription.published is True
    assert transcription.username == "alice"


def test_replace_block_refingerprints() -> None:
    original = _sample()

    updated = replace_block(original, 2, TextBlock(content="erant"))

    assert updated.blocks[2].fingerprint != original.blocks[2].fingerprint
    _assert_dense(updated)


def test_edit_positions_are_validated() -> None:
    with pytest.raises(IndexError):
        insert_block(_sample(), 4, BreakBlock())
    with pytest.raises(IndexError):
        delete_block(_sample(), 3)


def test_split_block_isolates_selection() -> None:
    transcription = split_block(_sample(), 0, 3, 12, "uncertain")

    _assert_dense(transcription)
    assert transcription.blocks[0].content == TextBlock(lang="la", content="in ")
    assert transcription.blocks[1].content == UncertainBlock(lang="la", content="principio")
    assert transcription.blocks[2].content == BreakBlock()
    assert len(transcription.blocks) == 4


def test_split_block_middle_keeps_both_sides() -> None:
    transcription = split_block(_sample(), 0, 3, 6, "lacuna")

    contents = [block.content for block in transcription.blocks[:3]]
    assert contents[0] == TextBlock(lang="la", content="in ")
    assert contents[1] == LacunaBlock(n=3, replaces="pri")
    assert contents[2] == TextBlock(lang="la", content="ncipio")


def test_split_block_rejects_bad_requests() -> None:
    with pytest.raises(ValueError, match="no text"):
        split_block(_sample(), 1, 0, 1, "text")
    with pytest.raises(ValueError, match="Invalid selection"):
        split_block(_sample(), 0, 5, 5, "text")
    with pytest.raises(ValueError, match="Cannot split"):
        split_block(_sample(), 0, 0, 2, "anchor")
