"""Data models for transcription blocks and text normalization policy."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

ExtentUnit = Literal["character", "line", "column"]
BreakType = Literal["line", "column"]
UnicodeForm = Literal["NFC", "NFD", "NFKC", "NFKD"]


class NormalizationPolicy(BaseModel):
    """Canonicalisation rules applied before fingerprinting, loaded from YAML."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    unicode_form: UnicodeForm = "NFC"
    collapse_whitespace: bool = True
    strip_diacritics: bool = False
    casefold: bool = False


class TextBlock(BaseModel):
    """Running text in one language."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["text"] = "text"
    lang: str = ""
    content: str


class UncertainBlock(BaseModel):
    """Passage whose reading is uncertain, with the agent causing it."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["uncertain"] = "uncertain"
    lang: str = ""
    content: str
    agent: str = ""
    cert: str | None = None


class AbbreviationBlock(BaseModel):
    """Abbreviated surface form and its expansion."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["abbreviation"] = "abbreviation"
    surface: str
    expansion: str
    surface_lang: str = ""
    expansion_lang: str = ""


class CorrectionVersion(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    hand: str | None = None
    lang: str = ""
    content: str


class CorrectionBlock(BaseModel):
    """A correction on the manuscript, listing each version in order."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["correction"] = "correction"
    versions: tuple[CorrectionVersion, ...] = Field(min_length=1)


class LacunaBlock(BaseModel):
    """Missing text, its extent and optionally the text it is inferred to replace."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["lacuna"] = "lacuna"
    reason: str = ""
    n: int = Field(default=1, ge=1)
    unit: ExtentUnit = "character"
    cert: str | None = None
    replaces: str | None = None


class SpaceBlock(BaseModel):
    """Intentional blank space left by the scribe."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["space"] = "space"
    quantity: int = Field(default=1, ge=1)
    unit: ExtentUnit = "character"


class BreakBlock(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["break"] = "break"
    break_type: BreakType = "line"


class AnchorBlock(BaseModel):
    """Beginning of a verse, labelled in one versification scheme.

    ``anchor_id`` has the form ``A_V_<shorthand>_<label>`` and ``anchor_type``
    carries the scheme's full name.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["anchor"] = "anchor"
    anchor_id: str
    anchor_type: str

    @classmethod
    def for_label(cls, full_name: str, shorthand: str, label: str) -> AnchorBlock:
        return cls(anchor_id=f"A_V_{shorthand}_{label}", anchor_type=full_name)

    def target(self) -> tuple[str, str] | None:
        """Split the anchor id into (scheme shorthand, verse label)."""

        if not self.anchor_id.startswith("A_V_"):
            return None
        shorthand, sep, label = self.anchor_id[4:].partition("_")
        if not sep or not shorthand or not label:
            return None
        return shorthand, label


BlockContent = Annotated[
    TextBlock
    | UncertainBlock
    | AbbreviationBlock
    | CorrectionBlock
    | LacunaBlock
    | SpaceBlock
    | BreakBlock
    | AnchorBlock,
    Field(discriminator="kind"),
]

BlockKind = Literal[
    "text", "uncertain", "abbreviation", "correction", "lacuna", "space", "break", "anchor"
]
BLOCK_KINDS: tuple[str, ...] = (
    "text",
    "uncertain",
    "abbreviation",
    "correction",
    "lacuna",
    "space",
    "break",
    "anchor",
)


class TranscriptionBlock(BaseModel):
    """One positioned block; positions are dense and zero-based."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    position: int = Field(ge=0)
    content: BlockContent
    fingerprint: str

    def block_id(self, username: str) -> str:
        return f"{username}:b{self.position}"


class Transcription(BaseModel):
    """One user's current version of one page."""

    model_config = ConfigDict(extra="forbid")

    username: str
    blocks: list[TranscriptionBlock] = Field(default_factory=list)
    published: bool = False

    def contents(self) -> list[BlockContent]:
        return [block.content for block in self.blocks]

    def fingerprints(self) -> list[str]:
        return [block.fingerprint for block in self.blocks]
