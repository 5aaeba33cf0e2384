#!/usr/bin/env python3
# /// script
# requires-python = ">=3.10"
# dependencies = [
#     "loguru",
#     "pysam",
# ]
# ///

from __future__ import annotations

import argparse
import copy
import sys
from dataclasses import dataclass
from enum import Enum, IntEnum, auto
from typing import TYPE_CHECKING, NamedTuple, NoReturn

import pysam
from loguru import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

# ------------------------------- CONSTANTS -------------------------------- #

# CIGAR op codes
# 0:M, 1:I, 2:D, 3:N, 4:S, 5:H, 6:P, 7:=, 8:X
REF_CONSUME = frozenset({0, 2, 3, 7, 8})
QRY_CONSUME = frozenset({0, 1, 4, 7, 8})
CIGAR_SYMBOLS = "MIDNSHP=X"

# SAM positions are 1-based; 0 means "no position"
FIRST_POSITION: int = 1

# Symbols BAM can store in its 4-bit base encoding; anything else reads back as N
BAM_BASE_SYMBOLS = "=ACMGRSVTWYHKDBN"

# Phred+33 qualities that fit in a printable quality string
MIN_PHRED: int = 0
MAX_PHRED: int = 93

# Read group survives the reduction of a read to an empty, unmapped record
READ_GROUP_TAG = "RG"


class CigarOpKind(IntEnum):
    """CIGAR operations keyed by their SAM/pysam op code."""

    MATCH = 0
    INS = 1
    DEL = 2
    SKIP = 3
    SOFT_CLIP = 4
    HARD_CLIP = 5
    PAD = 6
    EQUAL = 7
    DIFF = 8

    @property
    def consumes_read(self) -> bool:
        return self.value in QRY_CONSUME

    @property
    def consumes_reference(self) -> bool:
        return self.value in REF_CONSUME

    @property
    def symbol(self) -> str:
        return CIGAR_SYMBOLS[self.value]


# ------------------------------- DATA TYPES -------------------------------- #


class ClippingRepresentation(Enum):
    """How the bases inside a clipping interval are represented afterwards."""

    WRITE_NS = auto()  # bases become N, qualities untouched
    WRITE_Q0S = auto()  # qualities become 0, bases untouched
    WRITE_NS_Q0S = auto()  # both of the above
    HARDCLIP_BASES = auto()  # bases removed, recorded as H in the CIGAR
    SOFTCLIP_BASES = auto()  # bases kept, recorded as S in the CIGAR
    REVERT_SOFTCLIPPED_BASES = auto()  # S runs turned back into aligned M


class ClipErrorKind(Enum):
    """Closed set of reasons a clip can be refused."""

    PRECONDITION = auto()  # the read is in the wrong state (e.g. unmapped)
    CONTRACT = auto()  # the interval is not allowed for this representation
    INVALID_ARGUMENT = auto()  # bad interval bounds or unknown representation


class ClippingError(ValueError):
    """A clip that cannot be applied. Nothing has been mutated when raised."""

    def __init__(
        self,
        kind: ClipErrorKind,
        message: str,
        read_name: str | None = None,
        interval: tuple[int, int] | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.read_name = read_name
        self.interval = interval


class ClipResult(NamedTuple):
    """Outcome of `ClippingOp.try_apply`: exactly one of the fields is set."""

    read: pysam.AlignedSegment | None
    error: ClippingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ClipSettings:
    """Symbols and tag names used when rewriting reads."""

    unknown_base: str = "N"
    clipped_quality: int = 0
    insertion_quality_tag: str = "BI"
    deletion_quality_tag: str = "BD"
    default_indel_quality: int = 45  # assumed when only one of BI/BD is present

    def __post_init__(self) -> None:
        if len(self.unknown_base) != 1 or self.unknown_base not in BAM_BASE_SYMBOLS:
            msg = (
                f"unknown_base must be one of '{BAM_BASE_SYMBOLS}', "
                f"got {self.unknown_base!r}"
            )
            logger.error(msg)
            raise ValueError(msg)
        if not MIN_PHRED <= self.clipped_quality <= MAX_PHRED:
            msg = (
                f"clipped_quality must be within {MIN_PHRED}..{MAX_PHRED}, "
                f"got {self.clipped_quality}"
            )
            logger.error(msg)
            raise ValueError(msg)


DEFAULT_SETTINGS = ClipSettings()


# ----------------------------- LOGGING SETUP ------------------------------- #


def configure_logging(verbose: int, quiet: int) -> None:
    """
    Base at SUCCESS (0). Positive → louder (more verbose), negative → quieter.
    Map:
      +3.. = TRACE
      +2   = DEBUG
      +1   = INFO
       0   = SUCCESS
      -1   = WARNING
      -2   = ERROR
      <=-3 = CRITICAL
    """
    logger.remove()
    delta = verbose - quiet
    match delta:
        case d if d >= 3:  # noqa: PLR2004
            level_str = "TRACE"
        case 2:
            level_str = "DEBUG"
        case 1:
            level_str = "INFO"
        case 0:
            level_str = "SUCCESS"
        case -1:
            level_str = "WARNING"
        case -2:
            level_str = "ERROR"
        case d if d <= -3:  # noqa: PLR2004
            level_str = "CRITICAL"
    logger.add(sys.stderr, level=level_str)
    logger.debug(f"Logger configured at level: {level_str}")


# ---------------------------- CIGAR UTILITIES ------------------------------ #


class CigarOp(NamedTuple):
    """One CIGAR run: (operation code, run length)."""

    op: int
    length: int

    @staticmethod
    def from_tuple(t: tuple[int, int]) -> CigarOp:
        """Convert a raw (op, len) tuple to CigarOp."""
        op, ln = t
        return CigarOp(op, ln)

    @staticmethod
    def to_tuple(run: CigarOp) -> tuple[int, int]:
        """Convert a CigarOp back to a raw (op, len) tuple."""
        return (run.op, run.length)

    @property
    def kind(self) -> CigarOpKind:
        return CigarOpKind(self.op)

    @property
    def read_length(self) -> int:
        """Read bases covered by this run."""
        return self.length if self.op in QRY_CONSUME else 0


class Cigar(list[CigarOp]):
    """A list of CigarOp with helpers for conversion, compaction and counting."""

    @classmethod
    def from_pysam(cls, cig_raw: list[tuple[int, int]] | None) -> Cigar | None:
        """
        Convert pysam's list[(op, len)] to a Cigar. Returns None if input is None.
        """
        if cig_raw is None:
            return None
        return cls(CigarOp.from_tuple(t) for t in cig_raw)

    @classmethod
    def compacted(cls, runs: Iterable[CigarOp]) -> Cigar:
        """Build a Cigar from `runs`, merging equal neighbours and dropping empty runs."""
        out = cls()
        for run in runs:
            out.push_compact(run.op, run.length)
        return out

    def to_pysam(self) -> list[tuple[int, int]]:
        """Convert this Cigar back to list[(op, len)] for pysam."""
        return [CigarOp.to_tuple(run) for run in self]

    def push_compact(self, op: int, ln: int) -> None:
        """
        Append (op, ln), merging with the last run if `op` matches.
        Ignores non-positive lengths.
        """
        # Positive invariant: operation code must be valid CIGAR operation (0-8)
        assert 0 <= op <= 8, (  # noqa: PLR2004
            f"Invalid CIGAR operation code {op}: must be 0-8 (M,I,D,N,S,H,P,=,X)"
        )

        if ln <= 0:
            return
        if self and self[-1].op == op:
            last = self[-1]
            # Negative invariant: merged length must stay within the BAM limit
            assert last.length + ln <= (1 << 28) - 1, (
                f"CIGAR length overflow: {last.length} + {ln} exceeds maximum safe integer"
            )
            self[-1] = CigarOp(op, last.length + ln)
            return
        self.append(CigarOp(op, ln))

    def read_length(self) -> int:
        """Number of read bases represented by this Cigar."""
        return sum(run.length for run in self if run.op in QRY_CONSUME)

    def reference_length(self) -> int:
        """Number of reference bases spanned by this Cigar."""
        return sum(run.length for run in self if run.op in REF_CONSUME)

    def leading_hard_clips(self) -> int:
        total = 0
        for run in self:
            if run.op != CigarOpKind.HARD_CLIP:
                break
            total += run.length
        return total

    def trailing_hard_clips(self) -> int:
        total = 0
        for run in reversed(self):
            if run.op != CigarOpKind.HARD_CLIP:
                break
            total += run.length
        return total

    def __str__(self) -> str:
        if not self:
            return "*"
        return "".join(f"{run.length}{CIGAR_SYMBOLS[run.op]}" for run in self)


class CigarShift(NamedTuple):
    """A cleaned hard-clipped Cigar and the extra read bases lost at each edge."""

    cigar: Cigar
    shift_from_start: int
    shift_from_end: int


# ---------------------------- CIGAR REWRITING ------------------------------ #


def soft_clip_cigar(cigar: Cigar, start: int, stop: int) -> Cigar:
    """
    Soft clip the read bases [start, stop) of `cigar`.

    The interval must touch the left edge (start == 0) or reach the last read
    base. Runs straddling the interval are split so that the S part sits on the
    clipped side. Deletions and skips lying inside the interval are dropped,
    since soft-clipped bases are not placed on the reference.

    Returns
    -------
    Cigar
        The rewritten, compacted Cigar. Read length is unchanged.
    """
    # Positive invariant: interval must be well formed
    assert 0 <= start <= stop, f"Invalid soft clip interval [{start}, {stop})"

    clip_left = start == 0
    out = Cigar()
    element_start = 0
    for run in cigar:
        kind = CigarOpKind(run.op)
        if kind is CigarOpKind.HARD_CLIP:
            out.push_compact(run.op, run.length)
            continue

        element_end = element_start + run.read_length
        if element_end <= start or element_start >= stop:
            out.push_compact(run.op, run.length)
        elif kind.consumes_read:
            clipped = min(element_end, stop) - max(element_start, start)
            unclipped = run.length - clipped
            if clip_left:
                out.push_compact(CigarOpKind.SOFT_CLIP, clipped)
                out.push_compact(run.op, unclipped)
            else:
                out.push_compact(run.op, unclipped)
                out.push_compact(CigarOpKind.SOFT_CLIP, clipped)
        element_start = element_end

    # Negative invariant: soft clipping never changes the read length
    assert out.read_length() == cigar.read_length(), (
        f"Soft clip changed read length: {cigar} -> {out}"
    )
    return out


def hard_clip_cigar(cigar: Cigar, start: int, stop: int) -> CigarShift:
    """
    Hard clip the read bases [start, stop) of `cigar`.

    Existing hard clips at either edge are absorbed into the new ones, so the
    result carries at most one H run per edge. Runs wholly inside the interval
    are dropped and straddling runs keep their unclipped remainder. The raw
    result is passed through `clean_hard_clipped_cigar`.
    """
    # Positive invariant: interval must be well formed
    assert 0 <= start <= stop, f"Invalid hard clip interval [{start}, {stop})"

    clip_left = start == 0
    requested = stop - start
    total_left = cigar.leading_hard_clips() + (requested if clip_left else 0)
    total_right = cigar.trailing_hard_clips() + (0 if clip_left else requested)

    raw = Cigar()
    raw.push_compact(CigarOpKind.HARD_CLIP, total_left)

    element_start = 0
    for run in cigar:
        # edge hard clips were absorbed above
        if run.op == CigarOpKind.HARD_CLIP:
            continue
        element_end = element_start + run.read_length

        if element_end <= start or element_start >= stop:
            raw.push_compact(run.op, run.length)
        else:
            unclipped = element_end - stop if clip_left else start - element_start
            raw.push_compact(run.op, unclipped)
        element_start = element_end

    raw.push_compact(CigarOpKind.HARD_CLIP, total_right)
    logger.trace(f"Raw hard clip of {cigar} at [{start}, {stop}): {raw}")
    return clean_hard_clipped_cigar(raw)


# ---------------------------- ALIGNMENT SHIFTS ----------------------------- #


def new_alignment_start_offset(clipped: Cigar, old: Cigar) -> int:
    """
    Reference bases the alignment start moves by when `old` becomes `clipped`.

    Counts the read bases the clipped Cigar places before its first aligned
    base, then walks the old Cigar over that many read bases and sums the
    reference it covers. Leading D/N runs of the clipped Cigar are subtracted.
    A partial subtraction leaves the sum negative, so the absolute value is
    returned.
    """
    read_bases_before_reference = 0
    ref_offset = 0

    for run in clipped:
        kind = CigarOpKind(run.op)
        if not kind.consumes_reference:
            if kind.consumes_read:
                read_bases_before_reference += run.length
        elif not kind.consumes_read:
            ref_offset -= run.length
        else:
            break

    read_counter = 0
    for run in old:
        kind = CigarOpKind(run.op)
        cur_read = run.read_length
        cur_ref = run.length

        truncated = read_counter + cur_read > read_bases_before_reference
        if truncated:
            cur_read = read_bases_before_reference - read_counter
            cur_ref = cur_read

        if not kind.consumes_reference:
            cur_ref = 0

        read_counter += cur_read
        ref_offset += cur_ref

        if read_counter > read_bases_before_reference or truncated:
            break

    return abs(ref_offset)


def alignment_start_shift(old: Cigar, read_bases_clipped: int) -> int:
    """
    Reference bases covered by the first `read_bases_clipped` read bases of `old`.

    When the cutoff falls exactly on a run boundary, deletions and skips that
    immediately follow are counted too; they would otherwise be left dangling
    at the new start.
    """
    # Positive invariant: cutoff must be non-negative
    assert read_bases_clipped >= 0, (
        f"Clipped read bases must be non-negative, got {read_bases_clipped}"
    )

    read_clipped = 0
    ref_clipped = 0
    truncated = False

    runs = iter(old)
    for run in runs:
        kind = CigarOpKind(run.op)
        cur_ref = run.length
        cur_read = run.read_length

        truncated = read_clipped + cur_read > read_bases_clipped
        if truncated:
            cur_read = read_bases_clipped - read_clipped
            cur_ref = cur_read

        if not kind.consumes_reference:
            cur_ref = 0

        read_clipped += cur_read
        ref_clipped += cur_ref

        if read_clipped >= read_bases_clipped or truncated:
            break

    if read_clipped == read_bases_clipped and not truncated:
        for run in runs:
            kind = CigarOpKind(run.op)
            if kind.consumes_read or not kind.consumes_reference:
                break
            ref_clipped += run.length

    return ref_clipped


def _hard_soft_offset(cigar: Cigar) -> int:
    """Length of the leading run of H elements followed by S elements."""
    size = 0
    i = 0
    while i < len(cigar) and cigar[i].op == CigarOpKind.HARD_CLIP:
        size += cigar[i].length
        i += 1
    while i < len(cigar) and cigar[i].op == CigarOpKind.SOFT_CLIP:
        size += cigar[i].length
        i += 1
    return size


def clip_offset_shift(old: Cigar, new: Cigar) -> int:
    """
    Shift of the alignment start between `old` and `new` from their leading clips.

    Only valid when the bases whose clip status changed contain no indels,
    which holds when soft clips are reverted to matches.
    """
    return _hard_soft_offset(new) - _hard_soft_offset(old)


# ----------------------------- CIGAR CLEANUP ------------------------------- #


def _strip_stranded_edge(runs: Sequence[CigarOp]) -> tuple[list[CigarOp], int]:
    """
    Scan `runs` from its first element inward.

    Until the first read-consuming run, H lengths are accumulated and D/N/P
    runs are dropped. The accumulated H is emitted once, right before that
    first read-consuming run, and everything after it is copied unchanged.
    """
    shift = 0
    total_hard_clip = 0
    read_has_started = False
    out: list[CigarOp] = []

    for run in runs:
        kind = CigarOpKind(run.op)
        if not read_has_started and kind is CigarOpKind.HARD_CLIP:
            total_hard_clip += run.length

        read_has_started |= kind.consumes_read

        if read_has_started:
            if not out and total_hard_clip > 0:
                out.append(CigarOp(CigarOpKind.HARD_CLIP, total_hard_clip))
            out.append(run)

    return out, shift


def clean_hard_clipped_cigar(cigar: Cigar) -> CigarShift:
    """
    Remove deletions/skips stranded between an edge hard clip and the first
    (or last) read base, folding edge hard clips into a single run.

    The first pass walks from the end of the Cigar, the second from the start
    of the first pass's output.
    """
    from_end, shift_from_end = _strip_stranded_edge(list(reversed(cigar)))
    from_start, shift_from_start = _strip_stranded_edge(list(reversed(from_end)))

    clean = Cigar.compacted(from_start)
    if clean != cigar:
        logger.trace(f"Cleaned hard-clipped CIGAR {cigar} -> {clean}")
    return CigarShift(clean, shift_from_start, shift_from_end)


# ----------------------------- READ MUTATION ------------------------------- #


def clone_read(read: pysam.AlignedSegment) -> pysam.AlignedSegment:
    """Independent copy of `read`; writes to the copy never reach the original."""
    return copy.copy(read)


def read_bases(read: pysam.AlignedSegment) -> str:
    return read.query_sequence or ""


def alignment_start(read: pysam.AlignedSegment) -> int:
    """1-based alignment start (0 for a read without a position)."""
    return read.reference_start + 1


def set_alignment_start(read: pysam.AlignedSegment, position: int) -> None:
    """Move `read` to the 1-based `position` on its current contig."""
    # Negative invariant: SAM cannot represent positions before the contig
    assert position >= FIRST_POSITION, (
        f"Alignment start for '{read.query_name}' must be >= {FIRST_POSITION}, got {position}"
    )
    read.reference_start = position - 1


def read_cigar(read: pysam.AlignedSegment) -> Cigar:
    return Cigar.from_pysam(read.cigartuples) or Cigar()


def has_base_indel_qualities(
    read: pysam.AlignedSegment,
    settings: ClipSettings = DEFAULT_SETTINGS,
) -> bool:
    return read.has_tag(settings.insertion_quality_tag) or read.has_tag(
        settings.deletion_quality_tag,
    )


def base_indel_qualities(
    read: pysam.AlignedSegment,
    tag: str,
    settings: ClipSettings = DEFAULT_SETTINGS,
) -> list[int]:
    """Per-base qualities stored in `tag`, or the default when it is absent."""
    if read.has_tag(tag):
        return list(pysam.qualitystring_to_array(read.get_tag(tag)))
    return [settings.default_indel_quality] * len(read_bases(read))


def set_base_indel_qualities(
    read: pysam.AlignedSegment,
    tag: str,
    qualities: Sequence[int],
) -> None:
    read.set_tag(tag, pysam.qualities_to_qualitystring(qualities), value_type="Z")


def empty_read(read: pysam.AlignedSegment) -> pysam.AlignedSegment:
    """
    An unmapped copy of `read` with no bases, qualities, CIGAR or tags.

    Only the read group is kept, so the record can still be attributed.
    """
    read_group = read.get_tag(READ_GROUP_TAG) if read.has_tag(READ_GROUP_TAG) else None

    empty = clone_read(read)
    empty.is_unmapped = True
    empty.mapping_quality = 0
    empty.cigartuples = None
    empty.query_sequence = None
    empty.query_qualities = None
    empty.set_tags([])
    if read_group is not None:
        empty.set_tag(READ_GROUP_TAG, read_group, value_type="Z")

    logger.debug(f"Read '{read.query_name}' clipped to an empty, unmapped read.")
    return empty


def write_unknown_bases(
    read: pysam.AlignedSegment,
    start: int,
    stop: int,
    settings: ClipSettings = DEFAULT_SETTINGS,
) -> None:
    """Overwrite bases [start, stop) of `read` in place with the unknown base."""
    bases = read.query_sequence
    if bases is None:
        return
    # setting query_sequence drops the qualities, so keep them aside
    quals = read.query_qualities
    end = min(len(bases), stop)
    masked = settings.unknown_base * max(0, end - start)
    read.query_sequence = bases[:start] + masked + bases[end:]
    read.query_qualities = quals


def write_zero_qualities(
    read: pysam.AlignedSegment,
    start: int,
    stop: int,
    settings: ClipSettings = DEFAULT_SETTINGS,
) -> None:
    """Overwrite qualities [start, stop) of `read` in place with the clipped quality."""
    quals = read.query_qualities
    if quals is None:
        return
    for i in range(start, min(len(quals), stop)):
        quals[i] = settings.clipped_quality
    read.query_qualities = quals


def hard_clip_read(
    read: pysam.AlignedSegment,
    start: int,
    stop: int,
    settings: ClipSettings = DEFAULT_SETTINGS,
) -> pysam.AlignedSegment:
    """
    Hard clip read bases [start, stop) and return the shortened copy.

    Sequence, qualities and indel qualities (if present) are sliced
    consistently with the cleaned CIGAR. A left clip of a mapped read moves
    the alignment start by the reference bases the clipped span covered.
    Works on reads whose alignment start is not yet valid, which lets
    reverted soft clips be trimmed back onto the contig.

    Returns
    -------
    pysam.AlignedSegment
        A copy of `read`, or an empty unmapped read if nothing remains.
    """
    cigar = read_cigar(read)
    if read.is_unmapped:
        cigar_shift = CigarShift(Cigar(), 0, 0)
    else:
        cigar_shift = hard_clip_cigar(cigar, start, stop)

    bases = read_bases(read)
    new_length = (
        len(bases)
        - (stop - start)
        - cigar_shift.shift_from_start
        - cigar_shift.shift_from_end
    )

    # Positive invariant: cannot remove more bases than the read has
    assert new_length >= 0, (
        f"Hard clip [{start}, {stop}) removes more bases than '{read.query_name}' has "
        f"({len(bases)})"
    )
    if new_length == 0:
        return empty_read(read)

    copy_start = stop + cigar_shift.shift_from_start if start == 0 else cigar_shift.shift_from_start
    copy_end = copy_start + new_length
    quals = read.query_qualities

    clipped = clone_read(read)
    clipped.query_sequence = bases[copy_start:copy_end]
    clipped.query_qualities = None if quals is None else quals[copy_start:copy_end]
    clipped.cigartuples = cigar_shift.cigar.to_pysam() or None

    # Positive invariant: qualities stay aligned with bases
    if clipped.query_qualities is not None:
        assert len(clipped.query_qualities) == len(clipped.query_sequence), (
            f"Quality length {len(clipped.query_qualities)} != sequence length "
            f"{len(clipped.query_sequence)} after hard clip of '{read.query_name}'"
        )

    if start == 0 and not read.is_unmapped:
        set_alignment_start(
            clipped,
            alignment_start(read) + alignment_start_shift(cigar, stop - start),
        )

    if has_base_indel_qualities(read, settings):
        for tag in (settings.insertion_quality_tag, settings.deletion_quality_tag):
            indel_quals = base_indel_qualities(read, tag, settings)
            set_base_indel_qualities(clipped, tag, indel_quals[copy_start:copy_end])

    # Negative invariant: CIGAR must describe exactly the bases that are left
    if not read.is_unmapped:
        assert cigar_shift.cigar.read_length() == new_length, (
            f"HARD_CLIP sequence/CIGAR mismatch for '{read.query_name}': "
            f"seq_len={new_length}, cigar={cigar_shift.cigar}"
        )
    return clipped


def revert_soft_clipped_bases(
    read: pysam.AlignedSegment,
    settings: ClipSettings = DEFAULT_SETTINGS,
) -> pysam.AlignedSegment:
    """
    Turn every run of consecutive S/M elements back into a single M run and
    move the alignment start left by the soft clip that was reverted.
    The shift comes from the leading H/S clip offsets of the two CIGARs.

    If the unclipped read would start at or before position 0, the overhang
    is hard clipped so the result starts at position 1.
    """
    unclipped = clone_read(read)
    if read.is_unmapped:
        logger.debug(f"Nothing to revert on unmapped read '{read.query_name}'.")
        return unclipped

    old = read_cigar(read)
    new = Cigar()
    matches = 0
    for run in old:
        if run.op in (CigarOpKind.SOFT_CLIP, CigarOpKind.MATCH):
            matches += run.length
            continue
        new.push_compact(CigarOpKind.MATCH, matches)
        matches = 0
        new.push_compact(run.op, run.length)
    new.push_compact(CigarOpKind.MATCH, matches)

    unclipped.cigartuples = new.to_pysam()
    new_start = alignment_start(read) + clip_offset_shift(old, new)

    if new_start >= FIRST_POSITION:
        set_alignment_start(unclipped, new_start)
        return unclipped

    # The reverted bases hang off the front of the contig. Pin the read to
    # position 1 and hard clip the overhang.
    logger.debug(
        f"Reverted start {new_start} of '{read.query_name}' is off-contig; "
        f"hard clipping {FIRST_POSITION - new_start} bases.",
    )
    set_alignment_start(unclipped, FIRST_POSITION)
    unclipped = hard_clip_read(unclipped, 0, FIRST_POSITION - new_start, settings)

    # an empty read has no position to restore
    if not unclipped.is_unmapped:
        set_alignment_start(unclipped, FIRST_POSITION)
    return unclipped


# ------------------------------ CORE LOGIC --------------------------------- #


@dataclass(frozen=True)
class ClippingOp:
    """
    A clip over the half-open read-base interval [start, stop).

    `apply` never mutates the read it is given: every representation works on
    a private copy and returns it.
    """

    start: int
    stop: int

    @property
    def length(self) -> int:
        return self.stop - self.start

    def apply(
        self,
        representation: ClippingRepresentation,
        read: pysam.AlignedSegment,
        settings: ClipSettings = DEFAULT_SETTINGS,
    ) -> pysam.AlignedSegment:
        """
        Clip `read` using `representation`.

        Raises
        ------
        ClippingError
            With kind PRECONDITION, CONTRACT or INVALID_ARGUMENT.
        """
        self._validate_interval(read)

        match representation:
            case ClippingRepresentation.WRITE_NS:
                clipped = clone_read(read)
                write_unknown_bases(clipped, self.start, self.stop, settings)
            case ClippingRepresentation.WRITE_Q0S:
                clipped = clone_read(read)
                write_zero_qualities(clipped, self.start, self.stop, settings)
            case ClippingRepresentation.WRITE_NS_Q0S:
                clipped = clone_read(read)
                write_unknown_bases(clipped, self.start, self.stop, settings)
                write_zero_qualities(clipped, self.start, self.stop, settings)
            case ClippingRepresentation.HARDCLIP_BASES:
                clipped = self._hard_clip(read, settings)
            case ClippingRepresentation.SOFTCLIP_BASES:
                clipped = self._soft_clip(read)
            case ClippingRepresentation.REVERT_SOFTCLIPPED_BASES:
                clipped = revert_soft_clipped_bases(read, settings)
            case _:
                self._fail(
                    ClipErrorKind.INVALID_ARGUMENT,
                    f"Unexpected clipping representation {representation!r}",
                    read,
                )

        logger.debug(
            f"{representation.name} [{self.start}, {self.stop}) on '{read.query_name}': "
            f"cigar {read_cigar(read)} -> {read_cigar(clipped)}, "
            f"start {alignment_start(read)} -> {alignment_start(clipped)}",
        )
        return clipped

    def try_apply(
        self,
        representation: ClippingRepresentation,
        read: pysam.AlignedSegment,
        settings: ClipSettings = DEFAULT_SETTINGS,
    ) -> ClipResult:
        """Like `apply`, but reports a refused clip as `ClipResult.error`."""
        try:
            return ClipResult(self.apply(representation, read, settings))
        except ClippingError as err:
            return ClipResult(None, err)

    def _hard_clip(
        self,
        read: pysam.AlignedSegment,
        settings: ClipSettings,
    ) -> pysam.AlignedSegment:
        read_len = len(read_bases(read))
        if self.length > 0 and self.start > 0 and self.stop < read_len:
            self._fail(
                ClipErrorKind.CONTRACT,
                f"Cannot hard clip the middle of read '{read.query_name}' "
                f"at {self.start}-{self.stop} (length {read_len})",
                read,
            )
        return hard_clip_read(read, self.start, self.stop, settings)

    def _soft_clip(self, read: pysam.AlignedSegment) -> pysam.AlignedSegment:
        if read.is_unmapped:
            self._fail(
                ClipErrorKind.PRECONDITION,
                f"Read Clipper cannot soft clip unmapped read '{read.query_name}'",
                read,
            )

        read_len = len(read_bases(read))
        # BAM cannot hold a read with every base soft clipped, so keep one
        my_stop = max(self.start, min(self.stop, self.start + read_len - 1))
        if self.start > 0 and my_stop != read_len:
            self._fail(
                ClipErrorKind.CONTRACT,
                "Cannot apply soft clipping operator to the middle of a read: "
                f"{read.query_name} to be clipped at {self.start}-{my_stop}",
                read,
            )

        old = read_cigar(read)
        new = soft_clip_cigar(old, self.start, my_stop)

        clipped = clone_read(read)
        clipped.cigartuples = new.to_pysam()
        set_alignment_start(
            clipped,
            alignment_start(read) + new_alignment_start_offset(new, old),
        )
        return clipped

    def _validate_interval(self, read: pysam.AlignedSegment) -> None:
        read_len = len(read_bases(read))
        if self.start < 0 or self.stop < self.start or self.stop > read_len:
            self._fail(
                ClipErrorKind.INVALID_ARGUMENT,
                f"Invalid clipping interval [{self.start}, {self.stop}) "
                f"for read '{read.query_name}' of length {read_len}",
                read,
            )

    def _fail(
        self,
        kind: ClipErrorKind,
        msg: str,
        read: pysam.AlignedSegment,
    ) -> NoReturn:
        logger.error(msg)
        raise ClippingError(
            kind,
            msg,
            read_name=read.query_name,
            interval=(self.start, self.stop),
        )


def apply_clip(
    read: pysam.AlignedSegment,
    start: int,
    stop: int,
    representation: ClippingRepresentation,
    settings: ClipSettings = DEFAULT_SETTINGS,
) -> pysam.AlignedSegment:
    """Clip read bases [start, stop) of `read`; see `ClippingOp.apply`."""
    return ClippingOp(start, stop).apply(representation, read, settings)


# --------------------------------- CLI ------------------------------------- #

REPRESENTATION_CHOICES: dict[str, ClippingRepresentation] = {
    "write-ns": ClippingRepresentation.WRITE_NS,
    "write-q0s": ClippingRepresentation.WRITE_Q0S,
    "write-ns-q0s": ClippingRepresentation.WRITE_NS_Q0S,
    "hard-clip": ClippingRepresentation.HARDCLIP_BASES,
    "soft-clip": ClippingRepresentation.SOFTCLIP_BASES,
    "revert-soft-clip": ClippingRepresentation.REVERT_SOFTCLIPPED_BASES,
}

# Placeholder contig length for reads built on the command line
CLI_CONTIG_LENGTH: int = 1 << 29
CLI_DEFAULT_QUALITY: int = 30


def build_parser() -> argparse.ArgumentParser:
    """
    CLI:
      -v / -vv / -vvv : increase verbosity (INFO -> DEBUG -> TRACE)
      -q / -qq / -qqq : decrease verbosity (INFO -> WARNING -> ERROR -> CRITICAL)
    (Mutually exclusive.)
    """
    p = argparse.ArgumentParser(
        description=(
            "Clip a single read described on the command line and print the result as\n"
            "  name, 1-based position, CIGAR, bases, qualities (tab-separated).\n"
            "Bases, qualities, CIGAR and alignment start are updated consistently."
        ),
    )

    # Read
    read_group = p.add_argument_group("Read")
    read_group.add_argument("--name", default="read", help="Read name")
    read_group.add_argument("--seq", required=True, help="Read bases")
    read_group.add_argument(
        "--qual",
        default=None,
        help=f"Phred+33 quality string (default: Q{CLI_DEFAULT_QUALITY} everywhere)",
    )
    read_group.add_argument(
        "--cigar",
        default=None,
        help="CIGAR string (default: one M run over the whole read)",
    )
    read_group.add_argument("--contig", default="chr1", help="Contig name")
    read_group.add_argument(
        "--pos",
        type=int,
        default=1,
        help="1-based alignment start",
    )
    read_group.add_argument(
        "--unmapped",
        action="store_true",
        help="Treat the read as unmapped (no CIGAR, no position)",
    )
    read_group.add_argument(
        "--insertion-quals",
        default=None,
        help="Phred+33 base insertion qualities (BI tag)",
    )
    read_group.add_argument(
        "--deletion-quals",
        default=None,
        help="Phred+33 base deletion qualities (BD tag)",
    )

    # Clip
    clip_group = p.add_argument_group("Clipping Configuration")
    clip_group.add_argument(
        "--start",
        type=int,
        default=0,
        help="First read base to clip (0-based, inclusive)",
    )
    clip_group.add_argument(
        "--stop",
        type=int,
        default=None,
        help="Read base to stop clipping at (0-based, exclusive; default: read length)",
    )
    clip_group.add_argument(
        "--representation",
        choices=list(REPRESENTATION_CHOICES),
        default="hard-clip",
        help=(
            "How to represent clipped bases:\n"
            "  write-ns / write-q0s / write-ns-q0s: overwrite bases and/or qualities\n"
            "  hard-clip: remove bases, record as H\n"
            "  soft-clip: keep bases, record as S\n"
            "  revert-soft-clip: turn soft clips back into aligned bases"
        ),
    )

    # Verbosity: -v/-vv/-vvv or -q/-qq/-qqq (mutually exclusive)
    g = p.add_mutually_exclusive_group()
    g.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (use up to -vvv).",
    )
    g.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Decrease verbosity (use up to -qqq).",
    )

    return p


def build_read(args: argparse.Namespace) -> pysam.AlignedSegment:
    """Assemble a pysam read from parsed CLI arguments."""
    header = pysam.AlignmentHeader.from_dict(
        {"SQ": [{"SN": args.contig, "LN": CLI_CONTIG_LENGTH}]},
    )
    read = pysam.AlignedSegment(header)
    read.query_name = args.name
    read.query_sequence = args.seq
    if args.qual is None:
        read.query_qualities = [CLI_DEFAULT_QUALITY] * len(args.seq)
    else:
        read.query_qualities = pysam.qualitystring_to_array(args.qual)

    if args.unmapped:
        read.is_unmapped = True
    else:
        read.reference_name = args.contig
        read.cigarstring = args.cigar or f"{len(args.seq)}M"
        set_alignment_start(read, args.pos)
        read.mapping_quality = 60

    if args.insertion_quals is not None:
        read.set_tag(DEFAULT_SETTINGS.insertion_quality_tag, args.insertion_quals, value_type="Z")
    if args.deletion_quals is not None:
        read.set_tag(DEFAULT_SETTINGS.deletion_quality_tag, args.deletion_quals, value_type="Z")
    return read


def format_read(read: pysam.AlignedSegment) -> str:
    """Tab-separated name, position, CIGAR, bases, qualities and indel-quality tags."""
    quals = read.query_qualities
    fields = [
        read.query_name or "*",
        str(0 if read.is_unmapped else alignment_start(read)),
        read.cigarstring or "*",
        read.query_sequence or "*",
        "*" if quals is None else pysam.qualities_to_qualitystring(quals),
    ]
    for tag in (DEFAULT_SETTINGS.insertion_quality_tag, DEFAULT_SETTINGS.deletion_quality_tag):
        if read.has_tag(tag):
            fields.append(f"{tag}:Z:{read.get_tag(tag)}")
    return "\t".join(fields)


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose, args.quiet)

    for label, value in (
        ("--qual", args.qual),
        ("--insertion-quals", args.insertion_quals),
        ("--deletion-quals", args.deletion_quals),
    ):
        if value is not None and len(value) != len(args.seq):
            parser.error(f"{label} has {len(value)} values but --seq has {len(args.seq)} bases")
    if not args.unmapped and args.pos < FIRST_POSITION:
        parser.error(f"--pos must be >= {FIRST_POSITION} for a mapped read")

    representation = REPRESENTATION_CHOICES[args.representation]
    read = build_read(args)
    if not read.is_unmapped:
        cigar_bases = read_cigar(read).read_length()
        if cigar_bases != len(args.seq):
            parser.error(
                f"--cigar {args.cigar!r} covers {cigar_bases} read bases "
                f"but --seq has {len(args.seq)}",
            )
    stop = len(args.seq) if args.stop is None else args.stop
    logger.info(
        f"Clipping '{read.query_name}' [{args.start}, {stop}) with {representation.name}.",
    )

    result = ClippingOp(args.start, stop).try_apply(representation, read)
    if not result.ok:
        logger.error(f"Clip refused ({result.error.kind.name}).")
        sys.exit(1)

    print(format_read(result.read))
    logger.success(f"Clipped '{read.query_name}'.")


if __name__ == "__main__":
    main()
