# /// script
# requires-python = ">=3.10"
# dependencies = [
#     "loguru",
#     "pysam",
#     "pytest",
# ]
# ///
"""
Pytest fixtures and configuration for read_clipper testing.

Reads are real pysam AlignedSegments built in memory from a CIGAR string, so
the engine is exercised against the same objects it sees in production. CIGAR
text is converted by pysam itself, never by the code under test.
"""

import sys
from collections.abc import Callable
from pathlib import Path

import pysam
import pytest

# Add bin directory to Python path so we can import the modules under test
BIN_DIR = Path(__file__).parent.parent / "bin"
sys.path.insert(0, str(BIN_DIR))

# Now we can import the modules we're testing
from read_clipper import Cigar

CONTIG = "test_reference"
CONTIG_LENGTH = 10_000


def bases_for(length: int) -> str:
    """Deterministic, non-repeating-enough bases for slicing checks."""
    return ("ACGTTGCA" * (length // 8 + 1))[:length]


def qualities_for(length: int) -> list[int]:
    """Distinct-looking qualities so slices can be told apart."""
    return [10 + (i % 30) for i in range(length)]


def cigar_from_text(text: str) -> Cigar:
    """Parse CIGAR text with pysam and wrap it as a Cigar."""
    seg = pysam.AlignedSegment()
    seg.cigarstring = text
    return Cigar.from_pysam(seg.cigartuples) or Cigar()


@pytest.fixture
def header() -> pysam.AlignmentHeader:
    """Single-contig header for in-memory reads."""
    return pysam.AlignmentHeader.from_dict(
        {
            "HD": {"VN": "1.6", "SO": "unsorted"},
            "SQ": [{"SN": CONTIG, "LN": CONTIG_LENGTH}],
            "RG": [{"ID": "rg1", "SM": "sample"}],
        },
    )


@pytest.fixture
def parse_cigar() -> Callable[[str], Cigar]:
    return cigar_from_text


@pytest.fixture
def make_read(header: pysam.AlignmentHeader) -> Callable[..., pysam.AlignedSegment]:
    """
    Factory for reads. Sequence and qualities default to a length that matches
    the read bases of `cigar`. `pos` is 1-based.
    """

    def _make(
        cigar: str | None = "10M",
        pos: int = 1,
        seq: str | None = None,
        quals: list[int] | None = None,
        name: str = "test_read",
        unmapped: bool = False,
        insertion_quals: str | None = None,
        deletion_quals: str | None = None,
        read_group: str | None = None,
    ) -> pysam.AlignedSegment:
        if seq is None:
            assert cigar is not None, "seq is required for reads without a CIGAR"
            seq = bases_for(cigar_from_text(cigar).read_length())

        read = pysam.AlignedSegment(header)
        read.query_name = name
        read.query_sequence = seq
        read.query_qualities = quals if quals is not None else qualities_for(len(seq))
        if unmapped:
            read.is_unmapped = True
        else:
            read.reference_id = 0
            read.reference_start = pos - 1
            read.mapping_quality = 60
            read.cigarstring = cigar

        if insertion_quals is not None:
            read.set_tag("BI", insertion_quals, value_type="Z")
        if deletion_quals is not None:
            read.set_tag("BD", deletion_quals, value_type="Z")
        if read_group is not None:
            read.set_tag("RG", read_group, value_type="Z")
        return read

    return _make


@pytest.fixture(autouse=True)
def configure_logging_for_tests() -> None:
    """Configure logging for tests to reduce noise."""
    # Remove existing handlers and set to WARNING level for tests
    from loguru import logger

    logger.remove()
    logger.add(sys.stderr, level="WARNING")
