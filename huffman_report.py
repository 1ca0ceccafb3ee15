#!/usr/bin/env python3

"""Huffman code report for the bytes of a file.

`report()` counts the occurrences of every byte value in a given binary
stream, builds a Huffman tree out of those counts and writes, for every
byte value in the tree, its code together with the code's length and
the number of occurrences. The report ends with the projected size of
the encoding, i.e. the sum of `occurrences * code_length`. The format of
a report line is:

    'a' :                   010 ( 3 *     1532)

where the newline character is shown as the two characters `\\n` (in a
field one column narrower to keep the columns aligned). The last line
reads `<total> bytes`.

The tree is built by repeatedly merging the two lowest weight nodes of
a `MergeQueue`. Ties are broken by arrival order, so the leaves are
seeded in ascending byte value order to get a deterministic tree (and
thus deterministic codes) for inputs with equal counts.

Note:
    No actual encoding is written, only the report.

    The null byte `\\x00` is counted and is part of the tree, but it is
    never reported (see `REPORT_TERMINATOR`).

"""

import argparse
import heapq
import io
import itertools
import logging
import os
import sys
import typing as t
from collections import Counter
from enum import Enum


logger = logging.getLogger(__name__)

# Size of the alphabet, i.e. all possible byte values.
NUM_SYMBOLS = 256

# Byte value that is never reported.
REPORT_TERMINATOR = 0

# Width of the right-aligned code column in the report. The newline is
# displayed using 2 characters and thus gets a column one narrower.
CODE_COLUMN_WIDTH = 21

# Encoding of report lines. Latin-1 maps every code point below 256 to
# the byte of the same value, so bytes are written verbatim.
REPORT_ENCODING = "latin-1"


class HuffmanError(Exception):
    """Base class for errors raised while building the report."""


class QueueUnderflowError(HuffmanError, IndexError):
    """Raised when a merge is attempted with less than 2 queue entries."""


class EmptyInputError(HuffmanError, ValueError):
    """Raised when a Huffman tree is requested for zero symbols."""


class Direction(Enum):
    """Code values for directions (left or right) in Huffman tree."""
    LEFT = 0
    RIGHT = 1


class TreeNode:
    """Node in a Huffman tree, weighted by `freq`."""

    def __init__(self, freq: int) -> None:
        self.freq = freq

    def __str__(self):
        return self.__repr__()


class Leaf(TreeNode):
    def __init__(self, symbol: int, freq: int) -> None:
        if not 0 <= symbol < NUM_SYMBOLS:
            raise ValueError(f"Symbol has to be a byte value: {symbol}")

        super().__init__(freq)
        self.symbol = symbol

    def __repr__(self):
        # Wrap chr(symbol) in repr() as it could be "\n" or similar.
        return f"Leaf(symbol={repr(chr(self.symbol))}, freq={self.freq})"


class Internal(TreeNode):
    """Merge of two subtrees, owning both of them."""

    def __init__(self, left: TreeNode, right: TreeNode) -> None:
        super().__init__(left.freq + right.freq)
        self.left = left
        self.right = right

    def __repr__(self):
        return (
            "Internal("
                f"freq={self.freq}, left={self.left}, right={self.right}"
            ")"
        )


class MergeQueue:
    """Queue of tree nodes in ascending order of weight.

    Entries with equal weight keep their arrival order: a new entry is
    placed just before the first entry with a strictly greater weight.
    Internally a min-heap is used that is keyed by `(weight, sequence)`,
    where `sequence` is an ever increasing insertion counter. Popping
    from that heap gives exactly the order of a sorted list with the
    above insertion rule.

    """

    def __init__(self) -> None:
        self._heap: list[tuple[int, int, TreeNode]] = []
        self._sequence = itertools.count()
        self.weight = 0

    def __len__(self) -> int:
        return len(self._heap)

    def size(self) -> int:
        return len(self._heap)

    def insert(self, node: TreeNode, weight: t.Optional[int] = None) -> None:
        if weight is None:
            weight = node.freq

        # The sequence number is unique, thus the node itself is never
        # compared.
        heapq.heappush(self._heap, (weight, next(self._sequence), node))
        self.weight += weight

    def remove_two_lowest(self) -> tuple[TreeNode, TreeNode]:
        """Removes the two entries at the front of the queue.

        Returns:
            The nodes of the first and second entry (in queue order).

        Raises:
            QueueUnderflowError: If the queue has less than 2 entries.

        """
        if len(self._heap) < 2:
            raise QueueUnderflowError(
                "ERROR: not enough members in queue to remove two"
            )

        weight1, _, node1 = heapq.heappop(self._heap)
        weight2, _, node2 = heapq.heappop(self._heap)
        self.weight -= weight1 + weight2
        return node1, node2

    def pop(self) -> TreeNode:
        """Removes the entry at the front of the queue."""
        if not self._heap:
            raise QueueUnderflowError("ERROR: no members in queue to remove")

        weight, _, node = heapq.heappop(self._heap)
        self.weight -= weight
        return node


def _get_buffering_size(stream: t.IO) -> int:
    # https://github.com/python/cpython/blob/v3.11.0/Lib/_pyio.py#L248
    buffering = io.DEFAULT_BUFFER_SIZE
    try:
        bs = os.fstat(stream.fileno()).st_blksize
    except (OSError, AttributeError):
        pass
    else:
        if bs > 1:
            buffering = bs

    return buffering


def get_freq_table(f_in: t.BinaryIO, buffering: int = -1) -> Counter:
    """Counts the occurrences of every byte value in the stream.

    Args:
        f_in: Binary stream to read until EOF.
        buffering: Number of bytes to read at once. A negative value
            selects the block size of the underlying device, falling
            back on `io.DEFAULT_BUFFER_SIZE`.

    Returns:
        Maps a byte value to its number of occurrences. Byte values that
        do not occur are missing (and thus count as zero).

    """
    if buffering < 0:
        buffering = _get_buffering_size(f_in)
    elif buffering == 0:
        raise ValueError("`buffering` can't be zero.")

    # Uses underlying C implementation of:
    # `_collections._count_elements()`
    freq_table = Counter()
    while (chunk := f_in.read(buffering)):
        freq_table.update(chunk)

    logger.debug("Counted %d bytes", freq_table.total())
    return freq_table


def get_huffman_tree(freq_table: t.Mapping[int, int]) -> TreeNode:
    """Constructs a Huffman tree.

    Leaves are seeded in ascending byte value order, which together with
    the tie-break of `MergeQueue` determines the shape of the tree for
    equal counts. The first node removed from the queue becomes the left
    child of the merged node.

    Raises:
        EmptyInputError: If no byte value has a positive count.

    """
    queue = MergeQueue()
    for symbol in range(NUM_SYMBOLS):
        freq = freq_table.get(symbol, 0)
        if freq > 0:
            queue.insert(Leaf(symbol=symbol, freq=freq))

    if not queue:
        raise EmptyInputError("Can't build a Huffman tree without symbols.")

    logger.debug(
        "Seeded %d leaves with a total weight of %d", len(queue), queue.weight
    )

    while len(queue) >= 2:
        left, right = queue.remove_two_lowest()
        logger.debug("Merging weights %d and %d", left.freq, right.freq)
        queue.insert(Internal(left=left, right=right))

    # Return root node.
    return queue.pop()


def _find_leaf(
    root: TreeNode,
    symbol: int,
    codeword: list[str],
) -> t.Optional[Leaf]:
    # Depth-first, left before right. On success `codeword` holds the
    # digits from the root down to the found leaf.
    if isinstance(root, Leaf):
        return root if root.symbol == symbol else None

    for direction, child in (
        (Direction.LEFT, root.left),
        (Direction.RIGHT, root.right),
    ):
        codeword.append(str(direction.value))
        if (leaf := _find_leaf(child, symbol, codeword)) is not None:
            return leaf
        codeword.pop()

    return None


def get_codeword(root: TreeNode, symbol: int) -> t.Optional[str]:
    """Gets the code of `symbol`, or `None` if it isn't in the tree.

    A tree consisting of a single leaf gives the empty code for its
    symbol.

    """
    codeword: list[str] = []
    if _find_leaf(root, symbol, codeword) is None:
        return None
    return "".join(codeword)


def get_occurrences(root: TreeNode, symbol: int) -> t.Optional[int]:
    leaf = _find_leaf(root, symbol, [])
    return None if leaf is None else leaf.freq


def get_huffman_code(root: TreeNode) -> dict[int, str]:
    """Constructs Huffman code given a Huffman tree.

    Returns:
        Maps a byte value (which corresponds to a leaf node in the
        Huffman tree) to its corresponding code, where the code is
        represented as a string of zeros "0" and ones "1".

    """
    def helper(root: TreeNode) -> None:
        nonlocal ans, codeword

        # Reached a leaf node.
        if isinstance(root, Leaf):
            ans[root.symbol] = "".join(codeword)
            return

        codeword.append(str(Direction.LEFT.value))
        helper(root.left)
        codeword.pop()

        codeword.append(str(Direction.RIGHT.value))
        helper(root.right)
        codeword.pop()

    ans = {}
    codeword = []
    helper(root)
    return ans


class SymbolReport(t.NamedTuple):
    symbol: int
    code: str
    occurrences: int

    @property
    def code_length(self) -> int:
        return len(self.code)

    @property
    def encoded_size(self) -> int:
        return self.occurrences * self.code_length


def get_report(root: TreeNode) -> list[SymbolReport]:
    """Gets the report entries in ascending byte value order.

    Byte values that aren't in the tree are skipped, just like the
    `REPORT_TERMINATOR`.

    """
    entries = []
    for symbol in range(NUM_SYMBOLS):
        if symbol == REPORT_TERMINATOR:
            continue

        codeword: list[str] = []
        leaf = _find_leaf(root, symbol, codeword)
        if leaf is None:
            continue

        entries.append(
            SymbolReport(
                symbol=symbol,
                code="".join(codeword),
                occurrences=leaf.freq,
            )
        )

    return entries


def format_report_line(entry: SymbolReport) -> str:
    if entry.symbol == ord("\n"):
        char, width = "\\n", CODE_COLUMN_WIDTH - 1
    else:
        char, width = chr(entry.symbol), CODE_COLUMN_WIDTH

    return (
        f"'{char}' : {entry.code:>{width}}"
        f" ({entry.code_length:2d} * {entry.occurrences:8d})\n"
    )


def write_report(
    root: t.Optional[TreeNode],
    f_out: t.Optional[t.BinaryIO] = None,
) -> int:
    """Writes the report of the given Huffman tree to `f_out`.

    Args:
        root: Root of the Huffman tree. If `None` is given, i.e. the
            input was empty, then only the total is written.
        f_out: Binary stream to write to. Defaults to the underlying
            binary buffer of stdout.

    Returns:
        The total projected size of the encoding.

    """
    if f_out is None:
        f_out = sys.stdout.buffer

    entries = [] if root is None else get_report(root)
    total = sum(entry.encoded_size for entry in entries)

    lines = itertools.chain(
        map(format_report_line, entries),
        [f"{total} bytes\n"],
    )
    f_out.write("".join(lines).encode(REPORT_ENCODING))

    logger.debug("Reported %d symbols, %d bytes in total", len(entries), total)
    return total


def report(
    f_in: t.BinaryIO,
    f_out: t.Optional[t.BinaryIO] = None,
    buffering: int = -1,
) -> int:
    """Reports the Huffman code of the bytes in `f_in`.

    An empty stream results in a report with a total of zero bytes.

    Returns:
        The total projected size of the encoding.

    """
    freq_table = get_freq_table(f_in, buffering=buffering)
    if not freq_table:
        return write_report(None, f_out=f_out)

    huffman_tree = get_huffman_tree(freq_table)
    # The table is no longer needed once the tree is built.
    del freq_table
    return write_report(huffman_tree, f_out=f_out)


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"ERROR: {message}\n")


def main(argv: t.Optional[t.Sequence[str]] = None) -> int:
    parser = _ArgumentParser(
        prog="huffman-report",
        description="Report the Huffman code of every byte in a file.",
    )
    parser.add_argument("file", help="Path to the file to analyze.")
    parser.add_argument(
        "-b", "--buffering", type=int, default=-1,
        help="Number of bytes to read at once. Defaults to the block size."
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Log debug information to STDERR."
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        f_in = open(args.file, mode="rb")
    except OSError as e:
        logger.debug("Failed to open %s: %s", args.file, e)
        print("ERROR: unable to open file", file=sys.stderr)
        return 1

    try:
        with f_in:
            report(f_in, buffering=args.buffering)
    except MemoryError:
        print("ERROR: unable to allocate space", file=sys.stderr)
        return 1
    except QueueUnderflowError as e:
        print(e, file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    return 0


__all__ = [
    "get_codeword",
    "get_freq_table",
    "get_huffman_code",
    "get_huffman_tree",
    "get_occurrences",
    "get_report",
    "MergeQueue",
    "report",
    "write_report",
]


if __name__ == "__main__":
    sys.exit(main())
