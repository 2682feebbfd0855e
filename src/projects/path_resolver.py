"""Decode Claude Code project directory names back to real filesystem paths.

Claude Code stores session logs under ``~/.claude/projects/<encoded>/`` where
``<encoded>`` is the project's absolute path with every ``/`` replaced by
``-``.  The encoding is lossy: accents are stripped, and spaces and other
punctuation also become ``-``.  So ``/Users/alice/My Project`` turns into
``-Users-alice-My-Project`` and there is no way to split the fragments back
without looking at the disk.

We reconstruct the path by walking the filesystem from the root, greedily
matching groups of fragments against the real entries of each directory.
Decoding never fails: when nothing matches we keep the fragment literally and
carry on, so the result is a best-effort path that may not exist.
"""

from __future__ import annotations

import logging
import os
import re
import unicodedata
from collections.abc import Callable

logger = logging.getLogger(__name__)

# Longest run of fragments tried as a single directory name
MAX_LOOKAHEAD = 8

# Fuzzy matches must cover at least this share of the entry's characters
MIN_FUZZY_COVERAGE = 0.6

_NON_ALNUM = re.compile(r"[^0-9A-Za-z]+")


def fold(text: str) -> str:
    """Remove diacritics, keep case: ``exímIA`` → ``eximIA``."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def encode_path(path: str) -> str:
    """Forward encoding used by Claude Code for project directory names."""
    return re.sub(r"[^0-9A-Za-z]", "-", fold(path))


def _reencode(folded: str) -> str:
    """Encode a single entry name, collapsing runs of separators."""
    return "-".join(part for part in _NON_ALNUM.split(folded) if part)


def _alnum_len(text: str) -> int:
    return sum(1 for c in text if c.isalnum())


def _appear_in_sequence(fragments: list[str], text: str) -> bool:
    """True if every fragment occurs in ``text`` in order (case-insensitive)."""
    lower = text.lower()
    start = 0
    for frag in fragments:
        idx = lower.find(frag.lower(), start)
        if idx < 0:
            return False
        start = idx + len(frag)
    return True


def match_entry(fragments: list[str], entries: list[str]) -> str | None:
    """Find the directory entry that a group of fragments encodes, if any.

    Exact joins (``-``, space, nothing) and the re-encoded entry are tried
    first.  For multi-fragment groups a subsequence match is the fallback,
    scored by how close the fragment length is to the entry length.
    """
    dashed = "-".join(fragments)
    spaced = " ".join(fragments)
    glued = "".join(fragments)
    joins = (dashed, spaced, glued)
    joins_lower = tuple(j.lower() for j in joins)

    for entry in entries:
        folded = fold(entry)
        if folded in joins:
            return entry
        if folded.lower() in joins_lower:
            return entry
        reencoded = _reencode(folded)
        if reencoded == dashed or reencoded.lower() == dashed.lower():
            return entry

    if len(fragments) < 2:
        return None

    frag_chars = sum(len(f) for f in fragments)
    best: tuple[str, int] | None = None
    for entry in entries:
        folded = fold(entry)
        if not _appear_in_sequence(fragments, folded):
            continue
        score = abs(_alnum_len(folded) - frag_chars)
        if best is None or score < best[1]:
            best = (entry, score)

    if best is not None:
        entry_chars = _alnum_len(fold(best[0]))
        if entry_chars > 0 and frag_chars / entry_chars >= MIN_FUZZY_COVERAGE:
            return best[0]
    return None


class PathResolver:
    """Greedy filesystem walker that decodes encoded project directory names.

    ``list_dir`` is injectable so the resolver can be driven by a fake tree;
    it must return the entry names of a directory or raise ``OSError``.
    """

    def __init__(
        self,
        root: str = "/",
        list_dir: Callable[[str], list[str]] | None = None,
    ) -> None:
        self.root = root.rstrip("/") or "/"
        self._list_dir = list_dir or os.listdir

    def _entries(self, path: str) -> list[str] | None:
        try:
            # Sorted so repeated decodes see the same enumeration order
            return sorted(self._list_dir(path))
        except OSError as e:
            logger.debug("Cannot list %s: %s", path, e)
            return None

    def decode(self, dir_name: str) -> str:
        """Decode an encoded directory name into a best-effort absolute path."""
        if not dir_name.startswith("-"):
            return dir_name

        fragments = [f for f in dir_name[1:].split("-") if f]
        if not fragments:
            return self.root

        current = "" if self.root == "/" else self.root
        i = 0
        while i < len(fragments):
            entries = self._entries(current or "/")
            matched: str | None = None
            consumed = 1

            if entries:
                lookahead = min(len(fragments) - i, MAX_LOOKAHEAD)
                for length in range(lookahead, 0, -1):
                    matched = match_entry(fragments[i:i + length], entries)
                    if matched is not None:
                        consumed = length
                        break

            if matched is None:
                matched = fragments[i]
                consumed = 1

            current = f"{current}/{matched}"
            i += consumed

        return current


def display_name(dir_name: str) -> str:
    """Readable project name from an encoded dir name, without touching disk.

    Drops the ``Users-<name>`` / ``Dev`` prefix when present, otherwise
    returns the last fragment.
    """
    parts = dir_name.split("-")
    known_prefixes = ("Users", "home", "Dev", "dev")
    meaningful_from = 0
    for i, part in enumerate(parts):
        if part in known_prefixes:
            meaningful_from = i + 2 if part in ("Users", "home") else i + 1

    if 0 < meaningful_from < len(parts):
        name = "-".join(parts[meaningful_from:])
        if name:
            return name

    last = parts[-1] if parts else ""
    return last or dir_name
