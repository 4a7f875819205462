"""Change-tracking writer for markdown exports."""

import os
import shlex
from pathlib import Path

from loguru import logger


def _raise(x: Exception) -> None:
    raise x


class MarkdownWriter:
    """Write export files in a smart way.

    - Do not rewrite files whose contents are the same.
    - Keep a list of written files; ``finalize`` can remove pre-existing
      ``.md`` files which were not written this time.

    The result is equivalent to emptying the output dir and exporting again,
    but untouched files keep their mtime.
    """

    def __init__(self, out_dir: str | Path, *, dry_run: bool = False) -> None:
        self.out_dir = str(Path(out_dir).resolve())
        self.dry_run = dry_run

        if not dry_run:
            Path(self.out_dir).mkdir(parents=True, exist_ok=True)

        logger.debug("Writer ready, out_dir {!r}, dry_run {!r}", self.out_dir, dry_run)
        # Absolute paths written (or confirmed unchanged) this session.
        self._files_made: set[str] = set()
        self._unique_names: set[str] = set()
        # (action, filename) pairs
        self.updates: list[tuple[str, str]] = []

        self.num_same = 0
        self.num_changed = 0
        self.num_removed = 0

    def is_possible_output(self, fname: str) -> bool:
        """Only markdown files are ever written or cleaned up."""
        return fname.endswith(".md")

    def make_unique_name(self, base: str, *, suffix: str = "") -> str:
        """Append ``-1``, ``-2``... to base until (base + suffix) is unused this session."""
        unique_str = ""
        unique_count = 0
        while True:
            fname = os.path.normpath(Path(self.out_dir) / (base + unique_str + suffix))
            if not fname.startswith(self.out_dir + os.sep):
                msg = f"Path escapes out_dir: {fname!r}"
                raise ValueError(msg)
            if fname not in self._files_made and fname not in self._unique_names:
                break
            unique_count += 1
            unique_str = f"-{unique_count}"

        self._unique_names.add(fname)
        return base + unique_str

    def write_file(self, fname_rel: str, contents: str) -> str:
        """Write contents to a file relative to the output directory.

        Returns:
            The action taken: ``same``, ``update`` or ``create``.
        """
        if Path(fname_rel).is_absolute():
            msg = f"must be relative: {fname_rel!r}"
            raise ValueError(msg)

        fname = os.path.normpath(Path(self.out_dir) / fname_rel)
        if not fname.startswith(self.out_dir + os.sep):
            msg = f"Path escapes out_dir: {fname!r}"
            raise ValueError(msg)
        if not self.is_possible_output(fname):
            msg = f"Wanted to write {fname!r} but is_possible_output() returns False"
            raise ValueError(msg)

        self._files_made.add(fname)
        action = "create"
        try:
            with open(fname, encoding="utf-8") as f:
                if f.read() == contents:
                    self.num_same += 1
                    return "same"
            self.num_changed += 1
            action = "update"
        except (FileNotFoundError, UnicodeDecodeError):
            pass

        self.updates.append((action, fname))

        if self.dry_run:
            logger.info("dry-run: would {} {!r}", action, fname)
        else:
            logger.debug("Writing ({}) {!r}", action, fname)
            Path(fname).parent.mkdir(parents=True, exist_ok=True)
            with open(fname, "w", encoding="utf-8") as f:
                f.write(contents)
        return action

    def finalize(self, *, delete_others: bool = True) -> None:
        """Log update statistics and optionally remove stale markdown files.

        Files that are not markdown are never removed; their presence is
        reported and left alone.
        """
        to_clean: list[str] = []
        foreign: list[str] = []
        if Path(self.out_dir).is_dir():
            for dirpath, dirnames, filenames in os.walk(self.out_dir, onerror=_raise):
                if ".git" in dirnames:
                    dirnames.remove(".git")
                for fname in [str(Path(dirpath) / x) for x in filenames]:
                    if fname in self._files_made:
                        continue
                    if self.is_possible_output(fname):
                        to_clean.append(fname)
                    else:
                        foreign.append(fname)
        to_clean.sort()

        num_new = len(self._files_made) - self.num_same - self.num_changed
        log_msg = (
            f"Outputs: {self.num_same} same, {self.num_changed} changed, "
            f"{num_new} new, {len(to_clean)} stale"
        )
        if self.num_same == len(self._files_made) and not to_clean:
            logger.debug(log_msg)
        else:
            logger.info(log_msg)

        if foreign:
            logger.warning(
                "Leaving {} non-markdown file(s) in output dir: {}",
                len(foreign),
                " ".join(map(shlex.quote, sorted(foreign)[:10])),
            )

        if not to_clean or not delete_others:
            return
        logger.info("Deleting {} stale file(s)", len(to_clean))
        for fname in to_clean:
            self.updates.append(("delete", fname))
            if self.dry_run:
                logger.info("dry-run: would remove {!r}", fname)
            else:
                logger.debug("Removing file: {!r}", fname)
                Path(fname).unlink()
                self.num_removed += 1
