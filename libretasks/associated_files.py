"""Associated file lookup and label-file decoding.

Associated files (label maps, vocabularies, ...) live in a zip archive:
either the one appended to a metadata-populated model, or the task bundle
the model was loaded from.  Lookups return zero-copy ``memoryview`` slices
of the archive buffer.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .container import Archive
from .errors import InconsistentError

__all__ = ["AssociatedFileStore", "LabelSet", "text_lines"]


class AssociatedFileStore:
    """Resolve associated files by name across an ordered list of archives."""

    def __init__(self, archives: Sequence[Optional[Archive]] = ()):
        self._archives: Tuple[Archive, ...] = tuple(a for a in archives if a is not None)

    def __bool__(self) -> bool:
        return bool(self._archives)

    @property
    def names(self) -> List[str]:
        names = []
        for archive in self._archives:
            names.extend(n for n in archive.names if n not in names)
        return names

    def get(self, name: str) -> memoryview:
        """Return the bytes of associated file *name*.

        Raises:
            InconsistentError: if the model carries no associated files, or
                none of them is called *name*.
        """
        if not self._archives:
            raise InconsistentError("Model has no associated files present")
        for archive in self._archives:
            data = archive.read(name)
            if data is not None:
                return data
        raise InconsistentError(f"Associated file {name!r} not found in model")


def text_lines(data) -> List[str]:
    """Split newline-delimited UTF-8 *data* into lines (lossy decode).

    ``\\n`` and ``\\r\\n`` both end a line; a trailing newline does not
    produce an empty last line.
    """
    if data is None:
        return []
    text = bytes(data).decode("utf-8", errors="replace")
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


@dataclass(frozen=True)
class LabelSet:
    """Category names, and optional locale display names, indexed by output position.

    The display-name list is independent of the name list: a shorter locale
    file simply leaves trailing categories without a display name.
    """

    names: Tuple[str, ...] = ()
    display_names: Tuple[str, ...] = ()

    @classmethod
    def from_files(cls, labels, labels_locale=None) -> "LabelSet":
        return cls(
            names=tuple(text_lines(labels)),
            display_names=tuple(text_lines(labels_locale)),
        )

    def __len__(self) -> int:
        return len(self.names)

    def name(self, index: int) -> Optional[str]:
        if 0 <= index < len(self.names):
            return self.names[index]
        return None

    def display_name(self, index: int) -> Optional[str]:
        if 0 <= index < len(self.display_names):
            return self.display_names[index]
        return None
