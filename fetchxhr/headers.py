from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping


def _sanitize_header(name: str, value: str) -> tuple[str, str]:
    """
    Sanitize header name and value to prevent HTTP header injection (CRLF injection).
    Strips CR, LF, and null bytes from both name and value.
    """
    clean_name = name.replace("\r", "").replace("\n", "").replace("\x00", "").strip()
    clean_value = value.replace("\r", "").replace("\n", "").replace("\x00", "").strip()
    return clean_name, clean_value


def canonicalize_headers(
    default_headers: Iterable[tuple[str, str]],
    user_headers: Headers | None,
    order: Iterable[str],
) -> list[tuple[str, str]]:
    """
    Merge user headers over defaults while respecting a deterministic order.
    Headers named in `order` come first in that order; the rest follow in
    insertion order, defaults before user-only headers.
    """
    merged: dict[str, list[tuple[str, str]]] = {}
    for name, value in default_headers:
        name, value = _sanitize_header(name, value)
        merged[name.lower()] = [(name, value)]
    if user_headers:
        user: dict[str, list[tuple[str, str]]] = {}
        for name, value in user_headers.to_list():
            user.setdefault(name.lower(), []).append((name, value))
        merged.update(user)

    ordered: list[tuple[str, str]] = []
    for name in order:
        key = name.lower()
        if key in merged:
            ordered.extend(merged.pop(key))
    for pairs in merged.values():
        ordered.extend(pairs)
    return ordered


class Headers:
    """
    Ordered, case-insensitive header collection.

    Lookups ignore case while the original spelling of the first occurrence
    is kept for the wire. Iteration follows insertion order and yields
    lowercased names, with repeated headers combined into one value.
    """

    def __init__(
        self,
        init: Headers | Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
    ) -> None:
        self._entries: list[tuple[str, str]] = []
        if init is None:
            return
        if isinstance(init, Headers):
            pairs: Iterable[tuple[str, str]] = init.to_list()
        elif isinstance(init, Mapping):
            pairs = init.items()
        else:
            pairs = init
        for name, value in pairs:
            self.append(name, value)

    def append(self, name: str, value: str) -> None:
        name, value = _sanitize_header(name, str(value))
        if not name:
            raise ValueError("Header name must not be empty")
        self._entries.append((name, value))

    def set(self, name: str, value: str) -> None:
        name, value = _sanitize_header(name, str(value))
        if not name:
            raise ValueError("Header name must not be empty")
        key = name.lower()
        out: list[tuple[str, str]] = []
        placed = False
        for existing, old in self._entries:
            if existing.lower() != key:
                out.append((existing, old))
            elif not placed:
                # Keep the slot of the first occurrence so ordering is stable.
                out.append((existing, value))
                placed = True
        if not placed:
            out.append((name, value))
        self._entries = out

    def get(self, name: str) -> str | None:
        key = name.lower()
        values = [v for n, v in self._entries if n.lower() == key]
        if not values:
            return None
        return ", ".join(values)

    def has(self, name: str) -> bool:
        key = name.lower()
        return any(n.lower() == key for n, _ in self._entries)

    def delete(self, name: str) -> None:
        key = name.lower()
        self._entries = [(n, v) for n, v in self._entries if n.lower() != key]

    def keys(self) -> list[str]:
        return [name for name, _ in self.items()]

    def items(self) -> list[tuple[str, str]]:
        merged: dict[str, list[str]] = {}
        for name, value in self._entries:
            merged.setdefault(name.lower(), []).append(value)
        return [(name, ", ".join(values)) for name, values in merged.items()]

    def to_list(self) -> list[tuple[str, str]]:
        """Raw (name, value) pairs as they will be written to the wire."""
        return list(self._entries)

    def copy(self) -> Headers:
        return Headers(self)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(name)
        return value

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self.items())

    def __len__(self) -> int:
        return len(self.items())

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Headers):
            return self.items() == other.items()
        return NotImplemented

    def __repr__(self) -> str:
        return f"<Headers {self.items()!r}>"
