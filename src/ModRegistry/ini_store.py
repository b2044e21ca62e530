"""
ini_store.py
Read and write the section / key=value text format used by both the app's
own config and the mod loader's config.

Format:
  [section]
  key=value                 — single value
  key=array                 — multi value, followed immediately by
  array[]=mods/a.dll          one continuation line per value, in order
  array[]=mods/a/config.ini

Keys may repeat inside a section (the continuation key always does), so a
section is an ordered list of (key, value) pairs rather than a dict.
Files are written with CRLF line endings. The app config uses "=" between
key and value, the loader config " = ".

Every save_* / remove_* helper re-reads the file, applies one change and
writes it back. Nothing is cached between calls and there is no locking:
the last writer wins.
"""

from __future__ import annotations

import logging
import os
import re
from enum import Enum, auto
from pathlib import Path
from typing import Iterable, Iterator

from ModRegistry.constants import ARRAY_KEY, ARRAY_VALUE, IniLayout
from ModRegistry.errors import (
    InvalidDataError,
    InvalidInputError,
    ModError,
    MissingSectionError,
    NotFoundError,
    PermissionDeniedError,
    merge_errors,
)

log = logging.getLogger(__name__)

LINE_SEPARATOR = "\r\n"

_U32_MAX = 2 ** 32 - 1
_DIGITS = re.compile(r"^\d+$")


# ---------------------------------------------------------------------------
# In-memory model
# ---------------------------------------------------------------------------

class Properties:
    """Ordered multimap of one section's key/value pairs."""

    def __init__(self, items: Iterable[tuple[str, str]] = ()):
        self._items: list[list[str]] = [[k, v] for k, v in items]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[tuple[str, str]]:
        for k, v in self._items:
            yield k, v

    def __contains__(self, key: str) -> bool:
        return any(k == key for k, _ in self._items)

    def __repr__(self) -> str:
        return f"Properties({list(self)!r})"

    def is_empty(self) -> bool:
        return not self._items

    def keys(self) -> list[str]:
        return [k for k, _ in self._items]

    def get(self, key: str, default: str | None = None) -> str | None:
        """First value stored under key."""
        for k, v in self._items:
            if k == key:
                return v
        return default

    def set(self, key: str, value: str) -> None:
        """Replace the first occurrence of key (dropping any others) or append."""
        found = False
        kept: list[list[str]] = []
        for item in self._items:
            if item[0] == key:
                if found:
                    continue
                item[1] = value
                found = True
            kept.append(item)
        if not found:
            kept.append([key, value])
        self._items = kept

    def append(self, key: str, value: str) -> None:
        self._items.append([key, value])

    def remove(self, key: str) -> str | None:
        """Drop every occurrence of key, returning the first value."""
        first = self.get(key)
        self._items = [item for item in self._items if item[0] != key]
        return first

    def set_array(self, key: str, values: list[str]) -> None:
        """Write key=array followed by one continuation line per value.

        Continuation lines that already follow key are left in place; call
        remove_array first when key already holds an array.
        """
        continuation = [[ARRAY_KEY, v] for v in values]
        for i, item in enumerate(self._items):
            if item[0] == key:
                item[1] = ARRAY_VALUE
                self._items[i + 1:i + 1] = continuation
                return
        self._items.append([key, ARRAY_VALUE])
        self._items.extend(continuation)

    def remove_array(self, key: str) -> list[str] | None:
        """Remove key=array and the continuation lines directly after it."""
        for i, (k, v) in enumerate(self._items):
            if k == key and v == ARRAY_VALUE:
                end = i + 1
                while end < len(self._items) and self._items[end][0] == ARRAY_KEY:
                    end += 1
                removed = [val for _, val in self._items[i + 1:end]]
                del self._items[i:end]
                return removed
        return None

    def retain(self, keep) -> int:
        """Keep only pairs for which keep(index, key, value) is true. Returns removed count."""
        before = len(self._items)
        self._items = [item for i, item in enumerate(self._items) if keep(i, item[0], item[1])]
        return before - len(self._items)

    def replace_with(self, other: "Properties") -> None:
        self._items = [[k, v] for k, v in other]


class Ini:
    """Ordered collection of named sections. None names the general section."""

    def __init__(self):
        self._sections: dict[str | None, Properties] = {}

    def __contains__(self, section: str | None) -> bool:
        return section in self._sections

    def sections(self) -> list[str | None]:
        return list(self._sections)

    def section(self, name: str | None) -> Properties | None:
        return self._sections.get(name)

    def with_section(self, name: str | None) -> Properties:
        """Return the section, creating it (empty) if needed."""
        if name not in self._sections:
            self._sections[name] = Properties()
        return self._sections[name]

    def get_from(self, section: str | None, key: str) -> str | None:
        props = self._sections.get(section)
        return None if props is None else props.get(key)

    def delete_from(self, section: str | None, key: str) -> str | None:
        props = self._sections.get(section)
        return None if props is None else props.remove(key)

    # -- text round trip ----------------------------------------------------

    @classmethod
    def loads(cls, text: str, source: str = "<string>") -> "Ini":
        ini = cls()
        current = ini.with_section(None)
        for lineno, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if not line or line[0] in ";#":
                continue
            if line.startswith("["):
                end = line.find("]")
                if end == -1:
                    raise InvalidDataError(
                        f"{source}:{lineno}: unterminated section header: {line}"
                    )
                current = ini.with_section(line[1:end].strip())
                continue
            if "=" not in line:
                raise InvalidDataError(f"{source}:{lineno}: expected key=value, found: {line}")
            key, value = line.split("=", 1)
            current.append(key.strip(), value.strip())
        if ini._sections[None].is_empty():
            del ini._sections[None]
        return ini

    def dumps(self, kv_separator: str = "=") -> str:
        blocks: list[str] = []
        for name, props in self._sections.items():
            lines: list[str] = []
            if name is not None:
                lines.append(f"[{name}]")
            elif props.is_empty():
                continue
            lines.extend(f"{k}{kv_separator}{v}" for k, v in props)
            blocks.append(LINE_SEPARATOR.join(lines))
        if not blocks:
            return ""
        return (LINE_SEPARATOR * 2).join(blocks) + LINE_SEPARATOR

    @classmethod
    def load(cls, path: Path | str) -> "Ini":
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8-sig", newline="") as fh:
                text = fh.read()
        except FileNotFoundError:
            raise NotFoundError(f"'{path.name}' can not be found on machine") from None
        except PermissionError as exc:
            raise PermissionDeniedError(f"Could not read '{path}': {exc}") from None
        except UnicodeDecodeError as exc:
            raise InvalidDataError(f"'{path.name}' is not valid UTF-8: {exc}") from None
        return cls.loads(text, source=path.name)

    def write(self, path: Path | str, kv_separator: str = "=") -> None:
        path = Path(path)
        with open(path, "w", encoding="utf-8", newline="") as fh:
            fh.write(self.dumps(kv_separator))


def property_array(props: Properties) -> Iterator[tuple[str, list[str]]]:
    """Iterate (key, values) with array continuation lines folded into their key.

    A single value yields [value]; key=array yields every following array[]
    value. Continuation lines with no array key above them are skipped.
    """
    key: str | None = None
    values: list[str] = []
    is_array = False
    for k, v in props:
        if k == ARRAY_KEY:
            if key is not None and is_array:
                values.append(v)
            else:
                log.debug("Skipping orphan continuation line: %s=%s", k, v)
            continue
        if key is not None:
            yield key, values
        key = k
        is_array = v == ARRAY_VALUE
        values = [] if is_array else [v]
    if key is not None:
        yield key, values


# ---------------------------------------------------------------------------
# Existence / setup checks
# ---------------------------------------------------------------------------

def try_exists(path: Path | str) -> bool:
    """True / False when existence is known; raises OSError when it is not."""
    try:
        os.stat(path)
    except (FileNotFoundError, NotADirectoryError):
        return False
    return True


def validate_existence(path: Path) -> None:
    try:
        found = try_exists(path)
    except OSError:
        raise PermissionDeniedError(
            f"Path \"{path}\"'s existance can neither be confirmed nor denied"
        ) from None
    if not found:
        raise NotFoundError(f"'{Path(path).name}' can not be found on machine")
    log.debug("%s exists on disk", Path(path).name)


def validate_file(path: Path) -> None:
    """A partial path must name a file: it needs an extension and must exist."""
    if not Path(path).suffix:
        raise InvalidInputError(f"\"{Path(path).name}\" does not have an extention")
    validate_existence(path)


def validate_many(paths: Iterable[Path | str], prefix: Path | None) -> list[tuple[Path, ModError]]:
    """Validate every path, returning (path, error) for each failure."""
    failures: list[tuple[Path, ModError]] = []
    for p in paths:
        p = Path(p)
        try:
            if prefix is None:
                validate_existence(p)
            else:
                validate_file(prefix / p)
        except ModError as err:
            failures.append((p, err))
    return failures


def is_setup(path: Path | str, sections: Iterable[str]) -> Ini:
    """Load path and check every required section is present.

    NotFound / PermissionDenied when the file can't be confirmed,
    MissingSectionError (an InvalidDataError) when a section is missing,
    InvalidDataError when the file does not parse.
    """
    path = Path(path)
    if path.suffix.lower() != ".ini":
        raise InvalidInputError(f"expected .ini found: {path.suffix or path.name}")
    validate_existence(path)
    ini = Ini.load(path)
    missing = [s for s in sections if ini.section(s) is None]
    if missing:
        raise MissingSectionError(
            f"Could not find section(s): {', '.join(missing)}, in: {path.name}"
        )
    log.debug("%s found with all sections", path.name)
    return ini


def default_ini(layout: IniLayout) -> Ini:
    ini = Ini()
    for name in layout.sections:
        ini.with_section(name)
    settings = ini.with_section(layout.settings)
    for key, value in zip(layout.keys, layout.defaults):
        settings.set(key, value)
    return ini


def new_cfg(path: Path | str, layout: IniLayout) -> Ini:
    """Create (or overwrite) path with every section of layout and default settings."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    ini = default_ini(layout)
    ini.write(path, layout.kv_separator)
    log.info("Created new %s at %s", layout.name, path)
    return ini


def get_or_setup_cfg(path: Path | str, layout: IniLayout) -> Ini:
    """Return the parsed file, recreating it with defaults if it is missing
    or lacks a required section.

    A file that does not parse is left untouched and its InvalidDataError
    propagates.
    """
    path = Path(path)
    try:
        return is_setup(path, layout.sections)
    except NotFoundError as err:
        log.info("%s", err)
    except MissingSectionError as err:
        log.error("%s, recreating %s", err, layout.name)
    return new_cfg(path, layout)


# ---------------------------------------------------------------------------
# Typed reads
# ---------------------------------------------------------------------------

class ValueKind(Enum):
    BOOL = auto()
    U32 = auto()
    PATH = auto()
    PATH_LIST = auto()


def parse_bool(value: str, key: str = "") -> bool:
    """"0" / "1" / case-insensitive "true" / "false", surrounding space ignored."""
    text = value.strip()
    if text == "0":
        return False
    if text == "1":
        return True
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    where = f" found in \"{key}\"" if key else ""
    raise InvalidDataError(
        f"string: \"{value}\"{where} was not `true`, `false`, `1`, or `0`."
    )


def parse_u32(value: str, key: str = "") -> int:
    text = value.strip()
    if _DIGITS.match(text) and int(text) <= _U32_MAX:
        return int(text)
    where = f" found in \"{key}\"" if key else ""
    raise InvalidDataError(f"string: \"{value}\"{where} was not within the valid `U32 range`.")


def bool_to_str(value: bool) -> str:
    return "true" if value else "false"


def read_property(
    ini: Ini,
    section: str,
    key: str,
    kind: ValueKind,
    path_prefix: Path | None = None,
    skip_validation: bool = False,
):
    """Read section/key from ini and parse it as kind.

    Full paths (e.g. game_dir) are read without a path_prefix and checked
    for existence; partial paths (mod files) need the prefix they are
    relative to and must point at a file.
    """
    props = ini.section(section)
    if props is None:
        raise NotFoundError(f"Section: '{section}', not found")
    value = props.get(key)
    if value is None:
        raise NotFoundError(f"Key: '{key}', not found in Section: '{section}'")

    if kind is ValueKind.BOOL:
        return parse_bool(value, key)
    if kind is ValueKind.U32:
        return parse_u32(value, key)
    if kind is ValueKind.PATH:
        if value == ARRAY_VALUE:
            raise InvalidDataError("Invalid type found. Expected: Path, Found: Vec<Path>")
        path = Path(value)
        if not skip_validation:
            if path_prefix is None:
                validate_existence(path)
            else:
                validate_file(path_prefix / path)
        return path
    if kind is ValueKind.PATH_LIST:
        if value != ARRAY_VALUE:
            raise InvalidDataError("Invalid type found. Expected: Vec<Path>, Found: Path")
        values = next(v for k, v in property_array(props) if k == key)
        paths = [Path(v) for v in values]
        if not skip_validation:
            failures = validate_many(paths, path_prefix)
            if failures:
                raise merge_errors(err for _, err in failures)
        return paths
    raise ValueError(f"unsupported value kind: {kind}")


# ---------------------------------------------------------------------------
# Writers: each call is a full read-modify-write of the file
# ---------------------------------------------------------------------------

def _modify(file_name: Path | str, kv_separator: str, change) -> None:
    ini = Ini.load(file_name)
    change(ini)
    ini.write(file_name, kv_separator)


def save_value(file_name: Path | str, section: str, key: str, value: str,
               kv_separator: str = "=") -> None:
    _modify(file_name, kv_separator, lambda ini: ini.with_section(section).set(key, value))


def save_value_ext(file_name: Path | str, section: str, key: str, value: str) -> None:
    """save_value for the loader config, which uses " = " between key and value."""
    save_value(file_name, section, key, value, kv_separator=" = ")


def save_bool(file_name: Path | str, section: str, key: str, value: bool,
              kv_separator: str = "=") -> None:
    save_value(file_name, section, key, bool_to_str(value), kv_separator)


def save_path(file_name: Path | str, section: str, key: str, path: Path | str,
              kv_separator: str = "=") -> None:
    save_value(file_name, section, key, str(path), kv_separator)


def save_paths(file_name: Path | str, section: str, key: str,
               files: Iterable[Path | str], kv_separator: str = "=") -> None:
    """Store files under key as key=array plus continuation lines.

    When key already holds an array, remove_array must run first.
    """
    values = [str(f) for f in files]
    _modify(file_name, kv_separator, lambda ini: ini.with_section(section).set_array(key, values))


def remove_entry(file_name: Path | str, section: str, key: str,
                 kv_separator: str = "=") -> None:
    def change(ini: Ini) -> None:
        if ini.delete_from(section, key) is None:
            raise NotFoundError(f"Could not delete \"{key}\" from Section: \"{section}\"")
    _modify(file_name, kv_separator, change)


def remove_array(file_name: Path | str, section: str, key: str,
                 kv_separator: str = "=") -> None:
    def change(ini: Ini) -> None:
        props = ini.section(section)
        if props is None or props.remove_array(key) is None:
            raise NotFoundError(f"Could not find array \"{key}\" in Section: \"{section}\"")
    _modify(file_name, kv_separator, change)
