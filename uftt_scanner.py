"""Scan JSX/TSX sources for UFTT markers and reconcile them with the translation files."""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple

from tqdm import tqdm

__version__ = "1.0.0"

# --- CONFIGURATION DEFAULTS ---
CONFIG_FILE = "ufttconfig.json"
DEFAULT_SOURCE_FOLDERS = ("src",)
DEFAULT_TARGET_FILE = "src/translations/translation.json"
DEFAULT_UNUSED_FILE = "src/translations/unused.json"
DEFAULT_TAGS = ("UFTT", "UFTTSpan", "UFTTDiv", "UFTTHtml")
DEFAULT_EXTENSIONS = (".jsx", ".tsx")

# Key holding the content found in the source; never a language code.
DEFAULT_KEY = "_"

KNOWN_BOMS = (
    (b"\xff\xfe", "utf-16-le"),
    (b"\xfe\xff", "utf-16-be"),
    (b"\xef\xbb\xbf", "utf-8"),
)

TTID_RE = re.compile(r"(?:^|\s)ttid=\"(?P<ttid>[^\"]*)\"")
WHITESPACE_RE = re.compile(r"\s+")

TranslationEntry = Dict[str, str]
TranslationDictionary = Dict[str, TranslationEntry]


class ScannerError(Exception):
    """Base exception for errors that abort a scan."""


class ConfigurationError(ScannerError):
    """Raised when the configuration is missing, unreadable or invalid."""


class TranslationIOError(ScannerError):
    """Raised when a source or translation file can not be read, parsed or written."""

    def __init__(self, message: str, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path


# --- Configuration ---


@dataclass(frozen=True)
class ScannerConfig:
    """Scanner settings; every file location is relative to ``base_dir``."""

    base_dir: Path
    source_folders: Tuple[str, ...] = DEFAULT_SOURCE_FOLDERS
    target_file: str = DEFAULT_TARGET_FILE
    unused_file: str = DEFAULT_UNUSED_FILE
    languages: Tuple[str, ...] = ()
    content_language: str = ""
    tags: Tuple[str, ...] = DEFAULT_TAGS
    clean_languages: bool = False
    extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS

    @property
    def target_path(self) -> Path:
        return self.base_dir / self.target_file

    @property
    def unused_path(self) -> Path:
        return self.base_dir / self.unused_file

    @property
    def source_paths(self) -> List[Path]:
        return [self.base_dir / folder for folder in self.source_folders]

    def validate(self) -> None:
        _require_string_list("tags", self.tags)
        if not self.tags:
            raise ConfigurationError("Configuration error: at least one tag is required")
        _require_string_list("sourceFolders", self.source_folders)
        _require_string_list("languages", self.languages)
        _require_string_list("extensions", self.extensions)
        if DEFAULT_KEY in self.languages:
            raise ConfigurationError(
                f"Configuration error: '{DEFAULT_KEY}' is reserved and can not be used as language code"
            )
        if not isinstance(self.content_language, str):
            raise ConfigurationError("Configuration error: contentLanguage must be a string")
        if self.content_language == DEFAULT_KEY:
            raise ConfigurationError(
                f"Configuration error: '{DEFAULT_KEY}' is reserved and can not be used as content language"
            )
        for name, value in (("targetFile", self.target_file), ("unusedFile", self.unused_file)):
            if not isinstance(value, str) or not value.strip():
                raise ConfigurationError(f"Configuration error: {name} must be a non-empty string")
        if self.target_path.resolve() == self.unused_path.resolve():
            raise ConfigurationError("Configuration error: targetFile and unusedFile must be different files")
        if not isinstance(self.clean_languages, bool):
            raise ConfigurationError("Configuration error: cleanLanguages must be true or false")


def _require_string_list(name: str, values: Any) -> None:
    if not isinstance(values, (list, tuple)) or not all(isinstance(v, str) and v for v in values):
        raise ConfigurationError(f"Configuration error: {name} must be a list of non-empty strings")


# Maps the keys used in ufttconfig.json to ScannerConfig fields.
CONFIG_KEYS = {
    "sourceFolders": "source_folders",
    "targetFile": "target_file",
    "unusedFile": "unused_file",
    "languages": "languages",
    "contentLanguage": "content_language",
    "tags": "tags",
    "cleanLanguages": "clean_languages",
    "extensions": "extensions",
}

LIST_FIELDS = {"source_folders", "languages", "tags", "extensions"}


def normalize_extension(extension: str) -> str:
    extension = extension.lower()
    return extension if extension.startswith(".") else "." + extension


def find_config_file(start: Path) -> Path:
    """Look for the configuration file in ``start`` and all of its parent folders."""
    start = start.resolve()
    for folder in (start, *start.parents):
        candidate = folder / CONFIG_FILE
        if candidate.is_file():
            return candidate
    raise ConfigurationError(f"Can not find {CONFIG_FILE} in {start} or any of its parent folders")


def load_config(path: Path) -> ScannerConfig:
    try:
        data = json.loads(decode_auto(path.read_bytes()))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Error reading or parsing the configuration file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a JSON object")

    values: Dict[str, Any] = {}
    for key, value in data.items():
        name = CONFIG_KEYS.get(key)
        if name is None:
            logging.warning("Ignoring unknown configuration key %r in %s", key, path)
            continue
        if name in LIST_FIELDS:
            _require_string_list(key, value)
            value = tuple(value)
        values[name] = value

    config = ScannerConfig(base_dir=path.resolve().parent, **values)
    config.validate()
    return config


# --- File utils ---


def decode_auto(raw: bytes) -> str:
    for bom, encoding in KNOWN_BOMS:
        if raw.startswith(bom):
            return raw[len(bom):].decode(encoding)
    return raw.decode("utf-8")


def read_source_file(path: Path) -> str:
    try:
        return decode_auto(path.read_bytes())
    except (OSError, UnicodeDecodeError) as exc:
        raise TranslationIOError(f"Error reading the file {path}: {exc}", path) from exc


def find_source_files(config: ScannerConfig) -> List[Path]:
    """Collect the files to scan, sorted per source folder so runs are reproducible."""
    extensions = {normalize_extension(ext) for ext in config.extensions}
    files: List[Path] = []
    for folder in config.source_paths:
        if not folder.is_dir():
            raise ConfigurationError(f"Source folder does not exist: {folder}")
        files.extend(
            sorted(p for p in folder.rglob("*") if p.is_file() and p.suffix.lower() in extensions)
        )
    return files


def stage_write(data: bytes, output: Path) -> Path:
    temp_path = output.with_name(output.name + ".tmp")
    with temp_path.open("wb") as fp:
        fp.write(data)
        fp.flush()
        os.fsync(fp.fileno())
    return temp_path


# --- Marker matching ---


@dataclass(frozen=True)
class Marker:
    tag: str
    ttid: Optional[str]
    content: str
    raw_content: str


@lru_cache(maxsize=None)
def compile_marker_pattern(tags: Tuple[str, ...]) -> re.Pattern[str]:
    """Build the pattern matching ``<TAG ...>content</TAG ...>`` for the given tag names.

    The content is matched lazily, so for nested markers using the same tag name the
    first closing tag ends the match. Markers nested inside another marker are part of
    the outer content and are not reported separately.
    """
    if not tags:
        raise ConfigurationError("Configuration error: at least one tag is required")
    # longest first so that UFTTSpan is never read as UFTT followed by attributes
    names = "|".join(re.escape(tag) for tag in sorted(tags, key=len, reverse=True))
    return re.compile(
        rf"<(?P<tag>{names})(?=[\s/>])"
        r"(?P<attributes>(?:\"[^\"]*\"|[^>\"])*)"
        r"(?<!/)>"
        r"(?P<content>[\s\S]*?)"
        r"</(?P=tag)(?=[\s>])[^>]*>"
    )


class MarkerMatcher:
    """Finds markers in source text for a fixed list of tag names."""

    def __init__(self, tags: Sequence[str]) -> None:
        self.tags = tuple(tags)
        self.pattern = compile_marker_pattern(self.tags)

    def finditer(self, text: str) -> Iterator[Marker]:
        for match in self.pattern.finditer(text):
            ttid_match = TTID_RE.search(match.group("attributes"))
            raw_content = match.group("content")
            yield Marker(
                tag=match.group("tag"),
                ttid=ttid_match.group("ttid") if ttid_match else None,
                content=normalize_content(raw_content),
                raw_content=raw_content,
            )


def normalize_content(text: str) -> str:
    text = text.replace("\r", "").replace("\n", " ")
    return WHITESPACE_RE.sub(" ", text).strip()


# --- Translation store ---


@dataclass
class TranslationStore:
    """The active translations and the translations no longer found in the sources."""

    active: TranslationDictionary = field(default_factory=dict)
    unused: TranslationDictionary = field(default_factory=dict)

    def in_active(self, entry_id: str) -> bool:
        return entry_id in self.active

    def in_unused(self, entry_id: str) -> bool:
        return entry_id in self.unused

    def get_or_create(self, entry_id: str) -> TranslationEntry:
        entry = self.active.get(entry_id)
        if entry is None:
            entry = self.active[entry_id] = {}
        return entry

    def discard_active(self, entry_id: str) -> None:
        self.active.pop(entry_id, None)

    def discard_unused(self, entry_id: str) -> None:
        self.unused.pop(entry_id, None)

    def active_ids(self) -> List[str]:
        return list(self.active)

    def revive(self, entry_id: str) -> bool:
        """Move an unused entry back unless the id is active already.

        The unused entry is dropped in both cases. Returns True when it was moved.
        """
        if not self.in_unused(entry_id):
            return False
        moved = not self.in_active(entry_id)
        if moved:
            self.active[entry_id] = self.unused[entry_id]
        self.discard_unused(entry_id)
        return moved

    def retire(self, entry_id: str) -> None:
        self.unused[entry_id] = self.active[entry_id]
        self.discard_active(entry_id)


def serialize_entry(entry: TranslationEntry) -> TranslationEntry:
    result: TranslationEntry = {}
    if DEFAULT_KEY in entry:
        result[DEFAULT_KEY] = entry[DEFAULT_KEY]
    for key, value in entry.items():
        if key != DEFAULT_KEY:
            result[key] = value
    return result


def serialize_dictionary(dictionary: TranslationDictionary) -> TranslationDictionary:
    return {entry_id: serialize_entry(dictionary[entry_id]) for entry_id in sorted(dictionary)}


def dictionary_from_json(data: Any, source: str = "<data>") -> TranslationDictionary:
    if not isinstance(data, dict):
        raise TranslationIOError(f"Translation file {source} must contain a JSON object")
    result: TranslationDictionary = {}
    for entry_id, entry in data.items():
        if not isinstance(entry, dict) or not all(isinstance(v, str) for v in entry.values()):
            raise TranslationIOError(
                f"Translation file {source}: entry {entry_id!r} must map language codes to strings"
            )
        result[entry_id] = dict(entry)
    return result


def load_dictionary(path: Path) -> TranslationDictionary:
    if not path.exists():
        logging.debug("%s does not exist, starting with an empty dictionary", path)
        return {}
    logging.info("Loading %s", path)
    try:
        data = json.loads(decode_auto(path.read_bytes()))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise TranslationIOError(f"Error reading or parsing the JSON file {path}: {exc}", path) from exc
    return dictionary_from_json(data, str(path))


def dump_dictionary(dictionary: TranslationDictionary) -> str:
    return json.dumps(serialize_dictionary(dictionary), ensure_ascii=False, indent=2)


def save_dictionaries(store: TranslationStore, target_path: Path, unused_path: Path) -> None:
    """Write both dictionaries; the targets are only replaced once both were staged."""
    # Unused is replaced first: if the second replace fails, a fresh unused file next
    # to a stale active file holds every entry at least once. That window remains.
    payloads = [
        (unused_path, dump_dictionary(store.unused).encode("utf-8")),
        (target_path, dump_dictionary(store.active).encode("utf-8")),
    ]
    staged: List[Tuple[Path, Path]] = []
    current = unused_path
    try:
        for current, data in payloads:
            logging.info("Saving %s", current)
            current.parent.mkdir(parents=True, exist_ok=True)
            staged.append((stage_write(data, current), current))
        for temp_path, current in staged:
            os.replace(temp_path, current)
    except OSError as exc:
        for output, _ in payloads:
            temp_path = output.with_name(output.name + ".tmp")
            if temp_path.is_file():
                temp_path.unlink()
        raise TranslationIOError(f"Error writing to {current}: {exc}", current) from exc


# --- Reconciliation ---


@dataclass(frozen=True)
class Diagnostic:
    kind: str
    ids: Tuple[str, ...]
    message: str


@dataclass
class ScanSession:
    """State of a single run; nothing here outlives the run."""

    observed_ids: Set[str] = field(default_factory=set)
    new_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    languages_added: int = 0
    languages_removed: int = 0
    files_scanned: int = 0
    moved_count: int = 0
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def report(self, diagnostic: Diagnostic) -> None:
        self.diagnostics.append(diagnostic)
        logging.warning(diagnostic.message)

    def summary(self, clean_languages: bool = False) -> Dict[str, int]:
        counts = {
            "files": self.files_scanned,
            "new": self.new_count,
            "updated": self.updated_count,
            "skipped": self.skipped_count,
            "languages_added": self.languages_added,
        }
        if clean_languages:
            counts["languages_removed"] = self.languages_removed
        return counts


def update_translation(
    store: TranslationStore,
    session: ScanSession,
    config: ScannerConfig,
    ttid: Optional[str],
    content: str,
) -> Optional[str]:
    """Add or update the entry for one marker and return the id used for it.

    Without a ttid the content is used as id. Markers without both are ignored.
    """
    if not content and not ttid:
        return None
    entry_id = ttid if ttid else content

    # membership before this occurrence decides whether a content change is a conflict
    seen_before = entry_id in session.observed_ids
    session.observed_ids.add(entry_id)

    store.revive(entry_id)

    existing = store.active[entry_id] if store.in_active(entry_id) else None
    if existing is None:
        session.new_count += 1
    elif existing.get(DEFAULT_KEY) != content:
        session.updated_count += 1
    else:
        session.skipped_count += 1

    if existing is not None and DEFAULT_KEY in existing and seen_before and existing[DEFAULT_KEY] != content:
        session.report(
            Diagnostic(
                kind="conflict",
                ids=(entry_id,),
                message=(
                    f'[WARNING] adding entry for "{entry_id}" with different content: '
                    f'original="{existing[DEFAULT_KEY]}" new="{content}"'
                ),
            )
        )

    entry = store.get_or_create(entry_id)
    entry[DEFAULT_KEY] = content
    if config.content_language and config.content_language not in entry:
        entry[config.content_language] = content
    for language in config.languages:
        if language not in entry:
            entry[language] = ""
            session.languages_added += 1
    if config.clean_languages:
        for key in list(entry):
            if key != DEFAULT_KEY and key != config.content_language and key not in config.languages:
                del entry[key]
                session.languages_removed += 1
    return entry_id


def scan_text(
    matcher: MarkerMatcher,
    text: str,
    store: TranslationStore,
    session: ScanSession,
    config: ScannerConfig,
) -> int:
    count = 0
    for marker in matcher.finditer(text):
        update_translation(store, session, config, marker.ttid, marker.content)
        count += 1
    return count


def scan_files(
    paths: Sequence[Path],
    store: TranslationStore,
    session: ScanSession,
    config: ScannerConfig,
    matcher: Optional[MarkerMatcher] = None,
    progress: bool = True,
) -> None:
    matcher = matcher or MarkerMatcher(config.tags)
    for path in tqdm(paths, desc="Scanning sources", unit="file", disable=not progress):
        text = read_source_file(path)
        found = scan_text(matcher, text, store, session, config)
        session.files_scanned += 1
        logging.debug("%s: %s marker(s)", path, found)


def move_unused_translations(store: TranslationStore, session: ScanSession) -> int:
    count = 0
    for entry_id in store.active_ids():
        if entry_id not in session.observed_ids:
            store.retire(entry_id)
            count += 1
    session.moved_count += count
    if count:
        logging.info("Moved %s entries to unused", count)
    return count


def find_duplicate_content(store: TranslationStore) -> List[Diagnostic]:
    """Group active ids sharing the same content; only groups with several ids are returned."""
    groups: Dict[str, List[str]] = {}
    for entry_id in sorted(store.active):
        content = store.active[entry_id].get(DEFAULT_KEY)
        if content is not None:
            groups.setdefault(content, []).append(entry_id)

    diagnostics: List[Diagnostic] = []
    for content, ids in groups.items():
        if len(ids) < 2:
            continue
        joined = '", "'.join(ids)
        diagnostics.append(
            Diagnostic(
                kind="duplicate-content",
                ids=tuple(ids),
                message=f'[INFO] "{joined}" have the same content "{content}"',
            )
        )
    return diagnostics


def finish_scan(store: TranslationStore, session: ScanSession) -> int:
    moved = move_unused_translations(store, session)
    for diagnostic in find_duplicate_content(store):
        session.report(diagnostic)
    return moved


def format_summary(session: ScanSession, clean_languages: bool) -> str:
    counts = session.summary(clean_languages)
    summary = (
        f"Scanned {counts['files']} source files, added {counts['new']} entries, "
        f"updated {counts['updated']} contents, skipped {counts['skipped']} contents, "
        f"added {counts['languages_added']} language entries"
    )
    if clean_languages:
        summary += f", removed {counts['languages_removed']} language entries"
    return summary


# --- Runner ---


def run_scanner(config: ScannerConfig, dry_run: bool = False, progress: bool = True) -> ScanSession:
    store = TranslationStore(
        active=load_dictionary(config.target_path),
        unused=load_dictionary(config.unused_path),
    )
    sources = find_source_files(config)
    matcher = MarkerMatcher(config.tags)
    session = ScanSession()

    scan_files(sources, store, session, config, matcher=matcher, progress=progress)
    print(format_summary(session, config.clean_languages))
    finish_scan(store, session)

    if dry_run:
        print("Dry run: translation files left untouched.")
    else:
        save_dictionaries(store, config.target_path, config.unused_path)
    return session


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Scan JSX/TSX sources for UFTT markers and update the translation files."
    )
    parser.add_argument(
        "--config",
        type=Path,
        help=f"Configuration file to use instead of searching for {CONFIG_FILE}.",
    )
    parser.add_argument(
        "--start",
        type=Path,
        default=Path.cwd(),
        help=f"Folder to start searching for {CONFIG_FILE} (default: current folder).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Scan and report, but do not write the translation files.",
    )
    parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar.")
    parser.add_argument("--verbose", action="store_true", help="Log every scanned file.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    print(f"** UFTT scanner v{__version__} **")
    try:
        config_path = args.config if args.config else find_config_file(args.start)
        logging.info("Using configuration file: %s", config_path)
        config = load_config(config_path)
        run_scanner(config, dry_run=args.dry_run, progress=not args.no_progress)
    except ScannerError as exc:
        raise SystemExit(str(exc))


if __name__ == "__main__":
    main()
