import hashlib
import mimetypes
import time
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from search_script.backend.local.language import STEMMER_NAME, STOP_LIST_NAME, TOKENIZER_NAME, iter_terms
from search_script.backend.local.store import INDEX_FILE_SUFFIX, IndexStore
from search_script.logger import logging

logger = logging.getLogger(__name__)

INDEXED_SUFFIXES = (".md", ".txt")

DEFAULT_MIME_TYPE = "text/plain"
DOCUMENT_ITEM_NAME = "document"


def compute_content_hash(content: str) -> str:
    """Compute a hash of the file content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def ansi_date(timestamp: float) -> int:
    """Local time as a YYYYMMDDHHMMSS integer."""
    return int(datetime.fromtimestamp(timestamp).strftime("%Y%m%d%H%M%S"))


def extract_frontmatter(content: str) -> str:
    """Extract YAML frontmatter from markdown content."""
    if content.startswith("---"):
        end = content.find("---", 3)
        if end != -1:
            return content[3:end].strip()
    return ""


def extract_title(content: str, path: Path) -> str:
    """Frontmatter title, else the first heading, else the file name."""
    for line in extract_frontmatter(content).split("\n"):
        key, _, value = line.partition(":")
        if key.strip().lower() == "title" and value.strip():
            return value.strip().strip("\"'")

    for line in content.split("\n"):
        stripped = line.strip()
        if stripped.startswith("#"):
            heading = stripped.lstrip("#").strip()
            if heading:
                return heading

    return path.stem


def guess_mime_type(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or DEFAULT_MIME_TYPE


class Indexer:
    """Build an index file from markdown and text files."""

    store: IndexStore
    language_code: str

    def __init__(self, store: IndexStore, language_code: str = "en"):
        self.store = store
        self.language_code = language_code

    @classmethod
    def create(
        cls,
        index_dir: Path,
        name: str,
        description: str | None = None,
        language_code: str = "en",
    ) -> "Indexer":
        """Open (or create) the index `name` in `index_dir`."""
        index_dir.mkdir(parents=True, exist_ok=True)
        store = IndexStore(index_dir / f"{name}{INDEX_FILE_SUFFIX}")
        store.set_metadata("name", name)
        if description is not None:
            store.set_metadata("description", description)
        store.set_metadata("language_code", language_code)
        store.set_metadata("tokenizer_name", TOKENIZER_NAME)
        store.set_metadata("stemmer_name", STEMMER_NAME)
        store.set_metadata("stop_list_name", STOP_LIST_NAME)
        return cls(store, language_code=language_code)

    def collect_paths(self, roots: Sequence[Path]) -> list[tuple[str, Path]]:
        """Find indexable files, returning (document_key, path) pairs.

        Files under a directory root are keyed by their path relative to it,
        files given directly by their name.
        """
        found: list[tuple[str, Path]] = []
        for root in roots:
            if root.is_file():
                found.append((root.name, root))
                continue
            for path in sorted(root.rglob("*")):
                if path.is_file() and path.suffix.lower() in INDEXED_SUFFIXES:
                    found.append((path.relative_to(root).as_posix(), path))
        return found

    def ingest_paths(self, key_paths: Sequence[tuple[str, Path]]) -> int:
        """Index the given files, skipping those whose content is unchanged.

        Returns the number of documents written.
        """
        if not key_paths:
            return 0

        logger.info("Processing %d paths", len(key_paths))

        # Read file contents and compute hashes
        file_data: list[tuple[str, Path, str, bytes, str]] = []  # (key, path, content, raw, hash)
        for document_key, path in key_paths:
            try:
                raw = path.read_bytes()
            except OSError as e:
                logger.warning("Failed to read %s: %s", path, e)
                continue
            content = raw.decode("utf-8", errors="replace")
            file_data.append((document_key, path, content, raw, compute_content_hash(content)))

        existing_hashes = self.store.get_hashes_for_keys([key for key, _, _, _, _ in file_data])

        written = 0
        time_start = time.time()
        for document_key, path, content, raw, content_hash in file_data:
            if existing_hashes.get(document_key) == content_hash:
                logger.debug("Skipping unchanged file: %s", document_key)
                continue

            self.store.store_document(
                document_key=document_key,
                title=extract_title(content, path),
                text=content,
                language_code=self.language_code,
                term_count=sum(1 for _ in iter_terms(content)),
                ansi_date=ansi_date(path.stat().st_mtime),
                content_hash=content_hash,
                items=[(DOCUMENT_ITEM_NAME, guess_mime_type(path), path.resolve().as_uri(), raw)],
            )
            written += 1

        skipped = len(file_data) - written
        if skipped > 0:
            logger.info("Skipping %d unchanged files", skipped)
        logger.info("Indexing %d files took %.2fs", written, time.time() - time_start)

        if written:
            self.store.set_metadata("last_update_ansi_date", str(ansi_date(time.time())))
        return written

    def index(self, roots: Sequence[Path]) -> int:
        return self.ingest_paths(self.collect_paths(roots))

    def close(self):
        self.store.close()
