"""Tests for manifest and book validation."""

import copy
import json

import pytest

from scriptorium.repository.policy import SecurityPolicy
from scriptorium.repository.validator import (
    PLACEHOLDER_CHECKSUM,
    PackageValidator,
    compute_checksum,
    is_parent_manifest,
    is_safe_relative_path,
    manifest_kind,
    validate_book,
    validate_manifest,
    verify_checksum,
)


def error_codes(result):
    return [e.code for e in result.errors]


def warning_codes(result):
    return [w.code for w in result.warnings]


@pytest.fixture
def manifest(builder):
    """A valid three-book translation manifest."""
    files = builder.package_files(
        "test-kjv",
        [builder.make_book(1, [3]), builder.make_book(2, [2]), builder.make_book(3, [1])],
    )
    return json.loads(files["manifest.json"])


@pytest.fixture
def book(builder):
    return builder.make_book(1, [3, 2])


class TestManifestValidation:
    """Tests for validate_manifest."""

    def test_valid_manifest(self, manifest):
        """A well-formed manifest has no errors or warnings."""
        result = validate_manifest(manifest)
        assert result.valid, result.error_messages()
        assert result.warnings == []

    def test_validation_is_idempotent(self, manifest):
        """The same input yields equal results."""
        manifest["content"]["books_count"] = 5
        assert validate_manifest(manifest) == validate_manifest(manifest)

    def test_non_object_document(self):
        """Lists and scalars are rejected, not raised."""
        assert error_codes(validate_manifest([1, 2])) == ["INVALID_DOCUMENT"]
        assert error_codes(validate_manifest(None)) == ["INVALID_DOCUMENT"]

    def test_missing_sections(self, manifest):
        """Missing required sections are reported."""
        del manifest["technical"]
        del manifest["format_version"]
        result = validate_manifest(manifest)
        assert not result.valid
        assert error_codes(result).count("MISSING_FIELD") == 2

    def test_legacy_version_key(self, manifest):
        """zbrs_version is accepted in place of format_version."""
        manifest["zbrs_version"] = manifest.pop("format_version")
        assert validate_manifest(manifest).valid

    def test_unsupported_major_version(self, manifest):
        """Only major version 1 is supported."""
        manifest["format_version"] = "2.0.0"
        assert error_codes(validate_manifest(manifest)) == ["UNSUPPORTED_VERSION"]

    def test_invalid_direction(self, manifest):
        """Language direction must be ltr or rtl."""
        manifest["repository"]["language"]["direction"] = "ttb"
        assert error_codes(validate_manifest(manifest)) == ["INVALID_DIRECTION"]

    def test_translation_requires_language(self, manifest):
        """Translation manifests must carry language information."""
        del manifest["repository"]["language"]
        assert error_codes(validate_manifest(manifest)) == ["MISSING_LANGUAGE"]

    def test_non_slug_id_is_warning(self, manifest):
        """Ids outside slug format only warn."""
        manifest["repository"]["id"] = "Test KJV"
        result = validate_manifest(manifest)
        assert result.valid
        assert warning_codes(result) == ["NON_SLUG_ID"]

    def test_book_count_mismatch(self, manifest):
        """books_count must equal old + new."""
        manifest["content"]["testament"] = {"old": 2, "new": 0}
        assert "BOOK_COUNT_MISMATCH" in error_codes(validate_manifest(manifest))

    def test_book_list_length_mismatch(self, manifest):
        """A listed book file set must match books_count."""
        manifest["content"]["books"].pop()
        assert error_codes(validate_manifest(manifest)) == ["BOOK_COUNT_MISMATCH"]

    def test_non_standard_canon_warning(self, manifest):
        """A 66-book package with a non 39/27 split warns."""
        del manifest["content"]["books"]
        manifest["content"]["books_count"] = 66
        manifest["content"]["testament"] = {"old": 40, "new": 26}
        result = validate_manifest(manifest)
        assert result.valid
        assert warning_codes(result) == ["NON_STANDARD_CANON"]

    def test_unsafe_book_path(self, manifest):
        """Book paths may not escape the package."""
        manifest["content"]["books"][0]["path"] = "../outside.json"
        assert error_codes(validate_manifest(manifest)) == ["UNSAFE_PATH"]

    def test_unsupported_encoding(self, manifest):
        """Only UTF-8 is accepted."""
        manifest["technical"]["encoding"] = "latin-1"
        assert error_codes(validate_manifest(manifest)) == ["UNSUPPORTED_ENCODING"]

    def test_compression(self, manifest):
        """gzip is supported, brotli is known but unsupported."""
        manifest["technical"]["compression"] = "gzip"
        assert validate_manifest(manifest).valid
        manifest["technical"]["compression"] = "brotli"
        assert error_codes(validate_manifest(manifest)) == ["UNSUPPORTED_COMPRESSION"]
        manifest["technical"]["compression"] = "zip"
        assert error_codes(validate_manifest(manifest)) == ["INVALID_COMPRESSION"]

    def test_repository_too_large(self, manifest):
        """Declared size must fit the policy."""
        policy = SecurityPolicy(max_repository_size=100)
        result = validate_manifest(manifest, policy)
        assert error_codes(result) == ["REPOSITORY_TOO_LARGE"]

    @pytest.mark.parametrize(
        "checksum,code",
        [
            (None, "MISSING_CHECKSUM"),
            ("md5:abc", "INVALID_CHECKSUM"),
            (PLACEHOLDER_CHECKSUM, "PLACEHOLDER_CHECKSUM"),
        ],
    )
    def test_checksum_required(self, manifest, checksum, code):
        """Checksum defects are errors under the default policy."""
        manifest["technical"]["checksum"] = checksum
        assert error_codes(validate_manifest(manifest)) == [code]

    def test_checksum_defects_are_warnings_when_not_required(self, manifest):
        """Without require_checksums the same defects only warn."""
        manifest["technical"]["checksum"] = PLACEHOLDER_CHECKSUM
        result = validate_manifest(manifest, SecurityPolicy(require_checksums=False))
        assert result.valid
        assert warning_codes(result) == ["PLACEHOLDER_CHECKSUM"]

    def test_insecure_publisher_url_warns(self, manifest):
        """An http publisher URL warns; a blocked host errors."""
        manifest["repository"]["publisher"]["url"] = "http://bad.example"
        result = validate_manifest(
            manifest, SecurityPolicy(blocked_domains=("bad.example",))
        )
        assert warning_codes(result) == ["INSECURE_URL"]
        assert error_codes(result) == ["BLOCKED_DOMAIN"]

    def test_unexpected_exception_is_reported(self, manifest, monkeypatch):
        """Rule crashes become VALIDATION_EXCEPTION entries."""
        validator = PackageValidator()

        def boom(*args):
            raise RuntimeError("rule crashed")

        monkeypatch.setattr(validator, "_validate_content", boom)
        result = validator.validate_manifest(manifest)
        assert error_codes(result) == ["VALIDATION_EXCEPTION"]


class TestParentManifest:
    """Tests for parent (multi-translation) manifests."""

    @pytest.fixture
    def parent(self, builder):
        return builder.parent_manifest(
            "collection",
            [
                {"id": "kjv", "directory": "kjv", "language_code": "en", "status": "active"},
                {"id": "web", "directory": "web", "language_code": "en", "status": "active"},
            ],
        )

    def test_valid_parent(self, parent):
        """Parent manifests need no content section or language."""
        assert manifest_kind(parent) == "parent"
        assert is_parent_manifest(parent)
        result = validate_manifest(parent)
        assert result.valid, result.error_messages()

    def test_duplicate_translations(self, parent):
        """Translation ids and directories must be unique."""
        parent["translations"].append(copy.deepcopy(parent["translations"][0]))
        codes = error_codes(validate_manifest(parent))
        assert "DUPLICATE_TRANSLATION_IDS" in codes
        assert "DUPLICATE_TRANSLATION_DIRECTORIES" in codes

    def test_translation_cannot_reuse_parent_id(self, parent):
        """A translation sharing the parent's id is an error."""
        parent["translations"][1]["id"] = "collection"
        assert error_codes(validate_manifest(parent)) == ["TRANSLATION_ID_CONFLICT"]

    def test_empty_translations_warns(self, parent):
        """An empty translations list only warns."""
        parent["translations"] = []
        result = validate_manifest(parent)
        assert result.valid
        assert warning_codes(result) == ["EMPTY_TRANSLATIONS"]

    def test_translation_entry_needs_directory(self, parent):
        """Entries without a directory are invalid."""
        del parent["translations"][1]["directory"]
        assert error_codes(validate_manifest(parent)) == ["INVALID_TRANSLATIONS"]

    def test_translations_key_marks_parent(self):
        """A translations list without content classifies as parent."""
        assert manifest_kind({"translations": []}) == "parent"
        assert manifest_kind({"content": {}}) == "translation"


class TestBookValidation:
    """Tests for validate_book."""

    def test_valid_book(self, book):
        """A well-formed book passes."""
        result = validate_book(book, expected_order=1)
        assert result.valid, result.error_messages()

    def test_incorrect_order(self, book):
        """The book must sit at its expected position."""
        assert error_codes(validate_book(book, expected_order=2)) == [
            "INCORRECT_BOOK_ORDER"
        ]

    def test_order_out_of_range(self, book):
        """Orders outside 1..66 are invalid."""
        book["book"]["order"] = 67
        assert error_codes(validate_book(book)) == ["INVALID_BOOK_ORDER"]

    def test_testament_mismatch(self, book):
        """Genesis cannot claim the New Testament."""
        book["book"]["testament"] = "new"
        assert error_codes(validate_book(book)) == ["TESTAMENT_MISMATCH"]

    def test_chapter_and_verse_counts(self, book):
        """Declared counts must equal counted chapters and verses."""
        book["book"]["chapters_count"] = 3
        book["book"]["verses_count"] = 4
        codes = error_codes(validate_book(book))
        assert codes == ["CHAPTER_COUNT_MISMATCH", "VERSE_COUNT_MISMATCH"]

    def test_sequential_numbering(self, book):
        """Chapter and verse numbers run from 1 without gaps."""
        book["chapters"][1]["number"] = 3
        book["chapters"][0]["verses"][2]["number"] = 5
        codes = error_codes(validate_book(book))
        assert sorted(codes) == ["INCORRECT_CHAPTER_NUMBER", "INCORRECT_VERSE_NUMBER"]

    def test_empty_verse_text(self, book):
        """Blank verse text is an error."""
        book["chapters"][0]["verses"][0]["text"] = "   "
        assert error_codes(validate_book(book)) == ["EMPTY_VERSE_TEXT"]

    def test_missing_chapters(self, book):
        """A book without chapters stops at MISSING_FIELD."""
        del book["chapters"]
        assert error_codes(validate_book(book)) == ["MISSING_FIELD"]


class TestChecksums:
    """Tests for checksum helpers."""

    def test_compute_checksum_format(self):
        """Digests use the sha256:<hex> form."""
        digest = compute_checksum(b"abc")
        assert digest == (
            "sha256:ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )

    def test_verify_checksum(self):
        """Verification compares digests case-insensitively."""
        expected = compute_checksum(b"abc")
        assert verify_checksum(b"abc", expected.upper().replace("SHA256", "sha256")).valid
        check = verify_checksum(b"abd", expected, "books/01-genesis.json")
        assert not check.valid
        assert check.file_path == "books/01-genesis.json"
        assert check.actual_checksum == compute_checksum(b"abd")

    @pytest.mark.parametrize(
        "path,safe",
        [
            ("books/01-genesis.json", True),
            ("kjv", True),
            ("../etc/passwd", False),
            ("/abs/path.json", False),
            ("books\\01.json", False),
            ("https://example.org/x.json", False),
            ("", False),
        ],
    )
    def test_safe_relative_path(self, path, safe):
        """Only package-relative POSIX paths are safe."""
        assert is_safe_relative_path(path) is safe
