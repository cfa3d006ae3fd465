"""Tests for content hashing."""

from hashing import content_hash, json_fingerprint, md5_hex


class TestMd5:
    def test_known_digest(self):
        assert md5_hex("") == "d41d8cd98f00b204e9800998ecf8427e"
        assert md5_hex("abc") == "900150983cd24fb0d6963f7d28e17f72"

    def test_unicode(self):
        assert len(md5_hex("Déjà vu ✓")) == 32


class TestContentHash:
    def test_deterministic(self):
        assert content_hash(["a", "b"]) == content_hash(["a", "b"])

    def test_one_character_changes_hash(self):
        assert content_hash(['[{"tries": 1}]']) != content_hash(['[{"tries": 1}] '])

    def test_order_matters(self):
        assert content_hash(["a", "b"]) != content_hash(["b", "a"])

    def test_salt_changes_hash(self):
        assert content_hash(["a"], salt="model-1") != content_hash(["a"], salt="model-2")

    def test_part_boundaries_matter(self):
        assert content_hash(["ab", "c"]) != content_hash(["a", "bc"])


class TestJsonFingerprint:
    def test_stable_for_equal_objects(self):
        assert json_fingerprint([{"a": 1}]) == json_fingerprint([{"a": 1}])

    def test_sensitive_to_values(self):
        assert json_fingerprint({"a": 1}) != json_fingerprint({"a": 2})
