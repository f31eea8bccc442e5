"""Unit tests for mergepatch.py - JSON merge patch helpers."""

from mergepatch import apply_merge_patch, create_merge_patch


class TestCreateMergePatch:
    """Tests for create_merge_patch function."""

    def test_equal_documents(self):
        doc = {"lastUpdate": {"failed": False, "address": "203.0.113.7"}}
        assert create_merge_patch(doc, {"lastUpdate": dict(doc["lastUpdate"])}) == {}

    def test_only_changed_nested_fields(self):
        original = {
            "lastUpdate": {
                "scheduledAt": "2024-05-01T10:00:00Z",
                "failed": True,
                "hostname": "home.example.com",
                "address": "203.0.113.1",
            }
        }
        modified = {
            "lastUpdate": {
                "scheduledAt": "2024-05-01T10:05:00Z",
                "failed": False,
                "hostname": "home.example.com",
                "address": "203.0.113.1",
            }
        }

        assert create_merge_patch(original, modified) == {
            "lastUpdate": {"scheduledAt": "2024-05-01T10:05:00Z", "failed": False}
        }

    def test_added_object(self):
        modified = {"lastUpdate": {"failed": False}}
        assert create_merge_patch({}, modified) == modified

    def test_removed_key_becomes_null(self):
        assert create_merge_patch({"a": 1, "b": 2}, {"a": 1}) == {"b": None}

    def test_lists_replaced_wholesale(self):
        original = {"conditions": [{"type": "Ready", "status": "False"}]}
        modified = {"conditions": [{"type": "Ready", "status": "True"}]}
        assert create_merge_patch(original, modified) == modified

    def test_patch_does_not_alias_modified(self):
        modified = {"lastUpdate": {"failed": False}}
        patch = create_merge_patch({}, modified)
        patch["lastUpdate"]["failed"] = True
        assert modified["lastUpdate"]["failed"] is False


class TestApplyMergePatch:
    """Tests for apply_merge_patch function."""

    def test_preserves_untouched_fields(self):
        target = {
            "conditions": [{"type": "Ready"}],
            "lastUpdate": {"failed": True, "address": "203.0.113.1"},
        }

        result = apply_merge_patch(target, {"lastUpdate": {"failed": False}})

        assert result == {
            "conditions": [{"type": "Ready"}],
            "lastUpdate": {"failed": False, "address": "203.0.113.1"},
        }

    def test_null_deletes(self):
        assert apply_merge_patch({"a": 1, "b": {"c": 2}}, {"b": None}) == {"a": 1}

    def test_target_not_mutated(self):
        target = {"lastUpdate": {"failed": True}}
        apply_merge_patch(target, {"lastUpdate": {"failed": False}})
        assert target == {"lastUpdate": {"failed": True}}

    def test_non_object_target_replaced(self):
        assert apply_merge_patch({"a": "text"}, {"a": {"b": 1}}) == {"a": {"b": 1}}

    def test_non_object_patch_replaces(self):
        assert apply_merge_patch({"a": 1}, ["x"]) == ["x"]

    def test_concurrent_writers_do_not_clobber(self):
        """Test a patch from a stale snapshot keeps fields written since."""
        snapshot = {"lastUpdate": {"failed": True, "address": "203.0.113.1"}}
        stored = {
            "lastUpdate": {"failed": True, "address": "203.0.113.1"},
            "conditions": [{"type": "Ready", "status": "True"}],
        }
        modified = {"lastUpdate": {"failed": False, "address": "203.0.113.9"}}

        result = apply_merge_patch(stored, create_merge_patch(snapshot, modified))

        assert result["conditions"] == [{"type": "Ready", "status": "True"}]
        assert result["lastUpdate"] == modified["lastUpdate"]
