"""
Unit tests for reply classification.
"""

from mdb_handle.exceptions import CommandFailed
from mdb_handle.protocol import Protocol, Reply


class TestCommandError:
    """Test command reply classification."""

    def test_ok_reply(self):
        assert Protocol().command_error({"ok": 1.0, "nonce": "abc"}) is None

    def test_failed_reply(self):
        doc = {"ok": 0.0, "errmsg": "ns not found", "code": 26, "codeName": "NamespaceNotFound"}

        err = Protocol().command_error(doc)

        assert isinstance(err, CommandFailed)
        assert err.message == "ns not found"
        assert err.code == 26
        assert err.code_name == "NamespaceNotFound"
        assert err.document is doc

    def test_missing_ok_is_failure(self):
        err = Protocol().command_error({"errmsg": "bad"})

        assert err.message == "bad"

    def test_failure_without_message(self):
        assert Protocol().command_error({"ok": 0}).message == "Unknown command error"

    def test_missing_document(self):
        err = Protocol().command_error(None)

        assert isinstance(err, CommandFailed)
        assert err.document is None


class TestWriteError:
    """Test write command reply classification."""

    def test_clean_write(self):
        assert Protocol().write_error({"ok": 1.0, "n": 1}) is None
        assert Protocol().write_error(None) is None

    def test_write_errors(self):
        doc = {
            "ok": 1.0,
            "n": 0,
            "writeErrors": [
                {"index": 0, "code": 11000, "errmsg": "E11000 duplicate key error"},
                {"index": 2, "code": 121, "errmsg": "Document failed validation"},
            ],
        }

        err = Protocol().write_error(doc)

        assert err.message == (
            "Write error at index 0: E11000 duplicate key error\n"
            "Write error at index 2: Document failed validation"
        )
        assert err.code == 11000
        assert err.document is doc

    def test_write_concern_error(self):
        doc = {"ok": 1.0, "n": 1, "writeConcernError": {"code": 64, "errmsg": "waiting timed out"}}

        err = Protocol().write_error(doc)

        assert err.message == "Write concern error: waiting timed out"
        assert err.code == 64


class TestReply:
    """Test the Reply container."""

    def test_first(self):
        assert Reply(docs=[{"a": 1}, {"a": 2}]).first == {"a": 1}
        assert Reply().first is None
