# type: ignore
from ldap_class.tracker import Change, ChangeTracker


class TestChangeTracker:
    def setup_method(self):
        self.tracker = ChangeTracker()

    def test_record_change(self) -> None:
        self.tracker.record_change("description", None, "Engineering")
        assert self.tracker.get("description") == Change(None, "Engineering")
        assert "description" in self.tracker
        assert len(self.tracker) == 1

    def test_record_no_change(self) -> None:
        self.tracker.record_change("gidNumber", 1000, "1000")
        assert self.tracker.dirty_attributes() == set()

    def test_keeps_first_baseline(self) -> None:
        self.tracker.record_change("cn", "a", "b")
        self.tracker.record_change("cn", "b", "c")
        assert self.tracker.get("cn") == Change("a", "c")

    def test_back_to_baseline(self) -> None:
        self.tracker.record_change("cn", "a", "b")
        self.tracker.record_change("cn", "b", "a")
        assert "cn" not in self.tracker
        assert self.tracker.changes() == {}

    def test_multi_valued_order_ignored(self) -> None:
        self.tracker.record_change("memberUid", ["alice", "bob"], ["bob", "alice"])
        assert len(self.tracker) == 0

    def test_cleared_value(self) -> None:
        self.tracker.record_change("memberUid", ["alice"], [])
        assert self.tracker.get("memberUid") == Change(["alice"], [])
        self.tracker.record_change("memberUid", [], ["alice"])
        assert len(self.tracker) == 0

    def test_discard_and_clear(self) -> None:
        self.tracker.record_change("cn", "a", "b")
        self.tracker.record_change("description", None, "x")
        self.tracker.discard("cn")
        self.tracker.discard("not-there")
        assert list(self.tracker) == ["description"]
        self.tracker.clear()
        assert len(self.tracker) == 0

    def test_changes_is_a_copy(self) -> None:
        self.tracker.record_change("cn", "a", "b")
        self.tracker.changes().clear()
        assert "cn" in self.tracker
