import pytest

from lockstep.errors import InvalidDesiredSetError
from lockstep.protocol.request import get
from lockstep.runtime.reconciler import desired_set, diff


def fingerprints(**requests):
    return {tracker_id: request.fingerprint() for tracker_id, request in requests.items()}


class TestDiff:
    def test_empty_sets_are_noop(self):
        # Act
        plan = diff({}, {})

        # Assert
        assert plan.is_noop
        assert plan.unchanged == []

    def test_three_way_split(self):
        # Arrange
        running = fingerprints(
            a=get("https://e.com/a"),
            b=get("https://e.com/b"),
            c=get("https://e.com/c"),
        )
        desired = {
            "b": get("https://e.com/b"),
            "c": get("https://e.com/c2"),
            "d": get("https://e.com/d"),
        }

        # Act
        plan = diff(running, desired)

        # Assert
        assert plan.dead == ["a", "c"]
        assert plan.unchanged == ["b"]
        assert plan.new == ["c", "d"]
        assert plan.changed == ["c"]

    def test_same_set_twice_is_all_unchanged(self):
        # Arrange
        desired = {"x": get("https://e.com/x"), "y": get("https://e.com/y")}
        running = {tracker_id: r.fingerprint() for tracker_id, r in desired.items()}

        # Act
        plan = diff(running, desired)

        # Assert
        assert plan.is_noop
        assert plan.unchanged == ["x", "y"]

    def test_interleaved_ids_are_merged_in_order(self):
        # Arrange
        running = fingerprints(a=get("https://e.com"), c=get("https://e.com"), e=get("https://e.com"))
        desired = {key: get("https://e.com") for key in ("b", "c", "d", "f")}

        # Act
        plan = diff(running, desired)

        # Assert
        assert plan.dead == ["a", "e"]
        assert plan.unchanged == ["c"]
        assert plan.new == ["b", "d", "f"]

    def test_sets_are_disjoint_except_changed(self):
        # Arrange
        running = fingerprints(a=get("https://e.com/1"), b=get("https://e.com/1"))
        desired = {"a": get("https://e.com/2"), "c": get("https://e.com/1")}

        # Act
        plan = diff(running, desired)

        # Assert
        assert set(plan.dead) & set(plan.new) == set(plan.changed) == {"a"}
        assert not set(plan.unchanged) & (set(plan.dead) | set(plan.new))


class TestDesiredSet:
    def test_sequence_keyed_by_tracker_id(self):
        # Arrange
        a = get("https://e.com/a", tracker="a")
        b = get("https://e.com/b", tracker="b")

        # Act
        result = desired_set([a, b])

        # Assert
        assert result == {"a": a, "b": b}

    def test_untracked_request_rejected(self):
        with pytest.raises(InvalidDesiredSetError):
            desired_set([get("https://e.com")])

    def test_duplicate_tracker_rejected(self):
        with pytest.raises(InvalidDesiredSetError):
            desired_set([get("https://e.com/1", tracker="a"), get("https://e.com/2", tracker="a")])

    def test_mapping_key_must_match_own_tracker(self):
        with pytest.raises(InvalidDesiredSetError):
            desired_set({"a": get("https://e.com", tracker="b")})

    def test_mapping_accepts_untracked_values(self):
        # Arrange
        request = get("https://e.com")

        # Act & Assert
        assert desired_set({"a": request}) == {"a": request}
