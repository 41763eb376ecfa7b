import unittest
from datetime import datetime, timezone

from issue_arena.domain.models import ClosedState, IssueStatus, OccupiedState, OpenState, OverrideState, PrStatus
from issue_arena.infrastructure.acl import StoreTranslator, from_epoch_ms, to_epoch_ms


class TestTimeNormalization(unittest.TestCase):
    def test_aware_and_naive_datetimes_are_utc_millis(self) -> None:
        aware = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
        naive = datetime(2024, 1, 2, 3, 4, 5, 678000)

        self.assertEqual(to_epoch_ms(aware), 1704164645678)
        self.assertEqual(to_epoch_ms(naive), 1704164645678)

    def test_millis_pass_through_and_convert_back(self) -> None:
        self.assertEqual(to_epoch_ms(1704164645678), 1704164645678)
        self.assertIsNone(to_epoch_ms(None))
        self.assertEqual(from_epoch_ms(1704164645678), datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc))

    def test_unsupported_value_raises(self) -> None:
        with self.assertRaises(ValueError):
            to_epoch_ms("yesterday")


class TestStoreTranslator(unittest.TestCase):
    def _record(self, **overrides):
        record = {
            "id": "issue-1",
            "title": "Implement dark mode",
            "tags": ["medium"],
            "repo": "ui-kit",
            "status": "open",
            "assigned_to": None,
            "occupied_at": None,
            "closed_at": None,
            "pr_url": None,
            "pr_status": None,
            "rewarded": False,
            "version": 4,
        }
        record.update(overrides)
        return record

    def test_occupied_record_becomes_occupied_state(self) -> None:
        issue = StoreTranslator.issue_to_domain(
            self._record(status="occupied", assigned_to="TeamAlpha", occupied_at=datetime(2024, 1, 2, 3, 4, 5))
        )

        self.assertEqual(issue.state, OccupiedState(team="TeamAlpha", since=1704164645000))
        self.assertEqual(issue.version, 4)

    def test_closed_record_keeps_pr_data(self) -> None:
        issue = StoreTranslator.issue_to_domain(
            self._record(
                status="closed",
                assigned_to="TeamAlpha",
                closed_at=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
                pr_url="https://github.com/x/y/pull/7",
                pr_status="approved",
                rewarded=True,
            )
        )

        self.assertIsInstance(issue.state, ClosedState)
        self.assertEqual(issue.pr_status, PrStatus.APPROVED)
        self.assertTrue(issue.rewarded)

    def test_open_record_with_assignee_is_an_override(self) -> None:
        issue = StoreTranslator.issue_to_domain(self._record(assigned_to="TeamBravo"))

        self.assertIsInstance(issue.state, OverrideState)
        self.assertEqual(issue.status, IssueStatus.OPEN)
        self.assertEqual(issue.assigned_to, "TeamBravo")

    def test_missing_status_raises(self) -> None:
        with self.assertRaises(ValueError):
            StoreTranslator.issue_to_domain(self._record(status=None))

    def test_state_record_uses_store_time_values(self) -> None:
        issue = StoreTranslator.issue_to_domain(self._record()).with_state(
            OccupiedState(team="TeamAlpha", since=1704164645000)
        )

        record = StoreTranslator.issue_state_to_record(issue)

        self.assertEqual(record["status"], "occupied")
        self.assertEqual(record["occupied_at"], datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        self.assertIsNone(record["closed_at"])
        self.assertNotIn("version", record)

    def test_reopened_record_clears_lifecycle_fields(self) -> None:
        issue = StoreTranslator.issue_to_domain(
            self._record(status="occupied", assigned_to="TeamAlpha", occupied_at=datetime(2024, 1, 2))
        ).with_state(OpenState())

        record = StoreTranslator.issue_state_to_record(issue)

        self.assertEqual(record["status"], "open")
        self.assertIsNone(record["assigned_to"])
        self.assertIsNone(record["occupied_at"])

    def test_team_points_are_never_negative(self) -> None:
        team = StoreTranslator.team_to_domain({"name": "TeamAlpha", "points": -4, "active": 1})

        self.assertEqual(team.points, 0)
        self.assertTrue(team.active)
