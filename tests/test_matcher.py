import unittest
from datetime import timedelta

from fake_providers import T0, make_issue


def _target(issue_id, source_id=None, provider="src", **kwargs):
    return make_issue(
        issue_id,
        provider="dst",
        external_id=source_id,
        external_provider=provider if source_id is not None else None,
        **kwargs,
    )


class MatchTests(unittest.TestCase):
    def test_linked_pairs_are_classified_by_updated_at(self):
        from reconciler.core.matcher import MatchKind, match

        sources = [
            make_issue("1", updated_at=T0 + timedelta(minutes=5)),
            make_issue("2", updated_at=T0),
            make_issue("3", updated_at=T0, title="mine"),
        ]
        targets = [
            _target("11", "1", updated_at=T0),
            _target("12", "2", updated_at=T0 + timedelta(minutes=5)),
            _target("13", "3", updated_at=T0, title="theirs"),
        ]

        plan = match(sources, targets, source_provider="src")

        self.assertEqual(
            [p.kind for p in plan.pairs],
            [MatchKind.SOURCE_AHEAD, MatchKind.TARGET_AHEAD, MatchKind.TIED],
        )
        self.assertEqual([c.field for c in plan.pairs[2].conflicting_fields], ["title"])
        self.assertEqual(plan.orphans, [])
        self.assertEqual(plan.target_only, [])

    def test_missing_timestamp_counts_as_oldest(self):
        from reconciler.core.matcher import MatchKind, classify_linked

        pair = classify_linked(make_issue("1", updated_at=None), _target("9", "1"))

        self.assertEqual(pair.kind, MatchKind.TARGET_AHEAD)

    def test_content_match_claims_first_candidate_once(self):
        from reconciler.core.matcher import MatchKind, match

        sources = [make_issue("1", title="dup"), make_issue("2", title="dup")]
        targets = [_target("20", title="dup"), _target("21", title="dup"), _target("22", title="dup")]

        with self.assertLogs("reconciler.core.matcher", level="WARNING") as logs:
            plan = match(sources, targets)

        self.assertEqual([p.kind for p in plan.pairs], [MatchKind.LINKED_NEEDS_BACKFILL] * 2)
        self.assertEqual([p.target.id for p in plan.pairs], ["20", "21"])
        self.assertEqual([p.target.id for p in plan.target_only], ["22"])
        self.assertTrue(any("Ambiguous" in line for line in logs.output))

    def test_content_match_requires_identical_description(self):
        from reconciler.core.matcher import MatchKind, match

        plan = match([make_issue("1", description="a")], [_target("9", description="b")])

        self.assertEqual(plan.pairs[0].kind, MatchKind.NEW)
        self.assertEqual(plan.by_kind(MatchKind.TARGET_ONLY)[0].target.id, "9")

    def test_linked_target_without_source_is_orphaned(self):
        from reconciler.core.matcher import MatchKind, match

        plan = match([make_issue("1")], [_target("9", "1"), _target("10", "42")], source_provider="src")

        self.assertEqual(len(plan.orphans), 1)
        self.assertEqual(plan.orphans[0].kind, MatchKind.ORPHANED_TARGET)
        self.assertEqual(plan.orphans[0].target.id, "10")

    def test_links_to_another_provider_are_ignored(self):
        from reconciler.core.matcher import MatchKind, match

        plan = match([make_issue("1", title="x")], [_target("9", "1", provider="other")], source_provider="src")

        self.assertEqual(plan.pairs[0].kind, MatchKind.NEW)
        self.assertEqual(plan.orphans, [])
        self.assertEqual(plan.target_only, [])

    def test_duplicate_link_keeps_first_target(self):
        from reconciler.core.matcher import MatchKind, match

        plan = match([make_issue("1")], [_target("9", "1"), _target("10", "1")])

        self.assertEqual(plan.pairs[0].target.id, "9")
        self.assertEqual(plan.by_kind(MatchKind.ORPHANED_TARGET), [])


if __name__ == "__main__":
    unittest.main()
