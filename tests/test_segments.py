"""
Tests for user segmentation.
"""

from backend.admin_analytics.segments import (
    SEGMENT_DEFINITIONS,
    build_segments,
    is_new_member,
    is_power_member,
    segment_members,
    summarize_segment,
)


def _by_name(segments):
    return {segment.name: segment for segment in segments}


class TestMembership:
    def test_users_can_belong_to_several_segments(self, dataset, now):
        memberships = {
            definition.name: {user.id for user in segment_members(definition, dataset, now)}
            for definition in SEGMENT_DEFINITIONS
        }
        assert memberships["Active Users"] == {"u1", "u2", "u4"}
        assert memberships["New Users"] == {"u2", "u4"}
        assert memberships["Power Users"] == {"u1"}
        assert memberships["Returning Users"] == {"u1"}

        containing_u1 = [name for name, members in memberships.items() if "u1" in members]
        assert len(containing_u1) == 3

    def test_predicates(self, dataset, now):
        users = {user.id: user for user in dataset.users}
        assert is_power_member(users["u1"], dataset, now)
        assert not is_power_member(users["u2"], dataset, now)
        assert is_new_member(users["u4"], dataset, now)
        assert not is_new_member(users["u3"], dataset, now)


class TestSegmentSummaries:
    def test_every_segment_is_reported(self, dataset, now):
        segments = build_segments(dataset, now)
        assert [segment.name for segment in segments] == [
            "Active Users",
            "New Users",
            "Power Users",
            "Returning Users",
        ]

    def test_active_segment_figures(self, dataset, now):
        active = _by_name(build_segments(dataset, now))["Active Users"]
        assert active.member_count == 3
        assert active.percent_of_total == 75.0
        assert active.avg_applications_per_member == 2.3
        assert active.avg_session_time == 7.5

    def test_percentages_may_exceed_hundred_in_total(self, dataset, now):
        segments = build_segments(dataset, now)
        assert sum(segment.percent_of_total for segment in segments) > 100

    def test_growth_compares_with_membership_thirty_days_ago(self, dataset, now):
        segments = _by_name(build_segments(dataset, now))
        # one active member a month ago (u1 applied 35 days ago), three today
        assert segments["Active Users"].growth_percent == 200.0
        # no power users a month ago
        assert segments["Power Users"].growth_percent == 100.0

    def test_empty_dataset_reports_zero_segments(self, empty_dataset, now):
        segments = build_segments(empty_dataset, now)
        assert len(segments) == 4
        for segment in segments:
            assert segment.member_count == 0
            assert segment.percent_of_total == 0.0
            assert segment.growth_percent == 0.0
            assert segment.avg_applications_per_member == 0.0

    def test_summarize_segment_without_members(self, dataset):
        segment = summarize_segment("Nobody", (), dataset)
        assert segment.member_count == 0
        assert segment.avg_session_time == 0.0
