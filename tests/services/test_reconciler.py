from itertools import permutations

import pytest

from chain_feed.core.protocol import ProtocolConfig, ScanDirection
from chain_feed.models.graph import FeedGraph, GraphDelta
from chain_feed.models.post import PostCandidate, Poster
from chain_feed.services.reconciler import PostGraphReconciler

FORWARD = ScanDirection.FORWARD
BACKWARD = ScanDirection.BACKWARD


@pytest.fixture()
def reconciler(protocol: ProtocolConfig) -> PostGraphReconciler:
    return PostGraphReconciler(protocol)


@pytest.fixture()
def place(reconciler: PostGraphReconciler, graph: FeedGraph):
    def _place(candidate: PostCandidate, direction: ScanDirection = FORWARD) -> GraphDelta:
        delta = reconciler.reconcile(candidate, graph, direction)
        graph.apply(delta)
        return delta

    return _place


def _live_memberships(graph: FeedGraph) -> dict[str, int]:
    counts: dict[str, int] = {}
    for tree in (graph.reply_tree, graph.forward_orphans, graph.backward_orphans):
        for key in tree:
            value = tree.get(key)
            if value:
                counts[value] = counts.get(value, 0) + 1
    return counts


def test_root_post_needs_no_placement(place, graph: FeedGraph, make_candidate) -> None:
    delta = place(make_candidate("1", 10))

    assert delta.skipped is None
    assert graph.posts["1"].orphaned is False
    assert len(graph.reply_tree) == 0


def test_reply_to_known_parent_goes_to_reply_tree(place, graph: FeedGraph, make_candidate) -> None:
    place(make_candidate("1", 10))
    place(make_candidate("2", 20, reply_to="1"))

    assert graph.reply_tree.to_dict() == {"1-0": "2"}
    assert graph.posts["2"].orphaned is False


def test_reply_before_parent_is_orphaned_then_repaired(
    place, graph: FeedGraph, make_candidate
) -> None:
    place(make_candidate("2", 20, reply_to="1"))

    assert graph.posts["2"].orphaned is True
    assert graph.forward_orphans.to_dict() == {"1-0": "2"}

    delta = place(make_candidate("1", 10))

    assert delta.promoted_post_ids == ["2"]
    assert graph.posts["2"].orphaned is False
    assert graph.forward_orphans.to_dict() == {"1-0": ""}
    assert graph.reply_tree.to_dict() == {"1-0": "2"}
    assert graph.de_orphaned.to_dict() == {"1-0": "2"}
    assert graph.children_of("1") == ["2"]


def test_orphans_use_the_tree_of_their_scan_direction(
    place, graph: FeedGraph, make_candidate
) -> None:
    place(make_candidate("2", 20, reply_to="1"), BACKWARD)

    assert graph.backward_orphans.to_dict() == {"1-0": "2"}
    assert len(graph.forward_orphans) == 0


def test_stale_reply_is_rejected(place, graph: FeedGraph, make_candidate) -> None:
    place(make_candidate("1", 95))
    delta = place(make_candidate("2", 80, reply_to="1"))

    assert delta.skipped == "stale_reply"
    assert "2" not in graph.posts
    assert len(graph.reply_tree) == 0


def test_duplicate_candidate_is_a_no_op(place, graph: FeedGraph, make_candidate) -> None:
    place(make_candidate("1", 10))
    place(make_candidate("2", 20, reply_to="1"))
    before = graph.snapshot()

    delta = place(make_candidate("2", 20, reply_to="1"), BACKWARD)

    assert delta.skipped == "duplicate"
    assert delta.is_empty
    assert graph.snapshot() == before


def test_reconcile_does_not_mutate_the_graph(
    reconciler: PostGraphReconciler, graph: FeedGraph, make_candidate
) -> None:
    graph.forward_orphans.append("1", "2")
    graph.posts["2"] = make_candidate("2", 20, reply_to="1").to_post(orphaned=True)

    delta = reconciler.reconcile(make_candidate("1", 10), graph, FORWARD)

    assert delta.new_post is not None and delta.new_post.post_id == "1"
    assert delta.reply_tree == {"1-0": "2"}
    assert delta.de_orphaned == {"1-0": "2"}
    assert "1" not in graph.posts
    assert graph.forward_orphans.children("1") == ["2"]
    assert graph.posts["2"].orphaned is True


def test_forward_orphans_reversed_then_backward_in_order(
    place, graph: FeedGraph, make_candidate
) -> None:
    # Forward discovers newest first, backward discovers oldest last
    place(make_candidate("5", 50, reply_to="1"), FORWARD)
    place(make_candidate("4", 40, reply_to="1"), FORWARD)
    place(make_candidate("3", 30, reply_to="1"), BACKWARD)
    place(make_candidate("2", 20, reply_to="1"), BACKWARD)

    place(make_candidate("1", 10), BACKWARD)

    assert graph.children_of("1") == ["4", "5", "3", "2"]
    assert graph.repaired_children_of("1") == ["4", "5", "3", "2"]
    assert graph.pending_orphans_of("1") == []


def test_cascade_is_transitive(place, graph: FeedGraph, make_candidate) -> None:
    place(make_candidate("3", 30, reply_to="2"), FORWARD)
    place(make_candidate("2", 20, reply_to="1"), BACKWARD)

    # An orphan under an orphan stays orphaned
    assert graph.posts["2"].orphaned is True
    assert graph.posts["3"].orphaned is True

    delta = place(make_candidate("1", 10))

    assert delta.promoted_post_ids == ["2", "3"]
    assert graph.reply_tree.to_dict() == {"1-0": "2", "2-0": "3"}
    assert graph.de_orphaned.to_dict() == {"1-0": "2", "2-0": "3"}
    assert all(not post.orphaned for post in graph.posts.values())


def test_discussion_on_orphaned_post_waits_for_it(
    place, graph: FeedGraph, make_candidate
) -> None:
    place(make_candidate("2", 20, reply_to="1"))
    place(make_candidate("9", 25, discussion_of="2"))

    assert graph.posts["9"].orphaned is True
    assert graph.channels["discuss:2"] is True
    assert graph.forward_orphans.children("discuss:2") == ["9"]

    place(make_candidate("1", 10))

    assert graph.posts["9"].orphaned is False
    assert graph.channels["discuss:2"] is False
    assert graph.discussion_of("2", "discuss:") == ["9"]


def test_discussion_on_unknown_post_is_orphaned(place, graph: FeedGraph, make_candidate) -> None:
    place(make_candidate("9", 25, discussion_of="2"), BACKWARD)

    assert graph.backward_orphans.children("discuss:2") == ["9"]

    place(make_candidate("2", 20))

    assert graph.discussion_of("2", "discuss:") == ["9"]
    assert graph.posts["9"].orphaned is False


def test_discussion_on_known_post_is_placed_directly(
    place, graph: FeedGraph, make_candidate
) -> None:
    place(make_candidate("2", 20))
    place(make_candidate("9", 25, discussion_of="2"))

    assert graph.reply_tree.to_dict() == {"discuss:2-0": "9"}
    assert graph.channels["discuss:2"] is False


def test_repaired_children_keep_contiguous_ordinals(
    place, graph: FeedGraph, make_candidate
) -> None:
    place(make_candidate("3", 30, reply_to="2"))
    place(make_candidate("4", 40, reply_to="2"))
    place(make_candidate("2", 20, reply_to="1"))
    place(make_candidate("1", 10))

    place(make_candidate("6", 60, reply_to="5"))
    place(make_candidate("5", 50, reply_to="1"))

    assert graph.de_orphaned.to_dict() == {"1-0": "2", "2-0": "4", "2-1": "3", "5-0": "6"}
    assert graph.reply_tree.to_dict() == {
        "1-0": "2",
        "2-0": "4",
        "2-1": "3",
        "1-1": "5",
        "5-0": "6",
    }
    assert graph.children_of("1") == ["2", "5"]
    assert graph.repaired_children_of("1") == ["2"]


def test_new_poster_is_recorded_once(
    reconciler: PostGraphReconciler, graph: FeedGraph, make_candidate
) -> None:
    poster = Poster(address="0xabc", stake="3")
    first = reconciler.reconcile(make_candidate("1", 10, poster="0xabc"), graph, FORWARD, poster)
    graph.apply(first)
    second = reconciler.reconcile(make_candidate("2", 20, poster="0xabc"), graph, FORWARD, poster)

    assert first.new_poster == poster
    assert second.new_poster is None


THREAD = {
    "1": (10, ""),
    "2": (20, "1"),
    "3": (30, "2"),
    "4": (25, "1"),
}


@pytest.mark.parametrize("order", list(permutations(THREAD)))
def test_final_structure_is_independent_of_arrival_order(
    reconciler: PostGraphReconciler,
    graph: FeedGraph,
    make_candidate,
    order: tuple[str, ...],
) -> None:
    for index, post_id in enumerate(order):
        timestamp, reply_to = THREAD[post_id]
        direction = FORWARD if index % 2 else BACKWARD
        candidate = make_candidate(post_id, timestamp, reply_to=reply_to)
        graph.apply(reconciler.reconcile(candidate, graph, direction))

    assert set(graph.posts) == set(THREAD)
    assert all(not post.orphaned for post in graph.posts.values())
    assert set(graph.children_of("1")) == {"2", "4"}
    assert graph.children_of("2") == ["3"]
    assert graph.pending_orphans_of("1") == []
    assert graph.pending_orphans_of("2") == []
    assert all(count == 1 for count in _live_memberships(graph).values())


NESTED_DISCUSSION = {
    # post_id: (timestamp, reply_to, discussion_of)
    "1": (10, "", None),
    "2": (20, "", "1"),
    "3": (30, "", "2"),
    "4": (40, "2", None),
}


@pytest.mark.parametrize("order", list(permutations(NESTED_DISCUSSION)))
def test_nested_discussion_is_independent_of_arrival_order(
    reconciler: PostGraphReconciler,
    graph: FeedGraph,
    make_candidate,
    order: tuple[str, ...],
) -> None:
    for index, post_id in enumerate(order):
        timestamp, reply_to, discussion_of = NESTED_DISCUSSION[post_id]
        direction = FORWARD if index % 2 else BACKWARD
        candidate = make_candidate(
            post_id, timestamp, reply_to=reply_to, discussion_of=discussion_of
        )
        graph.apply(reconciler.reconcile(candidate, graph, direction))

    assert all(not post.orphaned for post in graph.posts.values())
    assert graph.discussion_of("1", "discuss:") == ["2"]
    assert graph.discussion_of("2", "discuss:") == ["3"]
    assert graph.children_of("2") == ["4"]
    assert graph.pending_orphans_of("discuss:2") == []
    assert graph.pending_orphans_of("2") == []
    assert graph.channels == {"discuss:1": False, "discuss:2": False}
    assert all(count == 1 for count in _live_memberships(graph).values())


def test_discussion_comment_placed_directly_repairs_its_waiters(
    place, graph: FeedGraph, make_candidate
) -> None:
    place(make_candidate("3", 30, discussion_of="2"))
    place(make_candidate("4", 40, reply_to="2"))
    place(make_candidate("1", 10))

    delta = place(make_candidate("2", 20, discussion_of="1"))

    assert graph.reply_tree.children("discuss:1") == ["2"]
    assert sorted(delta.promoted_post_ids) == ["3", "4"]
    assert graph.discussion_of("2", "discuss:") == ["3"]
    assert graph.children_of("2") == ["4"]
    assert graph.channels["discuss:2"] is False
