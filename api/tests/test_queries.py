from __future__ import annotations

from datetime import datetime, timedelta, timezone

from newsroom.services.entities import Comment, Story, StoryState, Topic
from newsroom.services.queries import CommentQuery, StoryQuery, TopicQuery

CREATED_AT = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _story(**overrides: object) -> Story:
    values: dict[str, object] = {
        "name": "Cup Finals",
        "content": "A tense match report",
        "owner": "alice",
        "state": StoryState.PUBLISHED,
        "topic_ids": {3},
        "id": 1,
        "created_at": CREATED_AT,
    }
    values.update(overrides)
    return Story(**values)  # type: ignore[arg-type]


def test_story_query_matches_case_insensitive_substrings() -> None:
    assert StoryQuery(name="finals")(_story())
    assert StoryQuery(content="MATCH")(_story())
    assert not StoryQuery(name="budget")(_story())


def test_story_query_date_range_accepts_naive_bounds_as_utc() -> None:
    assert StoryQuery(min_date=datetime(2024, 3, 1), max_date=datetime(2024, 3, 2))(_story())
    assert not StoryQuery(min_date=CREATED_AT + timedelta(seconds=1))(_story())
    assert not StoryQuery(max_date=CREATED_AT - timedelta(days=1))(_story())


def test_story_query_state_and_topic() -> None:
    assert StoryQuery(state=StoryState.PUBLISHED, topic_id=3)(_story())
    assert not StoryQuery(state=StoryState.CREATED)(_story())
    assert not StoryQuery(topic_id=4)(_story())


def test_topic_and_comment_queries() -> None:
    topic = Topic(name="Sports", owner="alice", parent_id=7, id=8)
    assert TopicQuery(name="sport")(topic)
    assert TopicQuery(parent_id=7)(topic)
    assert not TopicQuery(parent_id=9)(topic)
    assert CommentQuery(story_id=1)(Comment(story_id=1, content="Nice"))
    assert not CommentQuery(story_id=2)(Comment(story_id=1, content="Nice"))
    assert CommentQuery()(Comment(story_id=1, content="Nice"))
