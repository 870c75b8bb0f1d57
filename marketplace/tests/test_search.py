"""
Tests for the Search Index and Search Query Facade
"""

import pytest

from marketplace.errors import InvalidQueryError
from marketplace.schemas import TemplatePatch


class TestSearchValidation:
    """Tests for query validation."""

    @pytest.mark.parametrize("query", [None, "", "a", "  a  "])
    async def test_short_query_rejected(self, search_facade, query):
        """Test queries shorter than two characters are invalid."""
        with pytest.raises(InvalidQueryError) as exc_info:
            await search_facade.search(query)

        assert exc_info.value.code == "INVALID_QUERY"

    async def test_two_characters_accepted(self, search_facade):
        """Test a two character query is valid."""
        assert await search_facade.search("ab") == []

    async def test_limit_is_bounded(self, search_facade, settings):
        """Test limits are clamped to the configured range."""
        assert search_facade.bound_limit(None) == settings.search_default_limit
        assert search_facade.bound_limit(10_000) == settings.search_max_limit
        assert search_facade.bound_limit(0) == 1


class TestSearchResults:
    """Tests for what the search returns."""

    async def test_finds_published_public(self, make_template, search_facade):
        """Test a published public template is found by title, tag and description terms."""
        template = await make_template()

        for query in ("drama", "SCRIPT", "scene planning", "automation"):
            results = await search_facade.search(query)
            assert [t.id for t in results] == [template.id], query

    async def test_excludes_hidden(self, make_template, lifecycle, search_facade, alice):
        """Test drafts, private and deleted templates are not returned."""
        await make_template(title="Drama Draft", publish=False)
        await make_template(title="Drama Private", is_public=False)
        deleted = await make_template(title="Drama Deleted")
        await lifecycle.delete(alice, deleted.id)

        assert await search_facade.search("drama") == []

    async def test_unpublish_removes_from_results(self, make_template, lifecycle, search_facade, alice):
        """Test unpublished templates drop out of search."""
        template = await make_template()
        await lifecycle.unpublish(alice, template.id)

        assert await search_facade.search("drama") == []

    async def test_update_reindexes(self, make_template, lifecycle, search_facade, alice):
        """Test search reflects updated content."""
        template = await make_template()
        await lifecycle.update(alice, template.id, TemplatePatch(description="Podcast editing"))

        assert [t.id for t in await search_facade.search("podcast")] == [template.id]

    async def test_title_matches_rank_first(self, make_template, search_facade):
        """Test templates matching in the title rank above body-only matches."""
        titled = await make_template(title="Podcast Producer", description="Audio shows")
        await make_template(title="Audio Mixer", description="Mixes podcast episodes")

        results = await search_facade.search("podcast")

        assert len(results) == 2
        assert results[0].id == titled.id

    async def test_limit_applied(self, make_template, search_facade):
        """Test the result count respects the limit."""
        for i in range(3):
            await make_template(title=f"Drama {i}")

        assert len(await search_facade.search("drama", limit=2)) == 2


class TestSearchAnalytics:
    """Tests for search event recording."""

    async def test_identified_search_recorded(self, make_template, search_facade, bob, usage_events):
        """Test a search by an identified caller records query and result count."""
        await make_template()

        await search_facade.search(" drama ", principal=bob, metadata={"userAgent": "pytest"})

        events = await usage_events("search")
        assert len(events) == 1
        assert events[0].template_id is None
        assert events[0].user_id == bob.id
        assert events[0].details == {"query": "drama", "resultsCount": 1, "userAgent": "pytest"}

    async def test_anonymous_search_not_recorded(self, make_template, search_facade, usage_events):
        """Test anonymous searches are not recorded."""
        await make_template()

        await search_facade.search("drama")

        assert await usage_events("search") == []


class TestPopularTags:
    """Tests for tag aggregation."""

    async def test_popular_tags(self, make_template, search_facade):
        """Test tags are counted over searchable templates, most used first."""
        await make_template(tags=["video", "script"])
        await make_template(tags=["video", "audio"])
        await make_template(tags=["video", "hidden"], publish=False)

        tags = await search_facade.popular_tags()

        assert tags[0] == ("video", 2)
        assert set(tags[1:]) == {("audio", 1), ("script", 1)}

    async def test_popular_tags_limit(self, make_template, search_facade):
        """Test the tag list respects the limit."""
        await make_template(tags=["a1", "b2", "c3"])

        assert len(await search_facade.popular_tags(2)) == 2

    async def test_deleted_template_tags_removed(self, make_template, lifecycle, search_facade, alice):
        """Test tags of deleted templates are no longer counted."""
        template = await make_template(tags=["video"])
        await lifecycle.delete(alice, template.id)

        assert await search_facade.popular_tags() == []
