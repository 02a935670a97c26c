"""Tests for the local reconciliation store."""

import asyncio
from unittest.mock import Mock

import pytest

from favorants.filtering import FilterSpec, SortKey
from favorants.store import CancellationToken, CollectionView, FetchState


class GatedFetcher:
    """Fetcher that blocks until released, counting calls."""

    def __init__(self, result):
        self.result = result
        self.calls = 0
        self.gate = asyncio.Event()

    async def __call__(self, owner_key):
        self.calls += 1
        await self.gate.wait()
        if isinstance(self.result, BaseException):
            raise self.result
        return [dict(item) for item in self.result]


@pytest.fixture
def three_items():
    return [
        {"id": 1, "name": "One", "created_at": "2024-01-01T00:00:00Z"},
        {"id": 2, "name": "Two", "created_at": "2024-01-02T00:00:00Z"},
        {"id": 3, "name": "Three", "created_at": "2024-01-03T00:00:00Z"},
    ]


async def loaded_view(items, **kwargs):
    async def fetch(owner_key):
        return items

    view = CollectionView("user-1", fetch, **kwargs)
    await view.refresh()
    return view


class TestCancellationToken:
    def test_cancel(self):
        token = CancellationToken()
        assert token.cancelled is False
        token.cancel()
        assert token.cancelled is True


class TestRefresh:
    """Test the refresh cycle."""

    @pytest.mark.asyncio
    async def test_refresh_applies_results(self, three_items):
        view = await loaded_view(three_items)

        assert view.state == FetchState.IDLE
        assert view.total_count == 3
        assert view.has_results is True
        assert [item["id"] for item in view.items] == [3, 2, 1]

    @pytest.mark.asyncio
    async def test_double_refresh_fetches_once(self, three_items):
        """Test that a refresh while one is in flight is dropped."""
        fetcher = GatedFetcher(three_items)
        view = CollectionView("user-1", fetcher)

        first = asyncio.ensure_future(view.refresh())
        await asyncio.sleep(0)
        assert view.loading is True

        second = await view.refresh()
        fetcher.gate.set()
        applied = await first

        assert fetcher.calls == 1
        assert second is False
        assert applied is True
        assert view.total_count == 3

    @pytest.mark.asyncio
    async def test_result_after_teardown_is_discarded(self, three_items):
        """Test that a fetch landing after teardown changes nothing."""
        fetcher = GatedFetcher(three_items)
        view = CollectionView("user-1", fetcher)

        pending = asyncio.ensure_future(view.refresh())
        await asyncio.sleep(0)
        view.teardown()
        fetcher.gate.set()
        applied = await pending

        assert applied is False
        assert view.items == []
        assert view.total_count == 0
        assert view.has_results is False
        assert view.alive is False

    @pytest.mark.asyncio
    async def test_refresh_after_teardown_is_ignored(self, three_items):
        fetcher = GatedFetcher(three_items)
        view = CollectionView("user-1", fetcher)
        view.teardown()

        assert await view.refresh() is False
        assert fetcher.calls == 0

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_items(self, three_items):
        """Test that a failed refresh records the error and keeps the last good data."""
        results = [three_items, RuntimeError("backend down")]

        async def fetch(owner_key):
            result = results.pop(0)
            if isinstance(result, BaseException):
                raise result
            return result

        view = CollectionView("user-1", fetch)
        await view.refresh()
        applied = await view.refresh()

        assert applied is False
        assert isinstance(view.error, RuntimeError)
        assert view.total_count == 3
        assert view.state == FetchState.IDLE

    @pytest.mark.asyncio
    async def test_success_clears_error(self, three_items):
        results = [RuntimeError("blip"), three_items]

        async def fetch(owner_key):
            result = results.pop(0)
            if isinstance(result, BaseException):
                raise result
            return result

        view = CollectionView("user-1", fetch)
        await view.refresh()
        assert view.error is not None

        await view.refresh()
        assert view.error is None

    @pytest.mark.asyncio
    async def test_fetcher_raising_before_await(self, three_items):
        """Test that a fetcher failing while building its call leaves the view usable."""
        calls = []

        def fetch(owner_key):
            calls.append(owner_key)
            if len(calls) == 1:
                raise ValueError("no session")

            async def load():
                return three_items

            return load()

        view = CollectionView("user-1", fetch)

        assert await view.refresh() is False
        assert isinstance(view.error, ValueError)
        assert view.state == FetchState.IDLE

        assert await view.refresh() is True
        assert view.error is None
        assert view.total_count == 3

    @pytest.mark.asyncio
    async def test_listeners_notified(self, three_items):
        view = CollectionView("user-1", GatedFetcher(three_items))
        listener = Mock()
        unsubscribe = view.subscribe(listener)

        view._fetcher.gate.set()
        await view.refresh()
        assert listener.call_count == 2  # FETCHING, then results

        unsubscribe()
        view.add_local({"id": 9})
        assert listener.call_count == 2

    @pytest.mark.asyncio
    async def test_set_owner_abandons_previous_fetch(self, three_items):
        """Test that switching owner discards the old owner's pending result."""
        calls = []

        async def fetch(owner_key):
            calls.append(owner_key)
            if owner_key == "old":
                await asyncio.sleep(1.0)
                return three_items
            return [{"id": 42, "name": "New"}]

        view = CollectionView("old", fetch)
        pending = asyncio.ensure_future(view.refresh())
        await asyncio.sleep(0)

        assert await view.set_owner("new") is True
        assert await pending is False
        assert calls[-1] == "new"
        assert [item["id"] for item in view.items] == [42]


class TestLocalMutations:
    """Test optimistic local changes."""

    @pytest.mark.asyncio
    async def test_add_then_remove(self, three_items):
        view = await loaded_view(three_items)

        assert view.add_local({"id": 99, "name": "X"}) is True
        assert len(view.items) == 4
        assert view.items[0]["id"] == 99
        assert view.total_count == 4

        assert view.remove_local(99) is True
        assert view.total_count == 3
        assert 99 not in [item["id"] for item in view.items]

    @pytest.mark.asyncio
    async def test_add_rejected_without_write_ownership(self, three_items):
        view = await loaded_view(three_items, owns_writes=False)

        assert view.add_local({"id": 99}) is False
        assert view.total_count == 3

    @pytest.mark.asyncio
    async def test_add_sets_has_results(self):
        view = await loaded_view([])
        assert view.has_results is False

        view.add_local({"id": 1})
        assert view.has_results is True

    @pytest.mark.asyncio
    async def test_update_merges_fields(self, three_items):
        view = await loaded_view(three_items)

        assert view.update_local({"id": 2, "rating": 7}) is True
        updated = next(item for item in view.items if item["id"] == 2)
        assert updated == {**three_items[1], "rating": 7}

    @pytest.mark.asyncio
    async def test_update_unknown_id(self, three_items):
        view = await loaded_view(three_items)
        assert view.update_local({"id": 404, "name": "Nope"}) is False

    @pytest.mark.asyncio
    async def test_remove_last_clears_has_results(self):
        view = await loaded_view([{"id": 1}])
        view.remove_local(1)
        assert view.has_results is False
        assert view.total_count == 0

    @pytest.mark.asyncio
    async def test_mutations_after_teardown_ignored(self, three_items):
        view = await loaded_view(three_items)
        view.teardown()

        assert view.add_local({"id": 99}) is False
        assert view.update_local({"id": 1, "name": "Changed"}) is False
        assert view.remove_local(1) is False
        assert view.total_count == 3


class TestQuery:
    """Test local re-derivation."""

    @pytest.mark.asyncio
    async def test_set_query_refilters_without_fetch(self, sample_restaurants):
        calls = 0

        async def fetch(owner_key):
            nonlocal calls
            calls += 1
            return sample_restaurants

        view = CollectionView("user-1", fetch)
        await view.refresh()

        view.set_query(filters=FilterSpec(to_try=False), sort_key=SortKey.RATING)
        assert [item["id"] for item in view.items] == [1, 3]
        assert view.total_count == 2

        view.set_query(filters=FilterSpec(), search_text="vecchia")
        assert [item["id"] for item in view.items] == [2]
        assert calls == 1
