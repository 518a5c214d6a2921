"""Tests for the Redis log buffer and comment counter."""

import pytest

from analysis_infra.streaming.buffer import (
    buffer_key,
    comment_counter_key,
    normalize_chunk,
)


class TestNormalizeChunk:
    def test_adds_single_newline(self):
        assert normalize_chunk("line") == "line\n"

    def test_collapses_trailing_newlines(self):
        assert normalize_chunk("line\r\n\n") == "line\n"

    def test_empty_chunk_is_blank_line(self):
        assert normalize_chunk("") == "\n"


class TestBufferStore:
    @pytest.mark.asyncio
    async def test_appends_in_order(self, buffer, redis):
        await buffer.init("job-1")
        await buffer.append("job-1", "first")
        await buffer.append("job-1", "second\n")

        assert await buffer.read("job-1") == b"first\nsecond\n"
        assert redis.ttls[buffer_key("job-1")] == 600

    @pytest.mark.asyncio
    async def test_read_missing_buffer_is_none(self, buffer):
        assert await buffer.read("missing") is None

    @pytest.mark.asyncio
    async def test_init_resets_existing_buffer(self, buffer):
        await buffer.append("job-1", "stale")
        await buffer.init("job-1")
        assert await buffer.read("job-1") == b""

    @pytest.mark.asyncio
    async def test_append_without_init_sets_ttl(self, buffer, redis):
        await buffer.append("job-2", "late chunk")
        assert redis.ttls[buffer_key("job-2")] == 600

    @pytest.mark.asyncio
    async def test_delete(self, buffer):
        await buffer.init("job-1")
        await buffer.delete("job-1")
        assert await buffer.read("job-1") is None


class TestCommentCounter:
    @pytest.mark.asyncio
    async def test_init_does_not_reset_existing_count(self, buffer):
        await buffer.init_comment_counter("job-1")
        await buffer.increment_comment_counter("job-1")
        await buffer.init_comment_counter("job-1")

        assert await buffer.take_comment_count("job-1") == 1

    @pytest.mark.asyncio
    async def test_take_clears_counter(self, buffer, redis):
        await buffer.increment_comment_counter("job-1", 3)
        assert await buffer.take_comment_count("job-1") == 3
        assert await buffer.take_comment_count("job-1") == 0
        assert comment_counter_key("job-1") not in redis.data

    @pytest.mark.asyncio
    async def test_first_increment_sets_ttl(self, buffer, redis):
        await buffer.increment_comment_counter("job-1")
        assert redis.ttls[comment_counter_key("job-1")] == 600

    @pytest.mark.asyncio
    async def test_invalid_counter_reads_as_zero(self, buffer, redis):
        redis.data[comment_counter_key("job-1")] = b"not-a-number"
        assert await buffer.take_comment_count("job-1") == 0


class TestClaims:
    @pytest.mark.asyncio
    async def test_only_first_claim_wins(self, buffer):
        assert await buffer.claim("webhook:delivery:abc", 60) is True
        assert await buffer.claim("webhook:delivery:abc", 60) is False

    @pytest.mark.asyncio
    async def test_release_allows_reclaim(self, buffer):
        await buffer.claim("k", 60)
        await buffer.release("k")
        assert await buffer.claim("k", 60) is True
