"""Unit tests for chunked proof loading."""

import pytest

from polymer_prover.errors import CacheCapacityExceeded, InvalidArgument, PayloadTooLarge


class TestLoadProof:
    """Test suite for appending chunks to the proof cache."""

    @pytest.mark.parametrize("sizes", [[1500], [800, 700], [1, 499, 1000], [300] * 5])
    def test_chunks_reassemble_exactly(self, program, call, alice, event_proof, sizes):
        """Test that any split of a proof reassembles to the same bytes."""
        call(alice, "create_accounts")
        proof = event_proof.proof

        offset = 0
        for size in sizes:
            if size > 1000:
                # above the per-call payload limit; split once more
                call(alice, "load_proof", proof[offset:offset + size // 2])
                call(alice, "load_proof", proof[offset + size // 2:offset + size])
            else:
                call(alice, "load_proof", proof[offset:offset + size])
            offset += size

        assert program.fetch_proof_cache(alice.address).buffer == proof

    def test_load_returns_cached_length(self, program, call, alice):
        """Test that each load reports the cached length."""
        call(alice, "create_accounts")

        assert call(alice, "load_proof", b"\x01" * 100) == 100
        assert call(alice, "load_proof", b"\x02" * 50) == 150

    def test_capacity_boundary(self, program, call, alice):
        """Test that the cache fills exactly to capacity and no further."""
        call(alice, "create_accounts")
        for i in range(5):
            call(alice, "load_proof", bytes([i]) * 600)

        with pytest.raises(CacheCapacityExceeded) as exc_info:
            call(alice, "load_proof", b"\xff")

        assert exc_info.value.capacity == 3000
        assert exc_info.value.requested == 3001
        cache = program.fetch_proof_cache(alice.address)
        assert len(cache) == 3000
        assert cache.buffer == b"".join(bytes([i]) * 600 for i in range(5))

    def test_rejected_chunk_leaves_buffer_unchanged(self, program, call, alice):
        """Test that an oversized chunk is rejected without a partial append."""
        call(alice, "create_accounts")
        call(alice, "load_proof", b"\x01" * 1000)
        call(alice, "load_proof", b"\x02" * 1000)
        call(alice, "load_proof", b"\x03" * 900)

        with pytest.raises(CacheCapacityExceeded):
            call(alice, "load_proof", b"\x04" * 101)

        cache = program.fetch_proof_cache(alice.address)
        assert cache.buffer == b"\x01" * 1000 + b"\x02" * 1000 + b"\x03" * 900
        assert cache.remaining == 100

        # a chunk that fits is still accepted afterwards
        assert call(alice, "load_proof", b"\x04" * 100) == 3000

    def test_payload_limit(self, program, call, alice):
        """Test that a chunk above the host payload limit is rejected."""
        call(alice, "create_accounts")

        with pytest.raises(PayloadTooLarge):
            call(alice, "load_proof", b"\x01" * 1500)

        assert program.fetch_proof_cache(alice.address).buffer == b""

    def test_chunk_must_be_bytes(self, program, call, alice):
        """Test that non-bytes chunks are rejected."""
        call(alice, "create_accounts")

        with pytest.raises(InvalidArgument):
            call(alice, "load_proof", "not bytes")

    def test_callers_do_not_share_caches(self, program, call, alice, bob):
        """Test that each caller's chunks land in its own cache."""
        call(alice, "create_accounts")
        call(bob, "create_accounts")

        call(alice, "load_proof", b"A" * 10)
        call(bob, "load_proof", b"B" * 20)
        call(alice, "load_proof", b"a" * 5)

        assert program.fetch_proof_cache(alice.address).buffer == b"A" * 10 + b"a" * 5
        assert program.fetch_proof_cache(bob.address).buffer == b"B" * 20
