import asyncio

from feydar.chain.contracts import BASENAME_L2_RESOLVER, BASENAME_REGISTRY
from feydar.services.cache import TTLCache
from feydar.services.name_resolver import NameResolver, clean_basename, namehash, reverse_nodes

from fakes import DEPLOYER, ZERO, FakeChainClient, make_resolver


def test_namehash_vectors():
    assert namehash("") == bytes(32)
    assert namehash("eth").hex() == "93cdeb708b7545dc668eb9280176169d1c33cfd8ed6f04690a0bcc88a93fc4ae"


def test_reverse_nodes_order():
    encodings = [encoding for encoding, _ in reverse_nodes(DEPLOYER)]
    assert encodings == ["coin_type", "addr_reverse"]
    _, node = reverse_nodes(DEPLOYER)[1]
    assert node == namehash(DEPLOYER[2:] + ".addr.reverse")


def test_clean_basename():
    assert clean_basename("alice.base.eth") == "alice"
    assert clean_basename("  bob  ") == "bob"
    assert clean_basename("0xabc.base.eth") is None
    assert clean_basename(DEPLOYER) is None
    assert clean_basename("") is None
    assert clean_basename(None) is None


def test_basename_from_generic_lookup():
    chain = FakeChainClient()
    chain.reverse_names[DEPLOYER] = "alice.base.eth"
    chain.forward_names["alice.base.eth"] = DEPLOYER

    result = asyncio.run(make_resolver(chain).resolve(DEPLOYER))
    assert result.primary == "alice"
    assert result.secondary is None
    assert result.display == "alice.base.eth"


def test_basename_must_resolve_back():
    chain = FakeChainClient()
    chain.reverse_names[DEPLOYER] = "mallory.base.eth"
    chain.forward_names["mallory.base.eth"] = "0x" + "99" * 20

    result = asyncio.run(make_resolver(chain).resolve(DEPLOYER))
    assert result.primary is None


def test_basename_from_resolver_contract():
    chain = FakeChainClient()
    chain.calls[(BASENAME_REGISTRY.lower(), "resolver")] = ZERO
    chain.calls[(BASENAME_L2_RESOLVER.lower(), "name")] = "carol.base.eth"
    chain.calls[(BASENAME_L2_RESOLVER.lower(), "addr")] = (
        lambda node: DEPLOYER if node == namehash("carol.base.eth") else ZERO
    )

    result = asyncio.run(make_resolver(chain).resolve(DEPLOYER))
    assert result.primary == "carol"


def test_ens_name_from_secondary_chain():
    chain = FakeChainClient()
    mainnet = FakeChainClient()
    mainnet.reverse_names[DEPLOYER] = "dave.eth"
    mainnet.forward_names["dave.eth"] = DEPLOYER

    result = asyncio.run(make_resolver(chain, mainnet).resolve(DEPLOYER))
    assert result.primary is None
    assert result.secondary == "dave.eth"
    assert result.display == "dave.eth"


def test_ens_rejects_basenames_and_unverified_names():
    chain = FakeChainClient()
    mainnet = FakeChainClient()
    mainnet.reverse_names[DEPLOYER] = "erin.base.eth"
    mainnet.forward_names["erin.base.eth"] = DEPLOYER
    assert asyncio.run(make_resolver(chain, mainnet).resolve(DEPLOYER)).secondary is None

    mainnet.reverse_names[DEPLOYER] = "frank.eth"
    assert asyncio.run(make_resolver(chain, mainnet).resolve(DEPLOYER)).secondary is None


def test_reverse_lookup_timeout_is_swallowed():
    chain = FakeChainClient()
    chain.reverse_delay = 5.0
    resolver = make_resolver(chain, timeout=0.05)

    result = asyncio.run(resolver.resolve(DEPLOYER))
    assert result.primary is None
    assert result.secondary is None
    assert resolver.timeouts == 1


def test_lookup_errors_are_swallowed():
    chain = FakeChainClient()
    mainnet = FakeChainClient()
    chain.fail("reverse_lookup", ValueError("boom"))
    mainnet.fail("reverse_lookup", ConnectionError("reset"))

    result = asyncio.run(make_resolver(chain, mainnet).resolve(DEPLOYER))
    assert result.primary is None
    assert result.secondary is None


def test_results_are_cached():
    chain = FakeChainClient()
    chain.reverse_names[DEPLOYER] = "alice.base.eth"
    chain.forward_names["alice.base.eth"] = DEPLOYER
    resolver = make_resolver(chain)

    async def resolve_twice():
        await resolver.resolve(DEPLOYER)
        return await resolver.resolve(DEPLOYER.upper().replace("0X", "0x"))

    result = asyncio.run(resolve_twice())
    assert result.primary == "alice"
    assert chain.reverse_calls == 1


def test_misses_use_negative_ttl():
    now = [0.0]
    cache = TTLCache(maxsize=8, ttl=3600, clock=lambda: now[0])
    chain = FakeChainClient()
    resolver = NameResolver(chain, timeout=0.5, cache=cache, negative_ttl=10)

    asyncio.run(resolver.resolve(DEPLOYER))
    assert DEPLOYER in cache
    now[0] = 11.0
    assert DEPLOYER not in cache


def test_ttl_cache_expiry_and_eviction():
    now = [0.0]
    cache = TTLCache(maxsize=2, ttl=10, clock=lambda: now[0])
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1  # a is now most recently used
    cache.set("c", 3)
    assert "b" not in cache
    assert len(cache) == 2

    now[0] = 10.0
    assert cache.get("a") is None
    assert cache.get("c", "gone") == "gone"
