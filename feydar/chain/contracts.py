"""
FEY factory contract interface: addresses, event signatures and minimal ABIs
"""

from eth_hash.auto import keccak

# Auxiliary contracts on Base mainnet
TOKEN_REWARD_CONTRACT = "0x282B4e72a79ebe79c1bd295c5ebd72940e50e836"

BASENAME_L2_RESOLVER = "0xC6d566A56A1aFf6508b41f6c90ff131615583BCD"
BASENAME_REVERSE_RESOLVER = "0x4e59b44847b379578588920cA78FbF26c0B4956C"
BASENAME_REGISTRY = "0xe05003e439f087eca56a28574b4790b6f35d49df"

TOKEN_CREATED_SIGNATURE = (
    "TokenCreated(address,address,address,string,string,string,string,string,"
    "int24,address,bytes32,address,address,address,uint256,address[])"
)
TOKEN_CREATED_TOPIC = keccak(TOKEN_CREATED_SIGNATURE.encode())

TOKEN_CREATED_DATA_FIELDS = (
    ("msgSender", "address"),
    ("tokenImage", "string"),
    ("tokenName", "string"),
    ("tokenSymbol", "string"),
    ("tokenMetadata", "string"),
    ("tokenContext", "string"),
    ("startingTick", "int24"),
    ("poolHook", "address"),
    ("poolId", "bytes32"),
    ("pairedToken", "address"),
    ("locker", "address"),
    ("mevModule", "address"),
    ("extensionsSupply", "uint256"),
    ("extensions", "address[]"),
)

# Observed topic-0 of the reward configuration event. It does not hash from any
# signature we know, so the payload layout is inferred (see fee_split.py).
TOKEN_REWARD_ADDED_TOPIC = bytes.fromhex(
    "c9b03d1b68674b3ca5738b69c14e4dbcfcb7f474303edd540b1d7dfa785d27ff"
)

TRANSFER_TOPIC = keccak(b"Transfer(address,address,uint256)")

# Token contract getters read for the live state snapshot
TOKEN_STATE_ABI = [
    {
        "inputs": [],
        "name": "admin",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "imageUrl",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "metadata",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "context",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "isVerified",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "totalSupply",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function"
    },
]

# Name service resolver/registry methods used for reverse resolution
RESOLVER_NAME_ABI = {
    "inputs": [{"name": "node", "type": "bytes32"}],
    "name": "name",
    "outputs": [{"name": "", "type": "string"}],
    "stateMutability": "view",
    "type": "function"
}

RESOLVER_ADDR_ABI = {
    "inputs": [{"name": "node", "type": "bytes32"}],
    "name": "addr",
    "outputs": [{"name": "", "type": "address"}],
    "stateMutability": "view",
    "type": "function"
}

REGISTRY_RESOLVER_ABI = {
    "inputs": [{"name": "node", "type": "bytes32"}],
    "name": "resolver",
    "outputs": [{"name": "", "type": "address"}],
    "stateMutability": "view",
    "type": "function"
}


def abi_fragment(name: str) -> dict:
    """Look up a token getter by name"""
    for entry in TOKEN_STATE_ABI:
        if entry["name"] == name:
            return entry
    raise KeyError(name)
