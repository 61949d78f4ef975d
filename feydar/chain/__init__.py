from feydar.chain.client import ChainClient, Web3ChainClient, ensure_contract_code
from feydar.chain.decoder import decode_token_created
from feydar.chain.fee_split import decode_reward_bps_manually, decode_reward_payload, extract_fee_split
from feydar.chain.purchase import InitialPurchase, extract_initial_purchase
from feydar.chain.rate_limit import RateLimiter
from feydar.chain.token_state import TokenStateReader
