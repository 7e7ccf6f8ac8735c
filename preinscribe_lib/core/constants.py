"""
Constants and network configurations for protected inscription purchases.

This module contains all constants and network configuration mappings
used throughout the transaction-chain builder.
"""

from typing import Dict, Any
from embit.networks import NETWORKS as EMBIT_NETWORKS

from .errors import InputError

# JSON-RPC datasource defaults
DEFAULT_HOST = '127.0.0.1'
DEFAULT_RPC_PORT = 3000
SOCKET_TIMEOUT = 30.0
SHUTDOWN_TIMEOUT = 0.5  # Short timeout for connection cleanup (SSL terminating proxies)

# Bitcoin constants
SATS_PER_BTC = 100_000_000

# Sequence used on buyer-funded inputs (BIP 125 opt-in RBF)
RBF_SEQUENCE = 0xfffffffd

# Fee rate (sat/vB) paid by the 1st and 2nd transactions; the 3rd tx tops up via CPFP
BASE_FEE_RATE = 2

# Seed value for the CPFP funding output on the first fee iteration
INITIAL_CPFP_FUNDING = 600

# Placeholder value of the buyer input injected when sizing a 2nd transaction
DUMMY_INPUT_VALUE = 600

# Upper bound on fee-convergence iterations
MAX_FEE_ITERATIONS = 25

# Rarity filter used when fetching spendable buyer UTXOs
DEFAULT_RARITY = ['common', 'uncommon']

# Commitment envelope
ENVELOPE_MEDIA_TYPE = 'application/json;charset=utf-8'
TAPSCRIPT_LEAF_VERSION = 0xc0
MAX_SCRIPT_ELEMENT_SIZE = 520

# Buyer funding addresses we know how to spend
SUPPORTED_BUYER_ADDRESS_TYPES = ('p2sh', 'p2wsh', 'p2wpkh', 'p2tr')

# Network configurations
# Map our network names to embit network names
NETWORK_MAP = {
    'mainnet': 'main',
    'testnet': 'test',
    'signet': 'signet',
    'regtest': 'regtest',
}

# Chains sharing Bitcoin's transaction format
CHAINS = {
    'bitcoin': {'name': 'Bitcoin', 'force_mainnet': False},
    'fractal-bitcoin': {'name': 'Fractal Bitcoin', 'force_mainnet': True},
}


def get_network_config(network: str, chain: str = 'bitcoin') -> Dict[str, Any]:
    """
    Get embit network configuration for given network and chain.

    Fractal Bitcoin uses mainnet address parameters on every network.

    Args:
        network: Network name ('mainnet', 'testnet', 'signet', 'regtest')
        chain: Chain name ('bitcoin' or 'fractal-bitcoin')

    Returns:
        Network configuration dictionary from embit

    Raises:
        InputError: If network or chain is unknown
    """
    if chain not in CHAINS:
        raise InputError(f"Unsupported chain: {chain}")
    if network not in NETWORK_MAP:
        raise InputError(f"Unsupported network: {network}")

    if CHAINS[chain]['force_mainnet']:
        return EMBIT_NETWORKS['main']
    return EMBIT_NETWORKS[NETWORK_MAP[network]]
