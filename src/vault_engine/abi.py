"""Minimal contract ABIs used by the vault engine."""

ERC20_ABI = [
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

RATE_PROVIDER_ABI = [
    {
        "inputs": [{"name": "quote", "type": "address"}],
        "name": "getRateInQuoteSafe",
        "outputs": [{"name": "rateInQuote", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

# Tuple layout of the solver's on-chain withdraw request.
ONCHAIN_WITHDRAW_COMPONENTS = [
    {"name": "nonce", "type": "uint64"},
    {"name": "user", "type": "address"},
    {"name": "assetOut", "type": "address"},
    {"name": "amountOfShares", "type": "uint128"},
    {"name": "amountOfAssets", "type": "uint128"},
    {"name": "creationTime", "type": "uint40"},
    {"name": "secondsToMaturity", "type": "uint24"},
    {"name": "secondsToDeadline", "type": "uint24"},
]

SOLVER_ABI = [
    {
        "inputs": [
            {"name": "assetOut", "type": "address"},
            {"name": "amountOfShares", "type": "uint128"},
            {"name": "discount", "type": "uint16"},
        ],
        "name": "previewAssetsOut",
        "outputs": [{"name": "amountOfAssets128", "type": "uint128"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "assetOut", "type": "address"},
            {"name": "amountOfShares", "type": "uint128"},
            {"name": "discount", "type": "uint16"},
            {"name": "secondsToDeadline", "type": "uint24"},
        ],
        "name": "requestOnChainWithdraw",
        "outputs": [{"name": "requestId", "type": "bytes32"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {
                "name": "request",
                "type": "tuple",
                "components": ONCHAIN_WITHDRAW_COMPONENTS,
            }
        ],
        "name": "cancelOnChainWithdraw",
        "outputs": [{"name": "requestId", "type": "bytes32"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "isPaused",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
]
