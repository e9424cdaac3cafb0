"""Minimal contract ABIs for the calls and events the validator uses."""

DEMO_PURCHASE_ABI = [
    {
        "type": "function",
        "name": "getProduct",
        "inputs": [{"name": "productId", "type": "uint256"}],
        "outputs": [
            {
                "name": "product",
                "type": "tuple",
                "components": [
                    {"name": "productId", "type": "uint256"},
                    {"name": "advertiserId", "type": "uint256"},
                    {"name": "name", "type": "string"},
                    {"name": "description", "type": "string"},
                    {"name": "priceAmount", "type": "uint256"},
                    {"name": "isActive", "type": "bool"},
                ],
            }
        ],
        "stateMutability": "view",
    },
    {
        "type": "event",
        "name": "ProductPurchased",
        "inputs": [
            {"name": "purchaseId", "type": "uint256", "indexed": True},
            {"name": "productId", "type": "uint256", "indexed": True},
            {"name": "buyer", "type": "address", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False},
            {"name": "timestamp", "type": "uint256", "indexed": False},
        ],
        "anonymous": False,
    },
]

AD_REGISTRY_ABI = [
    {
        "type": "function",
        "name": "getAd",
        "inputs": [{"name": "adId", "type": "uint256"}],
        "outputs": [
            {
                "name": "ad",
                "type": "tuple",
                "components": [
                    {"name": "adId", "type": "uint256"},
                    {"name": "campaignId", "type": "uint256"},
                    {"name": "advertiserId", "type": "uint256"},
                    {"name": "publisherId", "type": "uint256"},
                    {"name": "startTime", "type": "uint256"},
                    {"name": "metadata", "type": "bytes"},
                ],
            }
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getAdsByAdvertiser",
        "inputs": [{"name": "advertiserId", "type": "uint256"}],
        "outputs": [{"name": "adIds", "type": "uint256[]"}],
        "stateMutability": "view",
    },
]

IDENTITY_REGISTRY_ABI = [
    {
        "type": "function",
        "name": "ownerOf",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
    },
]

CAMPAIGN_REGISTRY_ABI = [
    {
        "type": "function",
        "name": "processAction",
        "inputs": [
            {"name": "campaignId", "type": "uint256"},
            {"name": "publisherId", "type": "uint256"},
            {"name": "validatorId", "type": "uint256"},
            {"name": "actionHash", "type": "bytes32"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "getCampaign",
        "inputs": [{"name": "campaignId", "type": "uint256"}],
        "outputs": [
            {
                "name": "campaign",
                "type": "tuple",
                "components": [
                    {"name": "campaignId", "type": "uint256"},
                    {"name": "advertiserId", "type": "uint256"},
                    {"name": "validatorId", "type": "uint256"},
                    {
                        "name": "budget",
                        "type": "tuple",
                        "components": [
                            {"name": "totalBudget", "type": "uint256"},
                            {"name": "cpaAmount", "type": "uint256"},
                            {"name": "spent", "type": "uint256"},
                        ],
                    },
                    {"name": "startTime", "type": "uint256"},
                    {"name": "endTime", "type": "uint256"},
                    {"name": "active", "type": "bool"},
                ],
            }
        ],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "isActionProcessed",
        "inputs": [{"name": "actionHash", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
    },
]

ERC20_ABI = [
    {
        "type": "function",
        "name": "transfer",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
]
