"""
Minimal built-in ABIs for the DSS, restaking core and vault contracts.

Used when no compiled artifacts are found under ABI_DIR.
"""

_TASK_REQUEST = {
    "components": [{"internalType": "uint256", "name": "value", "type": "uint256"}],
    "internalType": "struct TaskRequest",
    "name": "taskRequest",
    "type": "tuple",
}
_TASK_RESPONSE = {
    "components": [{"internalType": "uint256", "name": "response", "type": "uint256"}],
    "internalType": "struct TaskResponse",
    "name": "taskResponse",
    "type": "tuple",
}
_G1_COMPONENTS = [
    {"internalType": "uint256", "name": "X", "type": "uint256"},
    {"internalType": "uint256", "name": "Y", "type": "uint256"},
]
_G2_COMPONENTS = [
    {"internalType": "uint256[2]", "name": "X", "type": "uint256[2]"},
    {"internalType": "uint256[2]", "name": "Y", "type": "uint256[2]"},
]

SUBMIT_TASK_RESPONSE_SIG = "submitTaskResponse((uint256),(uint256))"
SUBMIT_TASK_RESPONSE_BLS_SIG = (
    "submitTaskResponse((uint256),(uint256),(uint256,uint256)[],"
    "(uint256[2],uint256[2]),(uint256,uint256))"
)
TASK_REQUEST_EVENT_SIG = "TaskRequestGenerated(address,(uint256))"

DSS_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "address", "name": "sender", "type": "address"},
            dict(_TASK_REQUEST, indexed=False),
        ],
        "name": "TaskRequestGenerated",
        "type": "event",
    },
    {
        "inputs": [_TASK_REQUEST, _TASK_RESPONSE],
        "name": "submitTaskResponse",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            _TASK_REQUEST,
            _TASK_RESPONSE,
            {
                "components": _G1_COMPONENTS,
                "internalType": "struct BN254.G1Point[]",
                "name": "nonSigningOperators",
                "type": "tuple[]",
            },
            {
                "components": _G2_COMPONENTS,
                "internalType": "struct BN254.G2Point",
                "name": "aggG2Pubkey",
                "type": "tuple",
            },
            {
                "components": _G1_COMPONENTS,
                "internalType": "struct BN254.G1Point",
                "name": "aggSign",
                "type": "tuple",
            },
        ],
        "name": "submitTaskResponse",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "address", "name": "operator", "type": "address"}],
        "name": "isOperatorRegistered",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "REGISTRATION_MESSAGE_HASH",
        "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function",
    },
]

CORE_ABI = [
    {
        "inputs": [
            {"internalType": "contract IDSS", "name": "dss", "type": "address"},
            {"internalType": "bytes", "name": "registrationHookData", "type": "bytes"},
        ],
        "name": "registerOperatorToDSS",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "operator", "type": "address"},
            {"internalType": "contract IDSS", "name": "dss", "type": "address"},
        ],
        "name": "fetchVaultsStakedInDSS",
        "outputs": [{"internalType": "address[]", "name": "vaults", "type": "address[]"}],
        "stateMutability": "view",
        "type": "function",
    },
]

VAULT_ABI = [
    {
        "inputs": [],
        "name": "totalAssets",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

FALLBACK_ABIS = {
    "SquareNumberDSS": DSS_ABI,
    "Core": CORE_ABI,
    "Vault": VAULT_ABI,
}
