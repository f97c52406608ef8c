"""Minimal ABI fragments for the protocol calls the maker makes.

Only the functions used by ``PerpService`` and ``BotService`` are listed;
full artifacts are not needed to encode these calls.
"""


def _in(name, type_, components=None):
    entry = {"name": name, "type": type_}
    if components is not None:
        entry["components"] = components
    return entry


def _fn(name, inputs, outputs, mutability="view"):
    return {
        "type": "function",
        "name": name,
        "inputs": inputs,
        "outputs": outputs,
        "stateMutability": mutability,
    }


ERC20_ABI = [
    _fn("approve", [_in("spender", "address"), _in("amount", "uint256")], [_in("", "bool")], "nonpayable"),
    _fn("balanceOf", [_in("account", "address")], [_in("", "uint256")]),
    _fn("decimals", [], [_in("", "uint8")]),
]

VAULT_ABI = [
    _fn("deposit", [_in("token", "address"), _in("amountX10_D", "uint256")], [], "nonpayable"),
    _fn("getFreeCollateral", [_in("trader", "address")], [_in("", "uint256")]),
]

_ADD_LIQUIDITY_PARAMS = [
    _in("baseToken", "address"),
    _in("base", "uint256"),
    _in("quote", "uint256"),
    _in("lowerTick", "int24"),
    _in("upperTick", "int24"),
    _in("minBase", "uint256"),
    _in("minQuote", "uint256"),
    _in("useTakerBalance", "bool"),
    _in("deadline", "uint256"),
]

_REMOVE_LIQUIDITY_PARAMS = [
    _in("baseToken", "address"),
    _in("lowerTick", "int24"),
    _in("upperTick", "int24"),
    _in("liquidity", "uint128"),
    _in("minBase", "uint256"),
    _in("minQuote", "uint256"),
    _in("deadline", "uint256"),
]

_OPEN_POSITION_PARAMS = [
    _in("baseToken", "address"),
    _in("isBaseToQuote", "bool"),
    _in("isExactInput", "bool"),
    _in("amount", "uint256"),
    _in("oppositeAmountBound", "uint256"),
    _in("deadline", "uint256"),
    _in("sqrtPriceLimitX96", "uint160"),
    _in("referralCode", "bytes32"),
]

_CLOSE_POSITION_PARAMS = [
    _in("baseToken", "address"),
    _in("sqrtPriceLimitX96", "uint160"),
    _in("oppositeAmountBound", "uint256"),
    _in("deadline", "uint256"),
    _in("referralCode", "bytes32"),
]

CLEARING_HOUSE_ABI = [
    _fn(
        "addLiquidity",
        [_in("params", "tuple", _ADD_LIQUIDITY_PARAMS)],
        [_in("", "tuple", [_in("base", "uint256"), _in("quote", "uint256"), _in("fee", "uint256"), _in("liquidity", "uint256")])],
        "nonpayable",
    ),
    _fn(
        "removeLiquidity",
        [_in("params", "tuple", _REMOVE_LIQUIDITY_PARAMS)],
        [_in("", "tuple", [_in("base", "uint256"), _in("quote", "uint256"), _in("fee", "uint256")])],
        "nonpayable",
    ),
    _fn(
        "openPosition",
        [_in("params", "tuple", _OPEN_POSITION_PARAMS)],
        [_in("base", "uint256"), _in("quote", "uint256")],
        "nonpayable",
    ),
    _fn(
        "closePosition",
        [_in("params", "tuple", _CLOSE_POSITION_PARAMS)],
        [_in("base", "uint256"), _in("quote", "uint256")],
        "nonpayable",
    ),
    _fn("cancelAllExcessOrders", [_in("maker", "address"), _in("baseToken", "address")], [], "nonpayable"),
    _fn("liquidate", [_in("trader", "address"), _in("baseToken", "address")], [], "nonpayable"),
    _fn("getAccountValue", [_in("trader", "address")], [_in("", "int256")]),
]

ACCOUNT_BALANCE_ABI = [
    _fn("getTotalPositionSize", [_in("trader", "address"), _in("baseToken", "address")], [_in("", "int256")]),
    _fn("getTotalPositionValue", [_in("trader", "address"), _in("baseToken", "address")], [_in("", "int256")]),
    _fn("getTotalAbsPositionValue", [_in("trader", "address")], [_in("", "uint256")]),
]

_OPEN_ORDER = [
    _in("liquidity", "uint128"),
    _in("lowerTick", "int24"),
    _in("upperTick", "int24"),
    _in("lastFeeGrowthInsideX128", "uint256"),
    _in("lastTwPremiumGrowthInsideX96", "int256"),
    _in("lastTwPremiumGrowthBelowX96", "int256"),
    _in("lastTwPremiumDivBySqrtPriceGrowthInsideX96", "int256"),
    _in("baseDebt", "uint256"),
    _in("quoteDebt", "uint256"),
]

ORDER_BOOK_ABI = [
    _fn("getOpenOrderIds", [_in("trader", "address"), _in("baseToken", "address")], [_in("", "bytes32[]")]),
    _fn("getOpenOrderById", [_in("orderId", "bytes32")], [_in("", "tuple", _OPEN_ORDER)]),
    _fn(
        "getOpenOrder",
        [_in("trader", "address"), _in("baseToken", "address"), _in("lowerTick", "int24"), _in("upperTick", "int24")],
        [_in("", "tuple", _OPEN_ORDER)],
    ),
]

QUOTER_ABI = [
    _fn(
        "swap",
        [
            _in(
                "params",
                "tuple",
                [
                    _in("baseToken", "address"),
                    _in("isBaseToQuote", "bool"),
                    _in("isExactInput", "bool"),
                    _in("amount", "uint256"),
                    _in("sqrtPriceLimitX96", "uint160"),
                ],
            )
        ],
        [
            _in(
                "response",
                "tuple",
                [
                    _in("deltaAvailableBase", "uint256"),
                    _in("deltaAvailableQuote", "uint256"),
                    _in("exchangedPositionSize", "int256"),
                    _in("exchangedPositionNotional", "int256"),
                    _in("sqrtPriceX96", "uint160"),
                ],
            )
        ],
        "nonpayable",
    ),
]

POOL_ABI = [
    _fn(
        "slot0",
        [],
        [
            _in("sqrtPriceX96", "uint160"),
            _in("tick", "int24"),
            _in("observationIndex", "uint16"),
            _in("observationCardinality", "uint16"),
            _in("observationCardinalityNext", "uint16"),
            _in("feeProtocol", "uint8"),
            _in("unlocked", "bool"),
        ],
    ),
    _fn("tickSpacing", [], [_in("", "int24")]),
]

BASE_TOKEN_ABI = [
    _fn("getIndexPrice", [_in("interval", "uint256")], [_in("", "uint256")]),
]
