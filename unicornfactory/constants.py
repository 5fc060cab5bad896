"""Unicorn Factory program constants."""

# Default Unicorn Factory program ID (devnet).
DEFAULT_PROGRAM_ID = "E95C9BgCrrt6Sy8MUbBPTVEEQJSR5Hyau2gAiuAdhb6Y"

# PDA seed tags.
SEED_PROJECT = "project"
SEED_PROPOSAL = "proposal"
SEED_MILESTONE = "milestone"

# Instruction opcodes.
OP_INITIALIZE_PROJECT = 0
OP_CONTRIBUTE = 1
OP_BUY_TOKENS = 2
OP_SELL_TOKENS = 3
OP_CREATE_PROPOSAL = 4
OP_VOTE = 5
OP_RELEASE_FUNDS = 6
OP_ADD_MILESTONE = 7
OP_COMPLETE_MILESTONE = 8

# Fixed-width text fields.
NAME_MAX = 32
SYMBOL_MAX = 8
TITLE_MAX = 32
DESCRIPTION_MAX = 256

# AddMilestone carries reserved bytes between the length prefixes and the text.
ADD_MILESTONE_RESERVED = 24

# Account sizes (see codec layouts).
PROJECT_ACCOUNT_SIZE = 132
PROPOSAL_ACCOUNT_SIZE = 362
MILESTONE_ACCOUNT_SIZE = 305

# Currency.
UNIT_DECIMALS = 9
UNIT_SCALE = 10**UNIT_DECIMALS
U64_MAX = 2**64 - 1

# Governance.
VOTING_WINDOW_SECONDS = 86_400

# Bonding curve: price rises linearly from BASE_PRICE to BASE_PRICE * (1 + SLOPE).
CURVE_BASE_PRICE = 1
CURVE_SLOPE = 100
CURVE_STEPS = 100

# Transaction sizing.
SELL_COMPUTE_UNITS = 400_000
# Rent-exempt minimum for an 82-byte SPL mint account.
MINT_RENT_LAMPORTS = 1_461_600
