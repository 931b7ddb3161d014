"""
LMSR Market Tooling

Create, trade, close, resolve and redeem LMSR prediction markets on top of Gnosis Conditional Tokens.
"""
