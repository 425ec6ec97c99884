"""
Currency Exchange Shop Backend

Wallets with multi-currency balances, buy/sell transactions, cash custody
hand-offs between treasurers and cashiers, debts, exchange rates, manager
prices and role-based navigation.
"""

__version__ = "1.0.0"
