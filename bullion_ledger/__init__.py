"""
Bullion Ledger

Voucher posting and ledger engine for a bullion-trading business. Keeps
parallel cash-per-currency and gold-weight ledgers per trading party,
computes FX gain/loss, and manages post-dated cheques through maturity.
"""

__version__ = "1.0.0"
