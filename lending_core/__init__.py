"""
Lending Core

Loan financial engine for a buy-now-pay-later platform: repayment and penalty
calculation, double-entry disbursement and repayment postings against a
provider's fund pool, all using Decimal money.
"""

__version__ = "1.0.0"
