"""
Loan Financial Engine

Amortization and interest calculation, repayment allocation, arrears
classification and IFRS 9 / central-bank credit staging for a microfinance
back office. All financial math uses Decimal.
"""

__version__ = "1.0.0"
