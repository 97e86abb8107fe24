"""
Standard type definitions for database models.

Provides consistent types for on-chain amounts across all models.
"""

from sqlalchemy import DECIMAL

# Raw native-coin amounts in wei
# Precision: 38 digits, no fractional part
# Range: covers uint128, far beyond any realistic balance
WeiType = DECIMAL(38, 0)
