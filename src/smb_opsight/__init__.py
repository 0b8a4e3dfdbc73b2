# SMB OpSight - Operational & Financial Analytics engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
SMB OpSight
-----------

An operational and financial analytics engine for small made-to-order
businesses. It reads the transactional rows of the shop management
application (orders, overhead, expenses, payments, production stages,
materials) and derives the figures shown on the owner's dashboard.

Main capabilities:
- calendar period resolution and navigation (monthly, quarterly, annual),
- ledger aggregation on accrual and cash bases, with concurrent reads,
- profit-and-loss summaries and rolling multi-period trends,
- production bottleneck detection against historical stage durations,
- stock forecasting against materials booked by open production.

SMB OpSight separates computation (analytics modules), configuration
(TOML) and presentation (CLI), and never writes to the business database.

Version: 0.1.0

Usage:
    python -m smb_opsight.cli --help
"""

__all__ = ["periods", "store", "ledger", "profitability", "production", "inventory"]

__version__ = "0.1.0"
