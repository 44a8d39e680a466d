"""
Central constants for the investment portal.
"""
from __future__ import annotations

# Permission key -> display name
PERMISSIONS = {
    "admin.view": "Admin: view dashboard",
    "admin.edit": "Admin: manage accounts",
    "audit.view": "Audit trail: view",
    "applications.view": "Applications: view",
    "applications.approve": "Applications: approve/reject",
    "investments.view": "Investments: view tiers",
    "commissions.view": "Commissions: view",
    "investors.manage": "Investors: register and view",
}

# Role key -> (display name, granted permission keys)
DEFAULT_ROLES = {
    "admin": ("Administrator", tuple(PERMISSIONS)),
    "consultant": ("Consultant", ("investments.view", "commissions.view")),
    "investor": ("Investor", ("investments.view",)),
}

APPLICATION_STATUSES = frozenset({"PENDING", "APPROVED", "REJECTED"})
KYC_STATUSES = frozenset({"PENDING", "VERIFIED", "REJECTED"})
