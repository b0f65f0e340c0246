"""ERP-backed skills."""

from . import inventory, partners, payables, receivables, sales

ERP_SKILLS = [*sales.SKILLS, *receivables.SKILLS, *payables.SKILLS, *inventory.SKILLS, *partners.SKILLS]

__all__ = ["ERP_SKILLS"]
