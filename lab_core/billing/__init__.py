"""Invoicing: amounts, draft/finalize/cancel lifecycle, payments, bank accounts, price list."""
