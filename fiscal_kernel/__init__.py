"""
Fiscal Kernel

Persistence, domain values and read paths for the fiscal costing engine:
- Companies, products and raw fiscal documents (NF-e items, CT-e)
- Classification rules (CFOP rules, naturezas de operação, natOp aliases)
- Classified movements, ledger checkpoints and kardex entries
- Manual inventory openings and DRE deductions
"""

__version__ = "0.1.0"
