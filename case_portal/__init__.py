"""
Case Portal - Case Access Authorization Service
===============================================

Decides which legal cases a client, lawyer or administrator may see and
change, and runs the lawyer access-request workflow:
1. Lawyer requests access to a case
2. Case owner approves or rejects (or the lawyer withdraws)
3. Approved lawyers read the case; everyone else gets a uniform "not found"
"""

__version__ = "1.0.0"
