"""
fintasks - Monthly Financial Task Engine

Turns a user's recurring expense definitions into per-month payable
obligations ("financial tasks") and tracks them until they are paid.

DESIGN PRINCIPLES:
1. Generation is idempotent - running it twice never duplicates a task
2. The storage layer owns uniqueness, not in-process locks
3. Status changes follow an explicit transition table
4. Only the outermost layer reads the wall clock
5. Every significant action is auditable
"""

__version__ = "1.0.0"
__author__ = "fintasks Team"
